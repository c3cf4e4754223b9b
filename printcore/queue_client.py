# Queue Client - REST client for the remote print job queue
# Used by the POS side to submit jobs and by agents to pick them up

import requests
import logging
from typing import Dict, Any, List, Optional


logger = logging.getLogger(__name__)


LOCAL_AGENT_URL = 'http://localhost:8765'
AGENT_PROBE_TIMEOUT = 2  # seconds


class PrintQueueClient:
    """REST client for the print queue"""

    def __init__(self, base_url: str, api_key: str = None, timeout: int = 10):
        self.base_url = base_url.rstrip('/')
        self.api_key = api_key
        self.timeout = timeout
        self.session = requests.Session()

        if api_key:
            self.session.headers.update({'Authorization': f'Bearer {api_key}'})

        self.session.headers.update({
            'Content-Type': 'application/json',
            'User-Agent': 'printcore/1.0'
        })

    def _request(self, method: str, action: str, **kwargs) -> Dict[str, Any]:
        """Call one queue endpoint; network and HTTP errors come back as {'success': False}"""
        try:
            response = self.session.request(
                method, f"{self.base_url}/{action}", timeout=self.timeout, **kwargs
            )
        except requests.exceptions.Timeout:
            logger.warning(f"Print queue timeout on /{action}")
            return {'success': False, 'error': 'Timeout'}
        except requests.exceptions.ConnectionError as e:
            logger.warning(f"Print queue unreachable: {e}")
            return {'success': False, 'error': 'Connection error'}

        try:
            body = response.json()
        except ValueError:
            body = {'success': False, 'error': response.text}

        if response.status_code != 200:
            logger.warning(f"Print queue /{action} returned {response.status_code}: "
                           f"{body.get('error')}")
            body.setdefault('success', False)
            body['status_code'] = response.status_code
        return body

    def submit(self, job_type: str, payload: Dict, printer_role: str = 'counter') -> Dict[str, Any]:
        """Queue a job; returns {'success', 'job_id'} or {'success': False, 'error'}"""
        result = self._request('POST', 'submit', json={
            'job_type': job_type,
            'printer_role': printer_role,
            'payload': payload,
        })
        if result.get('success'):
            logger.info(f"Queued {job_type} job {result.get('job_id')} for {printer_role}")
        return result

    def queue_kot(self, kot_data: Dict, printer_role: str = 'kitchen') -> Dict[str, Any]:
        return self.submit('kot', kot_data, printer_role)

    def queue_bill(self, bill_data: Dict, printer_role: str = 'counter') -> Dict[str, Any]:
        return self.submit('bill', bill_data, printer_role)

    def queue_test(self, printer_role: str = 'counter', business_name: str = None) -> Dict[str, Any]:
        return self.submit('test', {'business_name': business_name}, printer_role)

    def get_status(self, job_id: str) -> Optional[Dict]:
        """The job's {id, status, error_message, created_at, processed_at}, or None"""
        result = self._request('GET', 'status', params={'job_id': job_id})
        return result.get('job') if result.get('success') else None

    def fetch_pending(self, agent_id: str, limit: int = 10) -> List[Dict]:
        """Pick up jobs for this agent. They are 'processing' once returned."""
        result = self._request('GET', 'pending', params={'agent_id': agent_id, 'limit': limit})
        return result.get('jobs', []) if result.get('success') else []

    def report_complete(self, job_id: str, success: bool, error_message: str = None) -> bool:
        body = {'job_id': job_id, 'success': success}
        if error_message:
            body['error_message'] = error_message
        return bool(self._request('POST', 'complete', json=body).get('success'))


def get_local_agent_status(url: str = LOCAL_AGENT_URL,
                           timeout: float = AGENT_PROBE_TIMEOUT) -> Optional[Dict]:
    """Health payload of an agent on this machine, or None when there is none"""
    try:
        response = requests.get(f"{url.rstrip('/')}/health", timeout=timeout)
    except requests.exceptions.RequestException:
        return None
    if response.status_code != 200:
        return None
    try:
        return response.json()
    except ValueError:
        return None


def check_local_agent(url: str = LOCAL_AGENT_URL, timeout: float = AGENT_PROBE_TIMEOUT) -> bool:
    return get_local_agent_status(url, timeout) is not None
