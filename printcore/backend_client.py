# Backend Client - REST client for the billing backend (PostgREST-style)
# Bill numbers, bill and bill item inserts, kitchen-sent marks

import requests
import logging
import threading
from datetime import datetime
from typing import Dict, Any, List, Optional


logger = logging.getLogger(__name__)


class BackendError(Exception):
    """A backend call failed or returned an unexpected response"""

    def __init__(self, message: str, status_code: int = 0):
        super().__init__(message)
        self.status_code = status_code


class BackendClient:
    """REST client for the bills/bill_items tables and the bill number RPC"""

    def __init__(self, base_url: str, api_key: str = None, timeout: int = 30,
                 rest_path: str = '/rest/v1'):
        self.base_url = base_url.rstrip('/')
        self.rest_path = rest_path if rest_path.startswith('/') else '/' + rest_path
        self.api_key = api_key
        self.timeout = timeout
        self.session = requests.Session()

        if api_key:
            self.session.headers.update({
                'apikey': api_key,
                'Authorization': f'Bearer {api_key}',
            })

        self.session.headers.update({
            'Content-Type': 'application/json',
            'User-Agent': 'printcore/1.0'
        })

    def _url(self, path: str) -> str:
        return f"{self.base_url}{self.rest_path}/{path}"

    def _call(self, method: str, path: str, **kwargs) -> Any:
        try:
            response = self.session.request(method, self._url(path), timeout=self.timeout, **kwargs)
        except requests.exceptions.Timeout as e:
            raise BackendError(f"Timeout calling {path}") from e
        except requests.exceptions.ConnectionError as e:
            raise BackendError(f"Connection error calling {path}: {e}") from e
        except requests.exceptions.RequestException as e:
            raise BackendError(f"Request to {path} failed: {e}") from e

        if response.status_code == 401:
            logger.error("Authentication failed - check API key")
            raise BackendError('Authentication failed', response.status_code)
        if response.status_code >= 400:
            raise BackendError(f"{method} {path} failed: {response.text}", response.status_code)
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            raise BackendError(f"Invalid JSON from {path}") from e

    def generate_bill_number(self) -> str:
        """Server-issued bill number"""
        number = self._call('POST', 'rpc/generate_bill_number', json={})
        if not number:
            raise BackendError('Backend returned no bill number')
        return str(number)

    def insert_bill(self, bill: Dict) -> Dict:
        """Insert one bill row and return it as stored (with its server id)"""
        rows = self._call('POST', 'bills', json=[bill],
                          headers={'Prefer': 'return=representation'})
        if not rows:
            raise BackendError('Bill insert returned no row')
        logger.info(f"Bill {bill.get('bill_number')} inserted")
        return rows[0]

    def insert_bill_items(self, bill_id: str, items: List[Dict]):
        if not items:
            return
        rows = [dict(item, bill_id=bill_id) for item in items]
        self._call('POST', 'bill_items', json=rows)

    def mark_items_sent_to_kitchen(self, bill_id: str, item_ids: List[str],
                                   printed_at: Optional[str] = None):
        if not item_ids:
            return
        self._call('PATCH', 'bill_items',
                   params={'bill_id': f'eq.{bill_id}', 'id': f"in.({','.join(item_ids)})"},
                   json={
                       'sent_to_kitchen': True,
                       'kot_printed_at': printed_at or datetime.now().isoformat(),
                   })

    def check_health(self) -> bool:
        """Check if server is reachable"""
        try:
            response = self.session.get(f"{self.base_url}{self.rest_path}/", timeout=5)
            return response.status_code < 500
        except requests.exceptions.RequestException:
            return False

    def get_status(self) -> Dict:
        """Get client status"""
        return {
            'base_url': self.base_url,
            'connected': self.check_health(),
        }


# Stub implementation for testing
class StubBackendClient:
    """In-memory backend for testing without a server"""

    def __init__(self, *args, **kwargs):
        self.online = True
        self.fail_bill_items = False
        self.fail_kitchen_marks = False
        self.bills: List[Dict] = []
        self.bill_items: List[Dict] = []
        self.kitchen_marks: List[Dict] = []
        self.calls = 0
        self._lock = threading.Lock()

    def _touch(self):
        with self._lock:
            self.calls += 1
        if not self.online:
            raise BackendError('Connection error')

    def generate_bill_number(self) -> str:
        self._touch()
        return f"BILL-{len(self.bills) + 1:04d}"

    def insert_bill(self, bill: Dict) -> Dict:
        self._touch()
        row = dict(bill, id=f"srv-{len(self.bills) + 1}")
        self.bills.append(row)
        logger.info(f"[STUB] Inserted bill {row['bill_number']}")
        return row

    def insert_bill_items(self, bill_id: str, items: List[Dict]):
        self._touch()
        if self.fail_bill_items:
            raise BackendError('bill_items insert failed', 500)
        self.bill_items.extend(dict(item, bill_id=bill_id) for item in items)

    def mark_items_sent_to_kitchen(self, bill_id: str, item_ids: List[str],
                                   printed_at: Optional[str] = None):
        self._touch()
        if self.fail_kitchen_marks:
            raise BackendError('bill_items update failed', 500)
        self.kitchen_marks.append({'bill_id': bill_id, 'item_ids': list(item_ids),
                                   'kot_printed_at': printed_at})

    def check_health(self) -> bool:
        return self.online
