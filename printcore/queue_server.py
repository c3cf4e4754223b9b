# Queue Server - HTTP surface of the remote print job queue
# /submit, /pending, /complete, /status over http.server

import json
import logging
import threading
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Optional, Tuple
from urllib.parse import parse_qs, urlparse

from .queue_store import PrintJobStore, QueueError

logger = logging.getLogger(__name__)


CORS_HEADERS = {
    'Access-Control-Allow-Origin': '*',
    'Access-Control-Allow-Headers': 'authorization, x-client-info, apikey, content-type',
    'Access-Control-Allow-Methods': 'GET, POST, OPTIONS',
}


class QueueRequestHandler(BaseHTTPRequestHandler):
    """Routes on the last path segment, so the queue can sit behind any prefix"""

    store: PrintJobStore = None
    api_key: Optional[str] = None

    def _send_json(self, status: int, body: dict):
        data = json.dumps(body).encode()
        self.send_response(status)
        self.send_header('Content-Type', 'application/json')
        self.send_header('Content-Length', str(len(data)))
        for name, value in CORS_HEADERS.items():
            self.send_header(name, value)
        self.end_headers()
        self.wfile.write(data)

    def _route(self) -> Tuple[str, dict]:
        parsed = urlparse(self.path)
        action = parsed.path.rstrip('/').split('/')[-1]
        query = {k: v[-1] for k, v in parse_qs(parsed.query).items()}
        return action, query

    def _authorized(self) -> bool:
        if not self.api_key:
            return True
        return self.headers.get('Authorization', '') == f"Bearer {self.api_key}"

    def _read_json(self) -> dict:
        length = int(self.headers.get('Content-Length') or 0)
        raw = self.rfile.read(length) if length else b''
        try:
            body = json.loads(raw or b'{}')
        except ValueError:
            raise QueueError("Invalid JSON body")
        if not isinstance(body, dict):
            raise QueueError("Request body must be an object")
        return body

    def _handle(self, method: str):
        action, query = self._route()
        if not self._authorized():
            self._send_json(401, {'success': False, 'error': 'Unauthorized'})
            return
        try:
            if method == 'POST' and action == 'submit':
                body = self._read_json()
                job_id = self.store.submit(body.get('job_type'), body.get('payload'),
                                           body.get('printer_role'))
                self._send_json(200, {'success': True, 'job_id': job_id})
            elif method == 'GET' and action == 'pending':
                limit = int(query.get('limit') or 10)
                jobs = self.store.pickup(query.get('agent_id') or 'default', limit)
                self._send_json(200, {'success': True, 'jobs': jobs})
            elif method == 'POST' and action == 'complete':
                body = self._read_json()
                if not body.get('job_id'):
                    raise QueueError("job_id required")
                self.store.complete(body['job_id'], bool(body.get('success')),
                                    body.get('error_message'))
                self._send_json(200, {'success': True})
            elif method == 'GET' and action == 'status':
                job_id = query.get('job_id')
                if not job_id:
                    raise QueueError("job_id required")
                job = self.store.get_status(job_id)
                if job is None:
                    raise QueueError("Job not found", status_code=404)
                self._send_json(200, {'success': True, 'job': job})
            else:
                self._send_json(400, {'success': False, 'error': 'Invalid action'})
        except QueueError as e:
            self._send_json(e.status_code, {'success': False, 'error': e.message})
        except ValueError as e:
            self._send_json(400, {'success': False, 'error': str(e)})
        except Exception as e:
            logger.exception("Print queue error")
            self._send_json(500, {'success': False, 'error': str(e)})

    def do_GET(self):
        self._handle('GET')

    def do_POST(self):
        self._handle('POST')

    def do_OPTIONS(self):
        self.send_response(204)
        for name, value in CORS_HEADERS.items():
            self.send_header(name, value)
        self.end_headers()

    def log_message(self, format, *args):
        logger.debug("%s - %s", self.address_string(), format % args)


class QueueServer:
    """Runs the queue HTTP surface and the periodic purge of finished jobs"""

    def __init__(self, store: PrintJobStore, host: str = '0.0.0.0', port: int = 8000,
                 api_key: Optional[str] = None, purge_interval: float = 3600,
                 purge_age_hours: float = 24):
        self.store = store
        self.purge_interval = purge_interval
        self.purge_age_hours = purge_age_hours
        handler = type('BoundQueueRequestHandler', (QueueRequestHandler,),
                       {'store': store, 'api_key': api_key})
        self.httpd = ThreadingHTTPServer((host, port), handler)
        self.thread: Optional[threading.Thread] = None
        self._stop = threading.Event()

    @property
    def port(self) -> int:
        return self.httpd.server_address[1]

    def _maintenance_loop(self):
        while not self._stop.wait(self.purge_interval):
            try:
                self.store.purge_finished(self.purge_age_hours)
                self.store.requeue_stale()
            except Exception as e:
                logger.error(f"Queue maintenance failed: {e}")

    def start(self):
        """Serve in background threads"""
        self.thread = threading.Thread(target=self.httpd.serve_forever, daemon=True)
        self.thread.start()
        threading.Thread(target=self._maintenance_loop, daemon=True).start()
        logger.info(f"Print queue listening on port {self.port}")

    def serve_forever(self):
        threading.Thread(target=self._maintenance_loop, daemon=True).start()
        logger.info(f"Print queue listening on port {self.port}")
        self.httpd.serve_forever()

    def stop(self):
        self._stop.set()
        self.httpd.shutdown()
        self.httpd.server_close()
        logger.info("Print queue stopped")
