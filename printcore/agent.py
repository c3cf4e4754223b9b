# Local Print Agent - polls the remote queue and prints on local printers
# Serves GET /health for the POS to detect it

import json
import logging
import socket
import threading
from datetime import datetime
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Dict, Iterable, Optional, Union

from .escpos_builder import build_test_page
from .models import BillPayload, KOTPayload, PrinterDescriptor
from .queue_client import PrintQueueClient
from .templates import generate_bill_commands, generate_kot_commands
from .transports import TransportError, create_transport

logger = logging.getLogger(__name__)


DEFAULT_AGENT_PORT = 8765
DEFAULT_POLL_INTERVAL = 2  # seconds


def default_agent_id() -> str:
    return f"agent-{socket.gethostname()}"


class HealthHandler(BaseHTTPRequestHandler):
    agent: 'LocalPrintAgent' = None

    def _send_json(self, status: int, body: dict):
        data = json.dumps(body).encode()
        self.send_response(status)
        self.send_header('Content-Type', 'application/json')
        self.send_header('Access-Control-Allow-Origin', '*')
        self.send_header('Access-Control-Allow-Methods', 'GET, OPTIONS')
        self.send_header('Access-Control-Allow-Headers', 'Content-Type')
        self.end_headers()
        self.wfile.write(data)

    def do_GET(self):
        if self.path.rstrip('/') == '/health':
            self._send_json(200, self.agent.get_health())
        else:
            self._send_json(404, {'error': 'Not found'})

    def do_OPTIONS(self):
        self.send_response(204)
        self.send_header('Access-Control-Allow-Origin', '*')
        self.end_headers()

    def log_message(self, format, *args):
        pass


class LocalPrintAgent:
    """Prints queued jobs on the printer configured for each job's role"""

    def __init__(self, queue_client: PrintQueueClient,
                 printers: Iterable[Union[PrinterDescriptor, Dict]],
                 agent_id: str = None, poll_interval: float = DEFAULT_POLL_INTERVAL,
                 port: int = DEFAULT_AGENT_PORT, host: str = '127.0.0.1',
                 currency_symbol: str = '', transport_factory=create_transport):
        self.queue_client = queue_client
        self.printers: Dict[str, PrinterDescriptor] = {}
        for printer in printers:
            if not isinstance(printer, PrinterDescriptor):
                printer = PrinterDescriptor.from_dict(printer)
            self.printers.setdefault(printer.role, printer)
        self.agent_id = agent_id or default_agent_id()
        self.poll_interval = poll_interval
        self.port = port
        self.host = host
        self.currency_symbol = currency_symbol
        self.transport_factory = transport_factory

        self.running = False
        self.jobs_printed = 0
        self.jobs_failed = 0
        self._processing = threading.Lock()
        self._stop = threading.Event()
        self._poll_thread: Optional[threading.Thread] = None
        self.httpd: Optional[ThreadingHTTPServer] = None

    def get_printer(self, role: str) -> PrinterDescriptor:
        printer = self.printers.get(role) or self.printers.get('counter')
        if printer is None:
            raise TransportError(f"No printer configured for role {role}")
        return printer

    def render_job(self, job: Dict, printer: PrinterDescriptor) -> bytes:
        """ESC/POS bytes for one queued job"""
        job_type = job.get('job_type')
        payload = job.get('payload') or {}
        if job_type == 'kot':
            return generate_kot_commands(KOTPayload.from_dict(payload), printer.paper_format)
        if job_type == 'bill':
            return generate_bill_commands(BillPayload.from_dict(payload), printer.paper_format,
                                          self.currency_symbol)
        if job_type == 'test':
            return build_test_page(printer.name, printer.transport, printer.paper_format,
                                   printer.role, payload.get('business_name'),
                                   datetime.now().strftime('%d/%m/%Y %H:%M:%S'))
        raise ValueError(f"Unknown job type: {job_type}")

    def process_job(self, job: Dict):
        """Print one job. Raises on failure."""
        printer = self.get_printer(job.get('printer_role') or 'counter')
        data = self.render_job(job, printer)
        transport = self.transport_factory(printer)
        transport.open()
        try:
            transport.write(data)
        finally:
            transport.close()
        logger.info(f"Printed {job.get('job_type')} job {job['id']} on {printer.name}")

    def poll_once(self) -> int:
        """Fetch and print pending jobs. Returns how many were handled.

        A poll that starts while the previous one is still printing is skipped.
        """
        if not self._processing.acquire(blocking=False):
            return 0
        try:
            jobs = self.queue_client.fetch_pending(self.agent_id, limit=10)
            for job in jobs:
                try:
                    self.process_job(job)
                except Exception as e:
                    logger.error(f"Failed to process job {job.get('id')}: {e}")
                    self.jobs_failed += 1
                    self.queue_client.report_complete(job['id'], False, str(e))
                else:
                    self.jobs_printed += 1
                    self.queue_client.report_complete(job['id'], True)
            return len(jobs)
        finally:
            self._processing.release()

    def _poll_loop(self):
        while not self._stop.is_set():
            try:
                self.poll_once()
            except Exception as e:
                logger.error(f"Polling error: {e}")
            self._stop.wait(self.poll_interval)

    def get_health(self) -> Dict:
        return {
            'status': 'ok',
            'agent_id': self.agent_id,
            'printers': sorted(self.printers),
        }

    def get_status(self) -> Dict:
        return dict(self.get_health(), running=self.running,
                    jobs_printed=self.jobs_printed, jobs_failed=self.jobs_failed)

    def start(self, serve_health: bool = True):
        logger.info(f"Local print agent {self.agent_id} starting, "
                    f"printers: {', '.join(sorted(self.printers)) or 'none'}")
        if serve_health:
            handler = type('BoundHealthHandler', (HealthHandler,), {'agent': self})
            self.httpd = ThreadingHTTPServer((self.host, self.port), handler)
            self.port = self.httpd.server_address[1]
            threading.Thread(target=self.httpd.serve_forever, daemon=True).start()
            logger.info(f"Health endpoint on http://{self.host}:{self.port}/health")

        self._stop.clear()
        self._poll_thread = threading.Thread(target=self._poll_loop, daemon=True)
        self._poll_thread.start()
        self.running = True

    def stop(self):
        self._stop.set()
        if self._poll_thread is not None:
            self._poll_thread.join(timeout=self.poll_interval + 5)
        if self.httpd is not None:
            self.httpd.shutdown()
            self.httpd.server_close()
            self.httpd = None
        self.running = False
        logger.info("Local print agent stopped")
