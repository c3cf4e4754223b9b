# Tests for the backend REST client against a minimal PostgREST-style server

import json
import threading
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from urllib.parse import parse_qs, urlparse

import pytest

from printcore.backend_client import BackendClient, BackendError
from printcore.local_store import LocalStore
from printcore.offline_cache import OfflineCache, PendingBill, PendingKOT


class FakeBackend:
    def __init__(self):
        self.bills = []
        self.bill_items = []
        self.patches = []
        self.fail_items = False
        self.headers = []


def make_handler(backend: FakeBackend):
    class Handler(BaseHTTPRequestHandler):
        def _body(self):
            length = int(self.headers.get('Content-Length') or 0)
            return json.loads(self.rfile.read(length) or b'null')

        def _reply(self, status, body=None):
            data = json.dumps(body).encode() if body is not None else b''
            self.send_response(status)
            self.send_header('Content-Type', 'application/json')
            self.send_header('Content-Length', str(len(data)))
            self.end_headers()
            self.wfile.write(data)

        def do_GET(self):
            self._reply(200, {})

        def do_POST(self):
            backend.headers.append(dict(self.headers))
            path = urlparse(self.path).path
            body = self._body()
            if self.headers.get('apikey') != 'anon':
                self._reply(401, {'message': 'Invalid API key'})
            elif path == '/rest/v1/rpc/generate_bill_number':
                self._reply(200, f"BILL-{len(backend.bills) + 1:04d}")
            elif path == '/rest/v1/bills':
                rows = [dict(row, id=f"srv-{len(backend.bills) + 1}") for row in body]
                backend.bills.extend(rows)
                if self.headers.get('Prefer') == 'return=representation':
                    self._reply(201, rows)
                else:
                    self._reply(201)
            elif path == '/rest/v1/bill_items':
                if backend.fail_items:
                    self._reply(500, {'message': 'insert failed'})
                else:
                    backend.bill_items.extend(body)
                    self._reply(201)
            else:
                self._reply(404, {'message': 'not found'})

        def do_PATCH(self):
            parsed = urlparse(self.path)
            backend.patches.append({
                'path': parsed.path,
                'query': {k: v[0] for k, v in parse_qs(parsed.query).items()},
                'body': self._body(),
            })
            self._reply(204)

        def log_message(self, format, *args):
            pass

    return Handler


class TestBackendClient:
    """Test REST calls"""

    def setup_method(self):
        self.backend = FakeBackend()
        self.httpd = ThreadingHTTPServer(('127.0.0.1', 0), make_handler(self.backend))
        threading.Thread(target=self.httpd.serve_forever, daemon=True).start()
        self.url = f"http://127.0.0.1:{self.httpd.server_address[1]}"
        self.client = BackendClient(self.url, api_key='anon', timeout=5)

    def teardown_method(self):
        self.httpd.shutdown()
        self.httpd.server_close()

    def test_bill_number(self):
        assert self.client.generate_bill_number() == 'BILL-0001'

    def test_insert_bill_returns_row(self):
        row = self.client.insert_bill({'bill_number': 'BILL-0001', 'final_amount': 10})
        assert row['id'] == 'srv-1'
        assert self.backend.headers[-1]['Authorization'] == 'Bearer anon'

    def test_insert_items_sets_bill_id(self):
        self.client.insert_bill_items('srv-1', [{'product_name': 'Tea', 'quantity': 1}])
        assert self.backend.bill_items == [{'product_name': 'Tea', 'quantity': 1, 'bill_id': 'srv-1'}]

    def test_mark_items_sent_to_kitchen(self):
        self.client.mark_items_sent_to_kitchen('srv-1', ['i1', 'i2'], '2024-03-05T19:30:00')
        patch = self.backend.patches[0]
        assert patch['path'] == '/rest/v1/bill_items'
        assert patch['query'] == {'bill_id': 'eq.srv-1', 'id': 'in.(i1,i2)'}
        assert patch['body'] == {'sent_to_kitchen': True, 'kot_printed_at': '2024-03-05T19:30:00'}

    def test_errors_raise(self):
        self.backend.fail_items = True
        with pytest.raises(BackendError) as exc:
            self.client.insert_bill_items('srv-1', [{'product_name': 'Tea'}])
        assert exc.value.status_code == 500

    def test_auth_failure(self):
        client = BackendClient(self.url, api_key='wrong')
        with pytest.raises(BackendError) as exc:
            client.generate_bill_number()
        assert exc.value.status_code == 401

    def test_unreachable(self):
        client = BackendClient('http://127.0.0.1:9', timeout=1)
        with pytest.raises(BackendError):
            client.generate_bill_number()
        assert client.check_health() is False

    def test_invalid_url_raises_backend_error(self):
        client = BackendClient('http://', timeout=1)
        with pytest.raises(BackendError):
            client.generate_bill_number()

    def test_health(self):
        assert self.client.check_health() is True

    def test_offline_cache_drain_over_http(self, tmp_path):
        cache = OfflineCache(LocalStore(str(tmp_path / 'offline.db')), self.client)
        cache.queue_bill(PendingBill(id='a', data={'final_amount': 20},
                                     items=[{'product_name': 'Tea', 'quantity': 2}]))
        cache.queue_bill(PendingBill(id='a', data={'final_amount': 20}))
        cache.queue_kot(PendingKOT(id='k1', bill_id='a', item_ids=['i1']))

        report = cache.drain()

        assert report['bills_synced'] == 1
        assert report['kots_synced'] == 1
        assert cache.pending_count() == 0
        assert len(self.backend.bills) == 1
        assert self.backend.bills[0]['bill_number'] == 'BILL-0001'
        assert self.backend.bill_items[0]['bill_id'] == 'srv-1'
        assert self.backend.patches[0]['query']['bill_id'] == 'eq.srv-1'
