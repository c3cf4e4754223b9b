# Tests for print dispatch and fallback

import json
from datetime import date, datetime

import pytest

from printcore.browser_print import RenderedView
from printcore.dispatcher import NO_PRINT_METHOD, PrintDispatcher
from printcore.kot_counter import KOTNumberManager
from printcore.models import BillPayload, KOTPayload, PrinterDescriptor, TicketItem
from printcore.transports import ConnectionManager, TransportError


class FakeTransport:
    kind = 'usb'

    def __init__(self, fail_open=False, fail_write=False, accept=True):
        self.fail_open = fail_open
        self.fail_write = fail_write
        self.accept = accept
        self.written = []
        self.closed = False

    def open(self):
        if self.fail_open:
            raise TransportError('No USB thermal printer found')

    def write(self, data):
        if self.fail_write:
            raise TransportError('usb write failed: pipe error')
        self.written.append(data)
        return self.accept

    def close(self):
        self.closed = True


class FakeQueueClient:
    def __init__(self, success=True):
        self.success = success
        self.submitted = []

    def submit(self, job_type, payload, printer_role='counter'):
        self.submitted.append((job_type, payload, printer_role))
        if self.success:
            return {'success': True, 'job_id': 'job-1'}
        return {'success': False, 'error': 'Connection error'}


USB = PrinterDescriptor(name='Counter', role='counter', transport='usb', paper_format='58mm')
KITCHEN = PrinterDescriptor(name='Kitchen', role='kitchen', transport='bluetooth',
                            address='/dev/rfcomm0', paper_format='80mm')
NETWORK = PrinterDescriptor(name='Bar', role='bar', transport='network', address='10.0.0.5')

KOT = {'items': [{'name': 'Burger', 'quantity': 2}], 'table': 'T1'}


class TestPrintDispatcher:
    """Test dispatch order"""

    def setup_method(self):
        self.transport = FakeTransport()
        self.opened = []
        self.connections = ConnectionManager(factory=lambda d: self.transport)

    def _dispatcher(self, **kwargs):
        kwargs.setdefault('connections', self.connections)
        return PrintDispatcher([USB, KITCHEN], browser_opener=self.opened.append, **kwargs)

    def test_direct_print(self):
        result = self._dispatcher().dispatch(USB, b'\x1b\x40hello')
        assert result.success is True
        assert result.method == 'thermal'
        assert self.transport.written == [b'\x1b\x40hello']

    def test_failing_transport_falls_back_to_browser(self):
        self.transport.fail_write = True
        result = self._dispatcher().dispatch(USB, b'data', RenderedView.from_text('BILL'))
        assert result.success is True
        assert result.method == 'browser'
        assert len(self.opened) == 1
        assert self.opened[0].startswith('file://')
        # Broken connection is dropped
        assert not self.connections.is_connected(USB.key)

    def test_unreachable_printer_falls_back(self):
        self.transport.fail_open = True
        result = self._dispatcher().dispatch(USB, b'data', RenderedView.from_text('BILL'))
        assert result.method == 'browser'

    def test_rejected_write_falls_back(self):
        self.transport.accept = False
        result = self._dispatcher().dispatch(USB, b'data', RenderedView.from_text('BILL'))
        assert result.method == 'browser'

    def test_nothing_available(self):
        self.transport.fail_write = True
        result = self._dispatcher().dispatch(USB, b'data')
        assert result.success is False
        assert result.method == 'browser'
        assert result.error == NO_PRINT_METHOD
        assert result.to_dict() == {'success': False, 'method': 'browser',
                                    'error': NO_PRINT_METHOD}

    def test_network_printer_is_not_direct(self):
        result = self._dispatcher().dispatch(NETWORK, b'data', RenderedView.from_text('X'))
        assert result.method == 'browser'
        assert self.transport.written == []

    def test_queue_tier(self):
        self.transport.fail_write = True
        queue = FakeQueueClient()
        result = self._dispatcher(queue_client=queue).print_kot(KOT)
        assert result.success is True
        assert result.method == 'queue'
        assert result.job_id == 'job-1'
        job_type, payload, role = queue.submitted[0]
        assert (job_type, role) == ('kot', 'kitchen')
        assert payload['items'] == KOT['items']

    def test_typed_payloads_reach_queue(self):
        queue = FakeQueueClient()
        counter = KOTNumberManager(today=lambda: date(2024, 3, 5))
        dispatcher = PrintDispatcher([NETWORK], queue_client=queue, kot_numbers=counter,
                                     connections=self.connections)
        kot = KOTPayload(items=(TicketItem('Burger', 2),), table_number='T1',
                         printed_at=datetime(2024, 3, 5, 19, 30))
        bill = BillPayload(bill_number='B-7', items=(TicketItem('Tea', 1, 20.0),),
                           sub_total=20.0, final_amount=20.0)

        assert dispatcher.print_kot(kot, role='bar').method == 'queue'
        assert dispatcher.print_bill(bill, role='bar').method == 'queue'

        (_, kot_payload, _), (_, bill_payload, _) = queue.submitted
        json.dumps(kot_payload)
        assert KOTPayload.from_dict(kot_payload) == KOTPayload(
            items=kot.items, table_number='T1', kot_number='01')
        assert BillPayload.from_dict(bill_payload) == bill

    def test_browser_preferred_over_queue(self):
        self.transport.fail_write = True
        queue = FakeQueueClient()
        result = self._dispatcher(queue_client=queue).print_kot(KOT, fallback=RenderedView('<p/>'))
        assert result.method == 'browser'
        assert queue.submitted == []

    def test_queue_failure_is_a_result(self):
        self.transport.fail_write = True
        result = self._dispatcher(queue_client=FakeQueueClient(success=False)).print_kot(KOT)
        assert result.success is False
        assert result.error == NO_PRINT_METHOD

    def test_print_kot_uses_role_printer_and_numbers(self):
        counter = KOTNumberManager(today=lambda: date(2024, 3, 5))
        dispatcher = self._dispatcher(kot_numbers=counter)
        assert dispatcher.print_kot(KOT).method == 'thermal'
        assert dispatcher.print_kot(KOT).method == 'thermal'
        assert b'KOT #: 01' in self.transport.written[0]
        assert b'KOT #: 02' in self.transport.written[1]
        # 80mm kitchen printer
        assert b'-' * 48 in self.transport.written[0]

    def test_print_bill(self):
        result = self._dispatcher(currency_symbol='Rs.').print_bill(
            {'billNumber': 'B-1', 'items': [{'name': 'Tea', 'quantity': 1, 'price': 10}],
             'subTotal': 10, 'finalAmount': 10})
        assert result.method == 'thermal'
        assert b'Rs.10.00' in self.transport.written[0]

    def test_role_falls_back_to_counter(self):
        dispatcher = self._dispatcher()
        assert dispatcher.get_printer('bar') == USB
        assert PrintDispatcher().get_printer('kitchen') is None

    def test_print_image_rejects_bad_surface(self):
        result = self._dispatcher().print_image(USB, b'\x00' * 3, 2, 2)
        assert result.success is False
        assert self.transport.written == []

    def test_print_image(self):
        result = self._dispatcher().print_image(USB, b'\x00\x00\x00\xff' * 4, 2, 2)
        assert result.method == 'thermal'
        assert b'\x1d\x76\x30\x00\x01\x00\x02\x00' in self.transport.written[0]

    def test_test_print_sends_page(self):
        assert self._dispatcher().test_print(USB) is True
        assert b'*** TEST PRINT ***' in self.transport.written[0]

    def test_test_print_surfaces_errors(self):
        self.transport.fail_write = True
        with pytest.raises(TransportError, match='pipe error'):
            self._dispatcher().test_print(USB)

    def test_test_print_unreachable(self):
        self.transport.fail_open = True
        with pytest.raises(TransportError):
            self._dispatcher().test_print(USB)
