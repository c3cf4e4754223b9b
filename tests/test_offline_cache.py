# Tests for offline queueing and replay

import threading

import requests

from printcore.backend_client import BackendError, StubBackendClient
from printcore.local_store import LocalStore
from printcore.offline_cache import OfflineCache, PendingBill, PendingKOT


def make_bill(bill_id='a', **data):
    return PendingBill(
        id=bill_id,
        data=dict({'final_amount': 240.0, 'table_number': 'T1'}, **data),
        items=[{'product_name': 'Burger', 'quantity': 2, 'unit_price': 120.0}],
    )


class BlockingBackend(StubBackendClient):
    """Holds the first bill number request until released"""

    def __init__(self):
        super().__init__()
        self.entered = threading.Event()
        self.release = threading.Event()
        self.number_requests = 0

    def generate_bill_number(self):
        self.number_requests += 1
        self.entered.set()
        self.release.wait(5)
        return super().generate_bill_number()


class NoBillNumbers(StubBackendClient):
    def generate_bill_number(self):
        raise BackendError('rpc generate_bill_number failed', 500)


class BrokenResponseFor(StubBackendClient):
    """Drops the connection mid-response when inserting one bill"""

    def __init__(self, table_number):
        super().__init__()
        self.table_number = table_number

    def insert_bill(self, bill):
        if bill.get('table_number') == self.table_number:
            raise requests.exceptions.ChunkedEncodingError('broken response')
        return super().insert_bill(bill)


class TestOfflineCache:
    """Test offline queue and drain"""

    def setup_method(self):
        self.backend = StubBackendClient()

    def _cache(self, tmp_path, backend=None):
        return OfflineCache(LocalStore(str(tmp_path / 'offline.db')), backend or self.backend)

    def test_duplicate_id_queued_once(self, tmp_path):
        cache = self._cache(tmp_path)
        assert cache.queue_bill(make_bill('a')) is True
        assert cache.queue_bill(make_bill('a', final_amount=999.0)) is False
        bills = cache.get_pending_bills()
        assert len(bills) == 1
        assert bills[0].data['final_amount'] == 240.0
        assert cache.pending_count() == 1

    def test_drain_syncs_duplicate_once(self, tmp_path):
        cache = self._cache(tmp_path)
        cache.queue_bill(make_bill('a'))
        cache.queue_bill(make_bill('a'))

        report = cache.drain()

        assert report['bills_synced'] == 1
        assert cache.get_pending_bills() == []
        assert len(self.backend.bills) == 1
        assert self.backend.bills[0]['bill_number'] == 'BILL-0001'
        assert self.backend.bill_items == [
            {'product_name': 'Burger', 'quantity': 2, 'unit_price': 120.0, 'bill_id': 'srv-1'}
        ]

    def test_offline_drain_does_nothing(self, tmp_path):
        self.backend.online = False
        cache = self._cache(tmp_path)
        cache.queue_bill(make_bill('a'))
        report = cache.drain()
        assert report['skipped'] is True
        assert report['reason'] == 'offline'
        assert self.backend.calls == 0
        assert cache.pending_count() == 1

    def test_concurrent_drain_runs_once(self, tmp_path):
        backend = BlockingBackend()
        cache = self._cache(tmp_path, backend)
        cache.queue_bill(make_bill('a'))
        reports = []

        worker = threading.Thread(target=lambda: reports.append(cache.drain()))
        worker.start()
        assert backend.entered.wait(5)

        second = cache.drain()
        backend.release.set()
        worker.join()

        assert second['skipped'] is True
        assert second['reason'] == 'in_progress'
        assert reports[0]['bills_synced'] == 1
        assert backend.number_requests == 1
        assert len(backend.bills) == 1

    def test_item_failure_keeps_record_without_duplicating_bill(self, tmp_path):
        cache = self._cache(tmp_path)
        cache.queue_bill(make_bill('a'))
        self.backend.fail_bill_items = True

        report = cache.drain()
        assert report['bills_failed'] == 1
        pending = cache.get_pending_bills()
        assert len(pending) == 1
        assert pending[0].remote_bill_id == 'srv-1'
        assert len(self.backend.bills) == 1

        self.backend.fail_bill_items = False
        report = cache.drain()
        assert report['bills_synced'] == 1
        assert cache.get_pending_bills() == []
        assert len(self.backend.bills) == 1
        assert len(self.backend.bill_items) == 1

    def test_failure_does_not_stop_other_records(self, tmp_path):
        cache = self._cache(tmp_path)
        cache.queue_bill(make_bill('a'))
        cache.queue_bill(make_bill('b'))
        cache.queue_kot(PendingKOT(id='k1', bill_id='srv-existing', item_ids=['i1']))
        self.backend.fail_bill_items = True

        report = cache.drain()
        assert report['bills_failed'] == 2
        assert report['kots_synced'] == 1
        assert len(self.backend.bills) == 2

    def test_unexpected_error_does_not_stop_drain(self, tmp_path):
        backend = BrokenResponseFor('T9')
        cache = self._cache(tmp_path, backend)
        cache.queue_bill(make_bill('a', table_number='T9'))
        cache.queue_bill(make_bill('b'))

        report = cache.drain()

        assert report['bills_synced'] == 1
        assert report['bills_failed'] == 1
        assert [b.id for b in cache.get_pending_bills()] == ['a']
        assert backend.bills[0]['table_number'] == 'T1'

    def test_kot_marks_items(self, tmp_path):
        cache = self._cache(tmp_path)
        cache.queue_kot(PendingKOT(id='k1', bill_id='bill-9', item_ids=['i1', 'i2'],
                                   printed_at='2024-03-05T19:30:00'))
        assert cache.queue_kot(PendingKOT(id='k1', bill_id='bill-9')) is False

        report = cache.drain()
        assert report['kots_synced'] == 1
        assert cache.get_pending_kots() == []
        assert self.backend.kitchen_marks == [
            {'bill_id': 'bill-9', 'item_ids': ['i1', 'i2'], 'kot_printed_at': '2024-03-05T19:30:00'}
        ]

    def test_kot_for_offline_bill_uses_remote_id(self, tmp_path):
        cache = self._cache(tmp_path)
        cache.queue_bill(make_bill('local-1'))
        cache.queue_kot(PendingKOT(id='k1', bill_id='local-1', item_ids=['i1']))
        cache.drain()
        assert self.backend.kitchen_marks[0]['bill_id'] == 'srv-1'

    def test_kot_waits_for_unsynced_bill(self, tmp_path):
        backend = NoBillNumbers()
        cache = self._cache(tmp_path, backend)
        cache.queue_bill(make_bill('local-1'))
        cache.queue_kot(PendingKOT(id='k1', bill_id='local-1', item_ids=['i1']))

        report = cache.drain()
        assert report['bills_failed'] == 1
        assert report['kots_failed'] == 1
        assert backend.kitchen_marks == []
        assert [k.id for k in cache.get_pending_kots()] == ['k1']

    def test_kot_failure_stays_queued(self, tmp_path):
        cache = self._cache(tmp_path)
        self.backend.fail_kitchen_marks = True
        cache.queue_kot(PendingKOT(id='k1', bill_id='b', item_ids=['i1']))
        report = cache.drain()
        assert report['kots_failed'] == 1
        assert len(cache.get_pending_kots()) == 1

    def test_on_online_drains(self, tmp_path):
        cache = self._cache(tmp_path)
        cache.queue_bill(make_bill('a'))
        assert cache.on_online()['bills_synced'] == 1

    def test_reference_data(self, tmp_path):
        cache = self._cache(tmp_path)
        assert cache.get_last_sync_time() is None
        cache.cache_products([{'id': 1, 'name': 'Burger'}])
        cache.cache_sections([{'id': 's1', 'name': 'Patio'}])
        assert cache.get_cached_products() == [{'id': 1, 'name': 'Burger'}]
        assert cache.get_cached_sections() == [{'id': 's1', 'name': 'Patio'}]
        assert cache.get_last_sync_time() is not None

        cache.cache_products([{'id': 2, 'name': 'Fries'}])
        assert cache.get_cached_products() == [{'id': 2, 'name': 'Fries'}]

    def test_clear_cache_keeps_queues(self, tmp_path):
        cache = self._cache(tmp_path)
        cache.cache_products([{'id': 1}])
        cache.queue_bill(make_bill('a'))
        cache.clear_cache()
        assert cache.get_cached_products() == []
        assert cache.get_last_sync_time() is None
        assert cache.pending_count() == 1

    def test_clear(self, tmp_path):
        cache = self._cache(tmp_path)
        cache.cache_products([{'id': 1}])
        cache.queue_bill(make_bill('a'))
        cache.clear()
        assert cache.pending_count() == 0
        assert cache.get_cached_products() == []

    def test_records_survive_restart(self, tmp_path):
        self._cache(tmp_path).queue_bill(make_bill('a'))
        assert [b.id for b in self._cache(tmp_path).get_pending_bills()] == ['a']

