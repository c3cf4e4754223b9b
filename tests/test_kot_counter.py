# Tests for daily KOT numbering

import sqlite3
from datetime import date

from printcore.kot_counter import KOTNumberManager, STATE_KEY
from printcore.local_store import LocalStore


class Clock:
    def __init__(self, day):
        self.day = day

    def __call__(self):
        return self.day


class BrokenStore:
    def load_state(self, key, default=None):
        raise sqlite3.OperationalError('disk I/O error')

    def save_state(self, key, value):
        raise sqlite3.OperationalError('disk I/O error')


class TestKOTNumberManager:
    """Test KOT counter"""

    def setup_method(self):
        self.clock = Clock(date(2024, 3, 5))

    def test_sequence_same_day(self, tmp_path):
        manager = KOTNumberManager(LocalStore(str(tmp_path / 'pos.db')), today=self.clock)
        assert [manager.next() for _ in range(5)] == ['01', '02', '03', '04', '05']

    def test_new_day_resets(self, tmp_path):
        manager = KOTNumberManager(LocalStore(str(tmp_path / 'pos.db')), today=self.clock)
        for _ in range(17):
            manager.next()
        self.clock.day = date(2024, 3, 6)
        assert manager.peek() == 0
        assert manager.next() == '01'

    def test_persists_across_instances(self, tmp_path):
        store = LocalStore(str(tmp_path / 'pos.db'))
        KOTNumberManager(store, today=self.clock).next()
        KOTNumberManager(store, today=self.clock).next()
        manager = KOTNumberManager(store, today=self.clock)
        assert manager.peek() == 2
        assert store.load_state(STATE_KEY) == {'date': '2024-03-05', 'counter': 2}

    def test_peek_does_not_mutate(self, tmp_path):
        manager = KOTNumberManager(LocalStore(str(tmp_path / 'pos.db')), today=self.clock)
        manager.next()
        assert manager.peek() == 1
        assert manager.peek() == 1

    def test_reset(self, tmp_path):
        manager = KOTNumberManager(LocalStore(str(tmp_path / 'pos.db')), today=self.clock)
        manager.next()
        manager.next()
        manager.reset()
        assert manager.peek() == 0
        assert manager.next() == '01'

    def test_cleared_store_restarts_count(self, tmp_path):
        store = LocalStore(str(tmp_path / 'pos.db'))
        manager = KOTNumberManager(store, today=self.clock)
        for _ in range(3):
            manager.next()
        store.clear()
        assert manager.peek() == 0
        assert manager.next() == '01'

    def test_three_digit_numbers(self):
        manager = KOTNumberManager(today=self.clock)
        for _ in range(99):
            manager.next()
        assert manager.next() == '100'

    def test_storage_failure_degrades_to_memory(self):
        manager = KOTNumberManager(BrokenStore(), today=self.clock)
        assert manager.next() == '01'
        assert manager.persistent is False
        assert manager.next() == '02'
        assert manager.peek() == 2
