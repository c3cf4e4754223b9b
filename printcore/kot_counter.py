# KOT Counter - daily-resetting kitchen ticket numbers
# Persisted through LocalStore; degrades to in-memory counting if storage fails

import logging
import sqlite3
import threading
from datetime import date
from typing import Callable, Dict, Optional

logger = logging.getLogger(__name__)


STATE_KEY = 'kot_counter'


class KOTNumberManager:
    """Issues "01", "02", ... per calendar day (device local time).

    Assumes a single writer: two processes sharing one store can hand out
    the same number.
    """

    def __init__(self, store=None, today: Callable[[], date] = date.today):
        self.store = store
        self.today = today
        self.persistent = store is not None
        self._record: Optional[Dict] = None
        self._lock = threading.Lock()

    def _load(self) -> Optional[Dict]:
        if self.persistent:
            try:
                record = self.store.load_state(STATE_KEY)
                self._record = record if isinstance(record, dict) else None
                return self._record
            except (sqlite3.Error, OSError) as e:
                self._degrade(e)
        return self._record

    def _save(self, record: Dict):
        self._record = record
        if self.persistent:
            try:
                self.store.save_state(STATE_KEY, record)
            except (sqlite3.Error, OSError) as e:
                self._degrade(e)

    def _degrade(self, error: Exception):
        logger.warning(f"KOT counter storage unavailable, counting in memory only: {error}")
        self.persistent = False

    def _current(self) -> Optional[Dict]:
        """Today's record, or None when the stored one is from another day"""
        record = self._load()
        if record and record.get('date') == self.today().isoformat():
            return record
        return None

    def next(self) -> str:
        with self._lock:
            record = self._current()
            counter = int(record['counter']) + 1 if record else 1
            self._save({'date': self.today().isoformat(), 'counter': counter})
            return str(counter).zfill(2)

    def peek(self) -> int:
        with self._lock:
            record = self._current()
            return int(record['counter']) if record else 0

    def reset(self):
        with self._lock:
            self._save({'date': self.today().isoformat(), 'counter': 0})
