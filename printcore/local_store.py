# Local Store - SQLite storage for the print/offline layer
# Key-value state plus id-keyed pending record queues

import sqlite3
import json
import threading
from datetime import datetime
from typing import List, Optional, Dict, Any


class LocalStore:
    """SQLite-backed durable store, initialized lazily on first access"""

    DB_PATH = "printcore_local.db"

    def __init__(self, db_path: str = None):
        self.db_path = db_path or self.DB_PATH
        self.lock = threading.Lock()
        self._initialized = False

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path)
        if not self._initialized:
            self._init_db(conn)
            self._initialized = True
        return conn

    def _init_db(self, conn: sqlite3.Connection):
        """Initialize database schema"""
        cursor = conn.cursor()

        # Reference data snapshots and counters
        cursor.execute('''
            CREATE TABLE IF NOT EXISTS state (
                key TEXT PRIMARY KEY,
                value TEXT,
                updated_at TEXT
            )
        ''')

        # Not-yet-persisted domain records; one row per (queue, record id)
        cursor.execute('''
            CREATE TABLE IF NOT EXISTS pending_records (
                seq INTEGER PRIMARY KEY AUTOINCREMENT,
                queue TEXT NOT NULL,
                record_id TEXT NOT NULL,
                payload TEXT NOT NULL,
                created_at TEXT NOT NULL,
                UNIQUE (queue, record_id)
            )
        ''')

        conn.commit()

    def save_state(self, key: str, value: Any):
        """Save state key-value"""
        with self.lock:
            conn = self._connect()
            try:
                conn.execute('''
                    INSERT OR REPLACE INTO state (key, value, updated_at)
                    VALUES (?, ?, ?)
                ''', (key, json.dumps(value), datetime.now().isoformat()))
                conn.commit()
            finally:
                conn.close()

    def load_state(self, key: str, default: Any = None) -> Any:
        """Load state value"""
        with self.lock:
            conn = self._connect()
            try:
                row = conn.execute('SELECT value FROM state WHERE key = ?', (key,)).fetchone()
            finally:
                conn.close()

        if row:
            try:
                return json.loads(row[0])
            except ValueError:
                return row[0]
        return default

    def delete_state(self, *keys: str):
        with self.lock:
            conn = self._connect()
            try:
                conn.executemany('DELETE FROM state WHERE key = ?', [(k,) for k in keys])
                conn.commit()
            finally:
                conn.close()

    def add_pending(self, queue: str, record_id: str, payload: Dict,
                    created_at: Optional[str] = None) -> bool:
        """Append a record unless its id is already queued. Returns True if added."""
        with self.lock:
            conn = self._connect()
            try:
                cursor = conn.execute('''
                    INSERT OR IGNORE INTO pending_records (queue, record_id, payload, created_at)
                    VALUES (?, ?, ?, ?)
                ''', (queue, record_id, json.dumps(payload),
                      created_at or datetime.now().isoformat()))
                conn.commit()
                return cursor.rowcount == 1
            finally:
                conn.close()

    def update_pending(self, queue: str, record_id: str, payload: Dict):
        with self.lock:
            conn = self._connect()
            try:
                conn.execute('''
                    UPDATE pending_records SET payload = ?
                    WHERE queue = ? AND record_id = ?
                ''', (json.dumps(payload), queue, record_id))
                conn.commit()
            finally:
                conn.close()

    def get_pending(self, queue: str) -> List[Dict]:
        """Pending records of one queue, oldest first"""
        with self.lock:
            conn = self._connect()
            conn.row_factory = sqlite3.Row
            try:
                rows = conn.execute('''
                    SELECT record_id, payload, created_at FROM pending_records
                    WHERE queue = ? ORDER BY seq ASC
                ''', (queue,)).fetchall()
            finally:
                conn.close()

        return [
            {'id': row['record_id'], 'payload': json.loads(row['payload']),
             'created_at': row['created_at']}
            for row in rows
        ]

    def remove_pending(self, queue: str, record_id: str):
        """Remove a record (after confirmed remote persistence)"""
        with self.lock:
            conn = self._connect()
            try:
                conn.execute('DELETE FROM pending_records WHERE queue = ? AND record_id = ?',
                             (queue, record_id))
                conn.commit()
            finally:
                conn.close()

    def count_pending(self, queue: str = None) -> int:
        with self.lock:
            conn = self._connect()
            try:
                if queue:
                    row = conn.execute('SELECT COUNT(*) FROM pending_records WHERE queue = ?',
                                       (queue,)).fetchone()
                else:
                    row = conn.execute('SELECT COUNT(*) FROM pending_records').fetchone()
            finally:
                conn.close()
            return row[0]

    def clear(self):
        """Drop all state and pending records"""
        with self.lock:
            conn = self._connect()
            try:
                conn.execute('DELETE FROM state')
                conn.execute('DELETE FROM pending_records')
                conn.commit()
            finally:
                conn.close()

    def get_stats(self) -> Dict:
        """Get store statistics"""
        with self.lock:
            conn = self._connect()
            try:
                stats = {}
                for queue, count in conn.execute(
                        'SELECT queue, COUNT(*) FROM pending_records GROUP BY queue'):
                    stats[f'pending_{queue}'] = count
                stats['state_keys'] = conn.execute('SELECT COUNT(*) FROM state').fetchone()[0]
            finally:
                conn.close()
            return stats
