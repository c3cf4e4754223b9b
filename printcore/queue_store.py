# Queue Store - server-side print job queue (SQLite)
# pending -> processing -> completed | failed, with atomic agent pickup

import sqlite3
import json
import logging
import threading
import uuid
from datetime import datetime, timedelta, timezone
from typing import List, Optional, Dict, Any

logger = logging.getLogger(__name__)


JOB_TYPES = ('kot', 'bill', 'test')
STATUS_PENDING = 'pending'
STATUS_PROCESSING = 'processing'
STATUS_COMPLETED = 'completed'
STATUS_FAILED = 'failed'

STATUS_FIELDS = ('id', 'status', 'error_message', 'created_at', 'processed_at')


class QueueError(Exception):
    """Rejected submission, unknown job or illegal state transition"""

    def __init__(self, message: str, status_code: int = 400):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


def _now() -> datetime:
    return datetime.now(timezone.utc)


class PrintJobStore:
    """Durable print job queue. Safe across threads and processes sharing one file."""

    DB_PATH = "printcore_queue.db"

    def __init__(self, db_path: str = None, visibility_timeout: Optional[float] = None):
        self.db_path = db_path or self.DB_PATH
        # Seconds a job may stay 'processing' before pickup returns it to 'pending'
        self.visibility_timeout = visibility_timeout or None
        self.lock = threading.Lock()
        self._init_db()

    def _connect(self) -> sqlite3.Connection:
        # Autocommit mode; write transactions are opened explicitly with BEGIN IMMEDIATE
        conn = sqlite3.connect(self.db_path, isolation_level=None, timeout=10)
        conn.row_factory = sqlite3.Row
        return conn

    def _init_db(self):
        """Initialize database schema"""
        with self.lock:
            conn = self._connect()
            try:
                conn.execute('''
                    CREATE TABLE IF NOT EXISTS print_jobs (
                        seq INTEGER PRIMARY KEY AUTOINCREMENT,
                        id TEXT NOT NULL UNIQUE,
                        job_type TEXT NOT NULL,
                        printer_role TEXT NOT NULL DEFAULT 'counter',
                        payload TEXT NOT NULL,
                        status TEXT NOT NULL DEFAULT 'pending',
                        error_message TEXT,
                        created_at TEXT NOT NULL,
                        picked_at TEXT,
                        processed_at TEXT,
                        agent_id TEXT
                    )
                ''')
                conn.execute('''
                    CREATE INDEX IF NOT EXISTS idx_print_jobs_status
                    ON print_jobs (status, seq)
                ''')
            finally:
                conn.close()

    @staticmethod
    def _row_to_job(row: sqlite3.Row) -> Dict[str, Any]:
        job = dict(row)
        job.pop('seq', None)
        job['payload'] = json.loads(job['payload'])
        return job

    def submit(self, job_type: str, payload: Dict, printer_role: Optional[str] = None) -> str:
        """Create a pending job and return its id"""
        if job_type not in JOB_TYPES:
            raise QueueError(f"Invalid job_type: {job_type}")
        if not isinstance(payload, dict):
            raise QueueError("payload must be an object")

        job_id = str(uuid.uuid4())
        with self.lock:
            conn = self._connect()
            try:
                conn.execute('''
                    INSERT INTO print_jobs (id, job_type, printer_role, payload, status, created_at)
                    VALUES (?, ?, ?, ?, ?, ?)
                ''', (job_id, job_type, printer_role or 'counter', json.dumps(payload),
                      STATUS_PENDING, _now().isoformat()))
            finally:
                conn.close()

        logger.info(f"Print job created: {job_id} ({job_type})")
        return job_id

    def pickup(self, agent_id: str, limit: int = 10) -> List[Dict]:
        """Claim up to `limit` oldest pending jobs for one agent.

        Selection and the mark-as-processing update run in one write
        transaction, so a job is handed to at most one agent.
        """
        limit = min(int(limit), 100)
        if limit <= 0:
            return []
        picked_at = _now().isoformat()

        with self.lock:
            conn = self._connect()
            try:
                conn.execute('BEGIN IMMEDIATE')
                try:
                    if self.visibility_timeout:
                        self._requeue_stale(conn, self.visibility_timeout)
                    ids = [row['id'] for row in conn.execute('''
                        SELECT id FROM print_jobs
                        WHERE status = ?
                        ORDER BY seq ASC
                        LIMIT ?
                    ''', (STATUS_PENDING, limit))]
                    if ids:
                        marks = ','.join('?' * len(ids))
                        conn.execute(f'''
                            UPDATE print_jobs
                            SET status = ?, agent_id = ?, picked_at = ?
                            WHERE status = ? AND id IN ({marks})
                        ''', (STATUS_PROCESSING, agent_id, picked_at, STATUS_PENDING, *ids))
                        rows = conn.execute(f'''
                            SELECT * FROM print_jobs WHERE id IN ({marks}) ORDER BY seq ASC
                        ''', ids).fetchall()
                    else:
                        rows = []
                    conn.execute('COMMIT')
                except Exception:
                    conn.execute('ROLLBACK')
                    raise
            finally:
                conn.close()

        if rows:
            logger.info(f"Agent {agent_id} picked up {len(rows)} job(s)")
        return [self._row_to_job(row) for row in rows]

    def complete(self, job_id: str, success: bool, error_message: Optional[str] = None) -> Dict:
        """Record the agent's outcome for a processing job"""
        status = STATUS_COMPLETED if success else STATUS_FAILED
        with self.lock:
            conn = self._connect()
            try:
                conn.execute('BEGIN IMMEDIATE')
                try:
                    row = conn.execute('SELECT status FROM print_jobs WHERE id = ?',
                                       (job_id,)).fetchone()
                    if row is None:
                        raise QueueError(f"Job not found: {job_id}", status_code=404)
                    if row['status'] != STATUS_PROCESSING:
                        raise QueueError(
                            f"Job {job_id} is {row['status']}, not processing", status_code=409
                        )
                    conn.execute('''
                        UPDATE print_jobs SET status = ?, error_message = ?, processed_at = ?
                        WHERE id = ?
                    ''', (status, error_message or None, _now().isoformat(), job_id))
                    conn.execute('COMMIT')
                except Exception:
                    conn.execute('ROLLBACK')
                    raise
            finally:
                conn.close()

        if success:
            logger.info(f"Print job {job_id} completed")
        else:
            logger.warning(f"Print job {job_id} failed: {error_message}")
        return self.get_status(job_id)

    def get_status(self, job_id: str) -> Optional[Dict]:
        """Current state of a job, without side effects"""
        with self.lock:
            conn = self._connect()
            try:
                row = conn.execute(f'''
                    SELECT {', '.join(STATUS_FIELDS)} FROM print_jobs WHERE id = ?
                ''', (job_id,)).fetchone()
            finally:
                conn.close()
        return dict(row) if row else None

    def get_job(self, job_id: str) -> Optional[Dict]:
        with self.lock:
            conn = self._connect()
            try:
                row = conn.execute('SELECT * FROM print_jobs WHERE id = ?', (job_id,)).fetchone()
            finally:
                conn.close()
        return self._row_to_job(row) if row else None

    @staticmethod
    def _requeue_stale(conn: sqlite3.Connection, timeout: float) -> int:
        cutoff = (_now() - timedelta(seconds=timeout)).isoformat()
        cursor = conn.execute('''
            UPDATE print_jobs SET status = ?, agent_id = NULL, picked_at = NULL
            WHERE status = ? AND picked_at < ?
        ''', (STATUS_PENDING, STATUS_PROCESSING, cutoff))
        if cursor.rowcount:
            logger.warning(f"Returned {cursor.rowcount} stale processing job(s) to pending")
        return cursor.rowcount

    def requeue_stale(self, timeout: Optional[float] = None) -> int:
        """Return jobs stuck in 'processing' longer than timeout seconds to 'pending'"""
        timeout = timeout if timeout is not None else self.visibility_timeout
        if not timeout:
            return 0
        with self.lock:
            conn = self._connect()
            try:
                conn.execute('BEGIN IMMEDIATE')
                count = self._requeue_stale(conn, timeout)
                conn.execute('COMMIT')
            finally:
                conn.close()
        return count

    def purge_finished(self, max_age_hours: float = 24) -> int:
        """Delete completed/failed jobs finished more than max_age_hours ago"""
        cutoff = (_now() - timedelta(hours=max_age_hours)).isoformat()
        with self.lock:
            conn = self._connect()
            try:
                cursor = conn.execute('''
                    DELETE FROM print_jobs
                    WHERE status IN (?, ?) AND COALESCE(processed_at, created_at) < ?
                ''', (STATUS_COMPLETED, STATUS_FAILED, cutoff))
                deleted = cursor.rowcount
            finally:
                conn.close()
        if deleted:
            logger.info(f"Purged {deleted} finished print job(s)")
        return deleted

    def get_stats(self) -> Dict:
        """Job counts per status"""
        with self.lock:
            conn = self._connect()
            try:
                rows = conn.execute(
                    'SELECT status, COUNT(*) AS n FROM print_jobs GROUP BY status'
                ).fetchall()
            finally:
                conn.close()
        stats = {status: 0 for status in (STATUS_PENDING, STATUS_PROCESSING,
                                          STATUS_COMPLETED, STATUS_FAILED)}
        stats.update({row['status']: row['n'] for row in rows})
        return stats
