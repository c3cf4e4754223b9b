# Offline Cache - queue bills and kitchen tickets while offline, replay them later
# Also keeps last-write-wins snapshots of menu and table layout

import logging
import threading
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from .local_store import LocalStore


logger = logging.getLogger(__name__)


BILLS_QUEUE = 'bills'
KOTS_QUEUE = 'kots'
PRODUCTS_KEY = 'products'
SECTIONS_KEY = 'sections'
LAST_SYNC_KEY = 'last_sync'
BILL_ID_MAP_KEY = 'synced_bill_ids'
LAST_DRAIN_KEY = 'last_drain'


@dataclass
class PendingBill:
    """A bill created offline. `id` is the client-generated bill id."""
    id: str
    data: Dict[str, Any]
    items: List[Dict[str, Any]] = field(default_factory=list)
    created_at: Optional[str] = None
    # Set once the bill row exists remotely; a retry then only re-sends items
    remote_bill_id: Optional[str] = None
    bill_number: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'PendingBill':
        return cls(
            id=data['id'],
            data=data.get('data') or {},
            items=data.get('items') or [],
            created_at=data.get('created_at'),
            remote_bill_id=data.get('remote_bill_id'),
            bill_number=data.get('bill_number'),
        )


@dataclass
class PendingKOT:
    """Items of a bill that were sent to the kitchen while offline"""
    id: str
    bill_id: str
    item_ids: List[str] = field(default_factory=list)
    printed_at: Optional[str] = None
    created_at: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'PendingKOT':
        return cls(
            id=data['id'],
            bill_id=data['bill_id'],
            item_ids=list(data.get('item_ids') or []),
            printed_at=data.get('printed_at'),
            created_at=data.get('created_at'),
        )


class OfflineCache:
    """Durable replay queues for bills and KOTs, keyed by client id"""

    def __init__(self, store: LocalStore, backend, is_online: Callable[[], bool] = None):
        self.store = store
        self.backend = backend
        self.is_online = is_online or backend.check_health
        self._drain_lock = threading.Lock()

    # -- queueing --

    def queue_bill(self, bill: PendingBill) -> bool:
        """Queue a bill for replay. Returns False if its id is already queued."""
        bill.created_at = bill.created_at or datetime.now().isoformat()
        added = self.store.add_pending(BILLS_QUEUE, bill.id, asdict(bill), bill.created_at)
        if added:
            logger.info(f"Bill {bill.id} queued offline")
        else:
            logger.debug(f"Bill {bill.id} already queued")
        return added

    def queue_kot(self, kot: PendingKOT) -> bool:
        """Queue a kitchen-sent mark for replay. Returns False if its id is already queued."""
        kot.created_at = kot.created_at or datetime.now().isoformat()
        kot.printed_at = kot.printed_at or kot.created_at
        added = self.store.add_pending(KOTS_QUEUE, kot.id, asdict(kot), kot.created_at)
        if added:
            logger.info(f"KOT {kot.id} queued offline")
        return added

    def get_pending_bills(self) -> List[PendingBill]:
        return [PendingBill.from_dict(r['payload']) for r in self.store.get_pending(BILLS_QUEUE)]

    def get_pending_kots(self) -> List[PendingKOT]:
        return [PendingKOT.from_dict(r['payload']) for r in self.store.get_pending(KOTS_QUEUE)]

    def pending_count(self) -> int:
        return self.store.count_pending()

    # -- replay --

    def drain(self) -> Dict[str, Any]:
        """Replay every queued record. Never raises; failures stay queued.

        A drain already in progress makes this call return immediately
        with 'skipped' set.
        """
        report = {
            'started_at': datetime.now().isoformat(),
            'skipped': False,
            'bills_synced': 0,
            'bills_failed': 0,
            'kots_synced': 0,
            'kots_failed': 0,
        }

        if not self._drain_lock.acquire(blocking=False):
            logger.debug("Drain already in progress")
            report['skipped'] = True
            report['reason'] = 'in_progress'
            return report

        try:
            if not self._check_online():
                report['skipped'] = True
                report['reason'] = 'offline'
                return report

            bills = self.get_pending_bills()
            kots = self.get_pending_kots()
            if bills or kots:
                logger.info(f"Syncing {len(bills)} bill(s) and {len(kots)} KOT(s)")

            for bill in bills:
                if self._replay_bill(bill):
                    report['bills_synced'] += 1
                else:
                    report['bills_failed'] += 1

            for kot in kots:
                if self._replay_kot(kot):
                    report['kots_synced'] += 1
                else:
                    report['kots_failed'] += 1

            report['completed_at'] = datetime.now().isoformat()
            self.store.save_state(LAST_DRAIN_KEY, report)
            return report
        finally:
            self._drain_lock.release()

    def on_online(self) -> Dict[str, Any]:
        """Connectivity came back; drain unless a drain is already running"""
        logger.info("Back online, syncing offline data")
        return self.drain()

    def _check_online(self) -> bool:
        try:
            return bool(self.is_online())
        except Exception as e:
            logger.warning(f"Connectivity check failed: {e}")
            return False

    def _replay_bill(self, bill: PendingBill) -> bool:
        """Number, insert and itemize one bill. Never raises; failure is logged only."""
        try:
            if bill.remote_bill_id is None:
                bill.bill_number = self.backend.generate_bill_number()
                row = self.backend.insert_bill(dict(bill.data, bill_number=bill.bill_number))
                bill.remote_bill_id = row['id']
                # Checkpoint so a failed item insert does not create the bill twice
                self.store.update_pending(BILLS_QUEUE, bill.id, asdict(bill))
                self._remember_bill(bill.id, bill.remote_bill_id)

            self.backend.insert_bill_items(bill.remote_bill_id, bill.items)
        except Exception as e:
            logger.warning(f"Bill {bill.id} sync failed (will retry later): {e}")
            return False

        self.store.remove_pending(BILLS_QUEUE, bill.id)
        logger.info(f"Synced bill {bill.id} as {bill.bill_number}")
        return True

    def _replay_kot(self, kot: PendingKOT) -> bool:
        bill_id = self._resolve_bill_id(kot.bill_id)
        if bill_id is None:
            logger.warning(f"KOT {kot.id} waits for bill {kot.bill_id} to sync")
            return False
        try:
            self.backend.mark_items_sent_to_kitchen(bill_id, kot.item_ids, kot.printed_at)
        except Exception as e:
            logger.warning(f"KOT {kot.id} sync failed (will retry later): {e}")
            return False

        self.store.remove_pending(KOTS_QUEUE, kot.id)
        logger.info(f"Synced KOT {kot.id}")
        return True

    def _remember_bill(self, local_id: str, remote_id: str):
        mapping = self.store.load_state(BILL_ID_MAP_KEY, {})
        mapping[local_id] = remote_id
        self.store.save_state(BILL_ID_MAP_KEY, mapping)

    def _resolve_bill_id(self, bill_id: str) -> Optional[str]:
        """Remote id for a bill; None while the bill itself is still unsynced"""
        mapping = self.store.load_state(BILL_ID_MAP_KEY, {})
        if bill_id in mapping:
            return mapping[bill_id]
        pending_ids = {r['id'] for r in self.store.get_pending(BILLS_QUEUE)}
        if bill_id in pending_ids:
            return None
        return bill_id

    # -- reference data --

    def cache_products(self, products: List[Dict]):
        self.store.save_state(PRODUCTS_KEY, products)
        self.store.save_state(LAST_SYNC_KEY, datetime.now().isoformat())

    def cache_sections(self, sections: List[Dict]):
        self.store.save_state(SECTIONS_KEY, sections)

    def get_cached_products(self) -> List[Dict]:
        return self.store.load_state(PRODUCTS_KEY, [])

    def get_cached_sections(self) -> List[Dict]:
        return self.store.load_state(SECTIONS_KEY, [])

    def get_last_sync_time(self) -> Optional[datetime]:
        value = self.store.load_state(LAST_SYNC_KEY)
        return datetime.fromisoformat(value) if value else None

    def clear_cache(self):
        """Forget reference data snapshots; replay queues are kept"""
        self.store.delete_state(PRODUCTS_KEY, SECTIONS_KEY, LAST_SYNC_KEY)

    def clear(self):
        """Drop everything, including unsynced records"""
        self.store.clear()
        logger.warning("Offline cache cleared")

    def get_status(self) -> Dict:
        return {
            'pending_bills': self.store.count_pending(BILLS_QUEUE),
            'pending_kots': self.store.count_pending(KOTS_QUEUE),
            'last_sync': self.store.load_state(LAST_SYNC_KEY),
            'last_drain': self.store.load_state(LAST_DRAIN_KEY),
        }
