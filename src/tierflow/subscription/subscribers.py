"""Subscriber ledger — the authoritative membership record per address.

Addresses that never subscribed read as the zero-valued record, exactly
like a lapsed subscriber; ``known()`` is the only way to tell them apart.
Records are never deleted: deactivation flips the flag and keeps the
tier reference and expiry as a historical trace.

Each address also owns a re-entrant lock. Every operation that reads and
then mutates one subscriber (subscribe, unsubscribe, a settlement
element) holds it for the whole read-charge-write sequence. Locks are
held weakly: a lock lives only while some caller references it, so
settling arbitrary addresses does not grow the table.
"""

from __future__ import annotations

import threading
import weakref
from typing import Any, Dict, List

from tierflow.models.subscription import Subscriber


class SubscriberLedger:
    """In-memory per-address subscriber state."""

    def __init__(self) -> None:
        self._records: Dict[str, Subscriber] = {}
        self._locks: weakref.WeakValueDictionary[str, threading.RLock] = (
            weakref.WeakValueDictionary()
        )
        self._locks_guard = threading.Lock()

    def get(self, address: str) -> Subscriber:
        """Return a copy of the record (zero-valued if absent)."""
        record = self._records.get(address)
        if record is None:
            return Subscriber()
        return Subscriber(active=record.active, expiry=record.expiry, tier_id=record.tier_id)

    def known(self, address: str) -> bool:
        return address in self._records

    def is_currently_active(self, address: str, now: int) -> bool:
        record = self._records.get(address)
        return record is not None and record.is_current(now)

    def record(self, address: str, tier_id: int, expiry: int) -> Subscriber:
        """Create or overwrite the record as active."""
        record = Subscriber(active=True, expiry=expiry, tier_id=tier_id)
        self._records[address] = record
        return record

    def deactivate(self, address: str) -> None:
        """Mark inactive. Unknown addresses are already inactive."""
        record = self._records.get(address)
        if record is not None:
            record.active = False

    def addresses(self) -> List[str]:
        return list(self._records)

    def lock_for(self, address: str) -> threading.RLock:
        with self._locks_guard:
            lock = self._locks.get(address)
            if lock is None:
                lock = threading.RLock()
                self._locks[address] = lock
            return lock

    def to_dict(self) -> dict[str, Any]:
        return {
            address: {"active": r.active, "expiry": r.expiry, "tier_id": r.tier_id}
            for address, r in self._records.items()
        }

    def load_records(self, data: dict[str, Any]) -> None:
        for address, row in data.items():
            self._records[address] = Subscriber(
                active=bool(row["active"]),
                expiry=int(row["expiry"]),
                tier_id=int(row["tier_id"]),
            )
