"""Append-only event log — the audit trail of every billing signal.

Every tier creation, subscription, payment, lapse and deployment is
appended here as an immutable, hashed record. The schema of each kind's
payload is stable: downstream indexers and auditors key on it.

The log can be persisted to a JSONL file (one JSON object per line) and
is verified on load: a tampered line or a replayed event ID aborts
recovery.
"""

from __future__ import annotations

import enum
import hashlib
import json
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional


class EventKind(str, enum.Enum):
    """Classification of billing events."""
    TIER_CREATED = "tier_created"
    # Part of the published schema; no operation emits these.
    TIER_UPDATED = "tier_updated"
    TIER_DEACTIVATED = "tier_deactivated"
    SUBSCRIBED = "subscribed"
    UNSUBSCRIBED = "unsubscribed"
    PAYMENT_SENT = "payment_sent"
    SUBSCRIPTION_LAPSED = "subscription_lapsed"
    SUBSCRIPTION_CONTRACT_CREATED = "subscription_contract_created"


def _canonical_hash(
    event_id: str,
    event_kind: str,
    timestamp_utc: str,
    actor_id: str,
    payload: dict[str, Any],
) -> str:
    canonical = json.dumps(
        {
            "event_id": event_id,
            "event_kind": event_kind,
            "timestamp_utc": timestamp_utc,
            "actor_id": actor_id,
            "payload": payload,
        },
        sort_keys=True,
        ensure_ascii=False,
    ).encode("utf-8")
    return f"sha256:{hashlib.sha256(canonical).hexdigest()}"


@dataclass(frozen=True)
class EventRecord:
    """A single immutable event.

    ``source`` is the address of the instance that emitted the event
    (a subscription instance or the deployment registry).
    """
    event_id: str
    event_kind: EventKind
    timestamp_utc: str
    actor_id: str
    payload: dict[str, Any]
    event_hash: str

    @staticmethod
    def create(
        event_id: str,
        event_kind: EventKind,
        actor_id: str,
        payload: dict[str, Any],
        timestamp: Optional[int] = None,
    ) -> EventRecord:
        """Create a new event record with computed hash.

        ``timestamp`` is in epoch seconds; defaults to the wall clock.
        """
        if timestamp is None:
            ts = datetime.now(timezone.utc)
        else:
            ts = datetime.fromtimestamp(timestamp, tz=timezone.utc)
        ts_str = ts.strftime("%Y-%m-%dT%H:%M:%SZ")
        return EventRecord(
            event_id=event_id,
            event_kind=event_kind,
            timestamp_utc=ts_str,
            actor_id=actor_id,
            payload=payload,
            event_hash=_canonical_hash(
                event_id, event_kind.value, ts_str, actor_id, payload,
            ),
        )

    @property
    def source(self) -> Optional[str]:
        return self.payload.get("source")

    def to_dict(self) -> dict[str, Any]:
        return {
            "event_id": self.event_id,
            "event_kind": self.event_kind.value,
            "timestamp_utc": self.timestamp_utc,
            "actor_id": self.actor_id,
            "payload": self.payload,
            "event_hash": self.event_hash,
        }


class EventLog:
    """Append-only event log with optional file persistence.

    Events can only be appended, never modified or deleted.
    """

    def __init__(self, storage_path: Optional[Path] = None) -> None:
        self._events: list[EventRecord] = []
        self._storage_path = storage_path
        self._event_ids: set[str] = set()

        if storage_path and storage_path.exists():
            self._load_from_file(storage_path)

    def emit(
        self,
        kind: EventKind,
        actor_id: str,
        payload: dict[str, Any],
        timestamp: Optional[int] = None,
    ) -> EventRecord:
        """Build and append the next event. IDs are sequential per log."""
        event = EventRecord.create(
            event_id=f"EVT-{self.count + 1:08d}",
            event_kind=kind,
            actor_id=actor_id,
            payload=payload,
            timestamp=timestamp,
        )
        self.append(event)
        return event

    def append(self, event: EventRecord) -> None:
        """Append an event to the log.

        Raises ValueError if event_id is a duplicate (replay protection).
        """
        if event.event_id in self._event_ids:
            raise ValueError(f"Duplicate event ID: {event.event_id}")

        self._events.append(event)
        self._event_ids.add(event.event_id)

        if self._storage_path:
            self._append_to_file(event)

    def events(
        self,
        kind: Optional[EventKind] = None,
        source: Optional[str] = None,
    ) -> list[EventRecord]:
        """Return events, optionally filtered by kind and emitting source."""
        result = list(self._events)
        if kind is not None:
            result = [e for e in result if e.event_kind == kind]
        if source is not None:
            result = [e for e in result if e.source == source]
        return result

    def event_hashes(self, kind: Optional[EventKind] = None) -> list[str]:
        return [e.event_hash for e in self.events(kind)]

    @property
    def count(self) -> int:
        return len(self._events)

    @property
    def last_event(self) -> Optional[EventRecord]:
        return self._events[-1] if self._events else None

    def _append_to_file(self, event: EventRecord) -> None:
        with self._storage_path.open("a", encoding="utf-8") as f:
            f.write(json.dumps(event.to_dict(), sort_keys=True, ensure_ascii=False) + "\n")

    def _load_from_file(self, path: Path) -> None:
        """Load events from a JSONL file with integrity verification.

        Fail-closed: rejects tampered records (hash mismatch) and
        duplicate event IDs.
        """
        with path.open("r", encoding="utf-8") as f:
            for line_num, line in enumerate(f, 1):
                line = line.strip()
                if not line:
                    continue
                data = json.loads(line)
                event_id = data["event_id"]

                if event_id in self._event_ids:
                    raise ValueError(
                        f"Duplicate event ID on recovery (line {line_num}): {event_id}"
                    )

                expected_hash = _canonical_hash(
                    event_id,
                    data["event_kind"],
                    data["timestamp_utc"],
                    data["actor_id"],
                    data["payload"],
                )
                if data["event_hash"] != expected_hash:
                    raise ValueError(
                        f"Integrity check failed (line {line_num}): event {event_id} "
                        f"stored hash {data['event_hash']} != computed {expected_hash}"
                    )

                event = EventRecord(
                    event_id=event_id,
                    event_kind=EventKind(data["event_kind"]),
                    timestamp_utc=data["timestamp_utc"],
                    actor_id=data["actor_id"],
                    payload=data["payload"],
                    event_hash=data["event_hash"],
                )
                self._events.append(event)
                self._event_ids.add(event_id)
