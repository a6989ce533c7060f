"""State store — JSON snapshot of registry, instances and in-memory ledgers.

The event log is the audit trail; the state store is the fast path for
restarting. Writes go to a temporary file that replaces the snapshot
atomically, so a crash mid-write leaves the previous snapshot intact.
"""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Callable, Dict, Optional, Tuple

from tierflow.billing.token_ledger import InMemoryTokenLedger
from tierflow.config import BillingConfig
from tierflow.deployment.registry import DeploymentRegistry
from tierflow.persistence.event_log import EventLog

SNAPSHOT_VERSION = 1


class StateStore:
    """File-backed snapshot of the whole subscription system."""

    def __init__(self, storage_path: Path) -> None:
        self._storage_path = storage_path

    @property
    def storage_path(self) -> Path:
        return self._storage_path

    def exists(self) -> bool:
        return self._storage_path.exists()

    def save(
        self,
        registry: DeploymentRegistry,
        ledgers: Dict[str, InMemoryTokenLedger],
    ) -> None:
        snapshot = {
            "version": SNAPSHOT_VERSION,
            "registry": registry.to_dict(),
            "ledgers": [ledger.to_dict() for ledger in ledgers.values()],
        }
        tmp_path = self._storage_path.with_suffix(self._storage_path.suffix + ".tmp")
        with tmp_path.open("w", encoding="utf-8") as f:
            json.dump(snapshot, f, indent=2, sort_keys=True)
        os.replace(tmp_path, self._storage_path)

    def load(
        self,
        config: Optional[BillingConfig] = None,
        event_log: Optional[EventLog] = None,
        clock: Optional[Callable[[], int]] = None,
    ) -> Optional[Tuple[DeploymentRegistry, Dict[str, InMemoryTokenLedger]]]:
        """Return (registry, ledgers), or None if no snapshot exists."""
        if not self.exists():
            return None
        data = json.loads(self._storage_path.read_text(encoding="utf-8"))
        version = data.get("version")
        if version != SNAPSHOT_VERSION:
            raise ValueError(f"Unsupported state snapshot version: {version}")

        ledgers = {
            row["address"]: InMemoryTokenLedger.from_dict(row)
            for row in data.get("ledgers", [])
        }
        registry = DeploymentRegistry.from_dict(
            data["registry"],
            ledgers,
            config=config,
            event_log=event_log,
            clock=clock,
        )
        return registry, ledgers
