"""Tier registry — the creator's catalogue of subscription offerings.

Tiers are append-only: ids come from a counter starting at 0, and a tier
never changes after creation. Only the registry owner may create tiers.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from tierflow.errors import EmptyTierName, InvalidTierPrice, OnlyOwner
from tierflow.models.subscription import Tier
from tierflow.persistence.event_log import EventKind, EventLog


class TierRegistry:
    """Owns the set of subscription tiers for one subscription instance."""

    def __init__(
        self,
        owner: str,
        source: str,
        event_log: Optional[EventLog] = None,
    ) -> None:
        self._owner = owner
        self._source = source
        self._event_log = event_log
        self._tiers: Dict[int, Tier] = {}

    @property
    def owner(self) -> str:
        return self._owner

    @property
    def total_tiers(self) -> int:
        return len(self._tiers)

    def create_tier(
        self,
        caller: str,
        name: str,
        price: int,
        now: Optional[int] = None,
    ) -> int:
        """Create an active tier and return its id.

        Raises:
            OnlyOwner: caller is not the registry owner.
            EmptyTierName: name is empty or whitespace.
            InvalidTierPrice: price is zero or negative.
        """
        if caller != self._owner:
            raise OnlyOwner(f"{caller} is not the owner of {self._source}")
        if not name or not name.strip():
            raise EmptyTierName("Tier name must not be empty")
        if isinstance(price, bool) or not isinstance(price, int) or price <= 0:
            raise InvalidTierPrice(f"Tier price must be a positive integer, got {price!r}")

        tier_id = self.total_tiers
        tier = Tier(tier_id=tier_id, name=name, price=price, active=True)
        self._tiers[tier_id] = tier

        if self._event_log is not None:
            self._event_log.emit(
                EventKind.TIER_CREATED,
                actor_id=caller,
                payload={
                    "source": self._source,
                    "tier_id": tier_id,
                    "name": name,
                    "price": price,
                },
                timestamp=now,
            )
        return tier_id

    def get_tier(self, tier_id: int) -> Tier:
        """Return the tier, or the zero-valued inactive tier if unknown."""
        return self._tiers.get(tier_id) or Tier.empty(tier_id)

    def tiers(self) -> List[Tier]:
        return [self._tiers[i] for i in sorted(self._tiers)]

    def to_dict(self) -> dict[str, Any]:
        return {
            "owner": self._owner,
            "tiers": [
                {"tier_id": t.tier_id, "name": t.name, "price": t.price, "active": t.active}
                for t in self.tiers()
            ],
        }

    def load_tiers(self, rows: List[dict[str, Any]]) -> None:
        """Restore tiers from a snapshot without emitting events."""
        for row in rows:
            tier = Tier(
                tier_id=int(row["tier_id"]),
                name=row["name"],
                price=int(row["price"]),
                active=bool(row["active"]),
            )
            self._tiers[tier.tier_id] = tier
