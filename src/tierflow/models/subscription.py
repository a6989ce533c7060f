"""Subscription models — tiers, subscriber records, charge results.

All monetary values are integers in the smallest unit of the payment
token. No floats in finance.

Invariants enforced by these models and their owners:
- A tier's price is positive and its name non-empty (at creation)
- protocol_fee + creator_net == price for every split
- An absent subscriber reads as the zero-valued record, identical to a
  lapsed one for every billing decision
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Optional


@dataclass(frozen=True)
class Tier:
    """A named, fixed-price subscription offering.

    Immutable once created. Unknown ids resolve to the zero-valued tier
    (empty name, zero price, inactive), which no caller may use.
    """
    tier_id: int
    name: str
    price: int
    active: bool

    @staticmethod
    def empty(tier_id: int) -> Tier:
        return Tier(tier_id=tier_id, name="", price=0, active=False)


@dataclass
class Subscriber:
    """Per-address membership state.

    Mutable. Deactivation flips ``active`` and keeps the historical
    tier reference and expiry.
    """
    active: bool = False
    expiry: int = 0
    tier_id: int = 0

    def is_current(self, now: int) -> bool:
        return self.active and self.expiry > now


@dataclass(frozen=True)
class FeeSplit:
    """Result of splitting a price between the protocol and the creator.

    Invariant: protocol_fee + creator_net == price
    """
    protocol_fee: int
    creator_net: int

    @property
    def price(self) -> int:
        return self.protocol_fee + self.creator_net


class ChargeFailure(str, enum.Enum):
    """Why a charge did not go through.

    The ledger's root cause is deliberately collapsed into PAYMENT_FAILED.
    """
    ALREADY_SUBSCRIBED = "AlreadySubscribed"
    PAYMENT_FAILED = "PaymentFailed"


@dataclass(frozen=True)
class ChargeResult:
    """Outcome of a single charge attempt. Never raised, always returned."""
    subscriber: str
    tier_id: int
    success: bool
    split: Optional[FeeSplit] = None
    failure: Optional[ChargeFailure] = None
    detail: str = ""

    @staticmethod
    def ok(subscriber: str, tier_id: int, split: FeeSplit) -> ChargeResult:
        return ChargeResult(
            subscriber=subscriber, tier_id=tier_id, success=True, split=split,
        )

    @staticmethod
    def failed(
        subscriber: str,
        tier_id: int,
        failure: ChargeFailure,
        detail: str = "",
    ) -> ChargeResult:
        return ChargeResult(
            subscriber=subscriber,
            tier_id=tier_id,
            success=False,
            failure=failure,
            detail=detail,
        )


@dataclass
class SettlementReport:
    """Per-address outcome of one settlement batch, in input order."""
    charged: list[str] = field(default_factory=list)
    lapsed: list[str] = field(default_factory=list)
    results: list[ChargeResult] = field(default_factory=list)

    @property
    def processed(self) -> int:
        return len(self.charged) + len(self.lapsed)


@dataclass(frozen=True)
class SubscriptionReceipt:
    """What a successful subscribe call produced."""
    subscriber: str
    tier_id: int
    expiry: int
    split: FeeSplit
    membership_token_id: Optional[str]
