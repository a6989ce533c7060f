"""Subscription lifecycle — the public surface of one creator's instance.

Composes the tier registry, the subscriber ledger, the billing engine
and a membership-token issuer:

    subscribe(tier)     → charge, issue membership token, record, signal
    unsubscribe()       → refuse while a pull-authorization is outstanding
    is_subscribed(addr) → active and unexpired
    charge_subscribers  → batch settlement, callable by anyone

subscribe and unsubscribe are all-or-nothing: a raised error means no
state changed. The one exception to "nothing changes" is structural:
once the ledger has moved funds, the subscriber record is always
written, even if the membership token could not be issued. A subscriber
is never left charged but not recorded.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Callable, Iterable, List, Optional

from tierflow.billing.engine import BillingEngine
from tierflow.billing.token_ledger import TokenLedger
from tierflow.config import BillingConfig
from tierflow.errors import (
    AllowanceNotZero,
    AlreadySubscribed,
    NotSubscribed,
    PaymentFailed,
    TierNotActive,
)
from tierflow.models.subscription import (
    ChargeFailure,
    SettlementReport,
    Subscriber,
    SubscriptionReceipt,
    Tier,
)
from tierflow.persistence.event_log import EventKind, EventLog
from tierflow.subscription.membership import (
    InMemoryMembershipIssuer,
    MembershipIssuer,
    token_id_from_int,
)
from tierflow.subscription.subscribers import SubscriberLedger
from tierflow.subscription.tiers import TierRegistry

logger = logging.getLogger(__name__)


def wall_clock() -> int:
    return int(time.time())


class SubscriptionLifecycle:
    """One creator's subscription instance.

    Usage:
        sub = SubscriptionLifecycle(
            address="0xsub", owner="creator", name="Fan Club",
            recipient="creator", protocol_collector="0xregistry",
            token_ledger=ledger,
        )
        sub.create_tier("creator", "Gold", 100)
        ledger.authorize_operator("alice", sub.address, 100)
        receipt = sub.subscribe("alice", 0)
    """

    def __init__(
        self,
        address: str,
        owner: str,
        name: str,
        recipient: str,
        protocol_collector: str,
        token_ledger: TokenLedger,
        membership_issuer: Optional[MembershipIssuer] = None,
        config: Optional[BillingConfig] = None,
        event_log: Optional[EventLog] = None,
        clock: Optional[Callable[[], int]] = None,
    ) -> None:
        self._address = address
        self._owner = owner
        self._name = name
        self._recipient = recipient
        self._protocol_collector = protocol_collector
        self._token_ledger = token_ledger
        self._issuer = membership_issuer or InMemoryMembershipIssuer(address)
        self._config = config or BillingConfig()
        self._clock = clock or wall_clock
        self._tokens_issued = 0

        self._tiers = TierRegistry(owner, address, event_log)
        self._subscribers = SubscriberLedger()
        self._engine = BillingEngine(
            self._tiers,
            self._subscribers,
            token_ledger,
            operator=address,
            recipient=recipient,
            protocol_collector=protocol_collector,
            config=self._config,
            event_log=event_log,
        )

    @property
    def address(self) -> str:
        return self._address

    @property
    def owner(self) -> str:
        return self._owner

    @property
    def name(self) -> str:
        return self._name

    @property
    def recipient(self) -> str:
        return self._recipient

    @property
    def protocol_collector(self) -> str:
        return self._protocol_collector

    @property
    def token_ledger(self) -> TokenLedger:
        return self._token_ledger

    @property
    def membership_issuer(self) -> MembershipIssuer:
        return self._issuer

    @property
    def engine(self) -> BillingEngine:
        return self._engine

    @property
    def total_tiers(self) -> int:
        return self._tiers.total_tiers

    # ------------------------------------------------------------------
    # Tiers
    # ------------------------------------------------------------------

    def create_tier(self, caller: str, name: str, price: int, now: Optional[int] = None) -> int:
        return self._tiers.create_tier(caller, name, price, now=self._now(now))

    def get_tier(self, tier_id: int) -> Tier:
        return self._tiers.get_tier(tier_id)

    def tiers(self) -> List[Tier]:
        return self._tiers.tiers()

    # ------------------------------------------------------------------
    # Subscribers
    # ------------------------------------------------------------------

    def subscribe(self, caller: str, tier_id: int, now: Optional[int] = None) -> SubscriptionReceipt:
        """Charge the tier price and start a fixed-length subscription.

        Raises:
            TierNotActive: tier is unknown or inactive.
            AlreadySubscribed: caller is active and unexpired, or a charge
                for the caller is already in flight.
            PaymentFailed: the token ledger rejected the charge.
        """
        now = self._now(now)
        with self._subscribers.lock_for(caller):
            tier = self._tiers.get_tier(tier_id)
            if not tier.active:
                raise TierNotActive(f"Tier {tier_id} is not active")
            if self._subscribers.is_currently_active(caller, now):
                raise AlreadySubscribed(f"{caller} is already subscribed")

            result = self._engine.charge(caller, tier_id, now)
            if not result.success:
                if result.failure == ChargeFailure.ALREADY_SUBSCRIBED:
                    raise AlreadySubscribed(result.detail)
                raise PaymentFailed(result.detail)

            token_id = self._issue_membership(caller)
            expiry = now + self._config.period_seconds
            self._subscribers.record(caller, tier_id, expiry)

            self._engine.record_event(
                EventKind.SUBSCRIBED,
                caller,
                {
                    "source": self._address,
                    "user": caller,
                    "tier_id": tier_id,
                    "expiry": expiry,
                    "membership_issued": token_id is not None,
                },
                now,
            )
            logger.info("%s subscribed to %s tier %d until %d", caller, self._address, tier_id, expiry)
            return SubscriptionReceipt(
                subscriber=caller,
                tier_id=tier_id,
                expiry=expiry,
                split=result.split,
                membership_token_id=token_id,
            )

    def unsubscribe(self, caller: str, now: Optional[int] = None) -> None:
        """Deactivate the caller's subscription.

        The caller must first revoke every pull-authorization granted to
        this instance; a dangling authorization after opting out is
        refused. The membership token is kept by the caller.

        Raises:
            NotSubscribed: caller has no active record.
            AllowanceNotZero: caller still authorizes this instance.
        """
        now = self._now(now)
        with self._subscribers.lock_for(caller):
            if not self._subscribers.get(caller).active:
                raise NotSubscribed(f"{caller} has no active subscription")
            allowance = self._token_ledger.authorized_amount(caller, self._address)
            if allowance != 0:
                raise AllowanceNotZero(
                    f"{caller} still authorizes {allowance} to {self._address}; "
                    f"revoke it before unsubscribing"
                )
            self._subscribers.deactivate(caller)
            self._engine.record_event(
                EventKind.UNSUBSCRIBED,
                caller,
                {"source": self._address, "user": caller},
                now,
            )

    def is_subscribed(self, address: str, now: Optional[int] = None) -> bool:
        return self._subscribers.is_currently_active(address, self._now(now))

    def get_subscriber(self, address: str) -> Subscriber:
        return self._subscribers.get(address)

    def subscriber_addresses(self) -> List[str]:
        return self._subscribers.addresses()

    def charge_subscribers(
        self,
        addresses: Iterable[str],
        now: Optional[int] = None,
    ) -> SettlementReport:
        """Settle a caller-chosen batch. Selection of who is due stays
        with the external scheduler."""
        return self._engine.settle_batch(list(addresses), self._now(now))

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _now(self, now: Optional[int]) -> int:
        return self._clock() if now is None else now

    def _issue_membership(self, caller: str) -> Optional[str]:
        """Issue one membership token. Returns its id, or None on failure.

        Runs after the payment has moved, so every exception from the
        issuer is caught: the issuer is an external collaborator whose
        failure modes are open-ended, and the subscriber must be recorded
        regardless. The full traceback is logged so programming errors stay
        visible.
        """
        self._tokens_issued += 1
        token_id = token_id_from_int(self._tokens_issued)
        try:
            self._issuer.issue(caller, token_id, True, b"")
        except Exception:
            logger.exception(
                "Membership issuance failed for %s on %s after payment; "
                "recording subscription without a token", caller, self._address,
            )
            return None
        return token_id

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "address": self._address,
            "owner": self._owner,
            "name": self._name,
            "recipient": self._recipient,
            "protocol_collector": self._protocol_collector,
            "token_ledger": self._token_ledger.address,
            "tokens_issued": self._tokens_issued,
            "tiers": self._tiers.to_dict()["tiers"],
            "subscribers": self._subscribers.to_dict(),
        }
        if isinstance(self._issuer, InMemoryMembershipIssuer):
            data["membership"] = self._issuer.to_dict()
        return data

    @classmethod
    def from_dict(
        cls,
        data: dict[str, Any],
        token_ledger: TokenLedger,
        config: Optional[BillingConfig] = None,
        event_log: Optional[EventLog] = None,
        clock: Optional[Callable[[], int]] = None,
    ) -> SubscriptionLifecycle:
        """Rebuild an instance from ``to_dict`` output without emitting events."""
        issuer = None
        if "membership" in data:
            issuer = InMemoryMembershipIssuer.from_dict(data["membership"])
        lifecycle = cls(
            address=data["address"],
            owner=data["owner"],
            name=data["name"],
            recipient=data["recipient"],
            protocol_collector=data["protocol_collector"],
            token_ledger=token_ledger,
            membership_issuer=issuer,
            config=config,
            event_log=event_log,
            clock=clock,
        )
        lifecycle._tokens_issued = int(data.get("tokens_issued", 0))
        lifecycle._tiers.load_tiers(data.get("tiers", []))
        lifecycle._subscribers.load_records(data.get("subscribers", {}))
        return lifecycle
