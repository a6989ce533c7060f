"""tierflow service — unified facade over the subscription engine.

This is the primary interface for programmatic access. It owns:
- the deployment registry (subscription instances per creator)
- the in-memory token ledgers that act as payment sources
- the event log (audit trail of every billing signal)
- the optional state store (snapshot persisted after each mutation)

All operations return a ServiceResult. Domain errors never escape as
exceptions: they are reported in ``errors`` with the error kind in
``data["error_kind"]`` so callers can branch on it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, Optional

from tierflow.billing.token_ledger import InMemoryTokenLedger
from tierflow.config import BillingConfig
from tierflow.deployment.registry import DeploymentRegistry
from tierflow.errors import SubscriptionError
from tierflow.persistence.event_log import EventLog
from tierflow.persistence.state_store import StateStore
from tierflow.subscription.lifecycle import SubscriptionLifecycle, wall_clock

logger = logging.getLogger(__name__)

DEFAULT_REGISTRY_ADDRESS = "0x" + "0" * 39 + "1"
DEFAULT_TOKEN_ADDRESS = "0x" + "0" * 39 + "2"


@dataclass(frozen=True)
class ServiceResult:
    """Result of a service operation."""
    success: bool
    errors: list[str] = field(default_factory=list)
    data: dict[str, Any] = field(default_factory=dict)


def _failure(e: Exception) -> ServiceResult:
    if isinstance(e, SubscriptionError):
        return ServiceResult(
            success=False,
            errors=[f"{e.kind}: {e}"],
            data={"error_kind": e.kind},
        )
    return ServiceResult(success=False, errors=[str(e)])


class SubscriptionService:
    """Facade over registry, ledgers, event log and state store.

    Usage:
        service = SubscriptionService()
        result = service.create_subscription("creator", "Fan Club")
        sub = result.data["address"]
        service.create_tier(sub, "creator", "Gold", 100)
        service.fund_account("alice", 1_000)
        service.authorize("alice", sub, 100)
        service.subscribe(sub, "alice", 0)

    Persistence (optional):
        service = SubscriptionService(event_log=log, state_store=store)
        # State is loaded on construction and saved after each mutation.
    """

    def __init__(
        self,
        config: Optional[BillingConfig] = None,
        event_log: Optional[EventLog] = None,
        state_store: Optional[StateStore] = None,
        registry_address: str = DEFAULT_REGISTRY_ADDRESS,
        token_address: str = DEFAULT_TOKEN_ADDRESS,
        clock: Optional[Callable[[], int]] = None,
    ) -> None:
        self._config = config or BillingConfig()
        self._event_log = event_log if event_log is not None else EventLog()
        self._state_store = state_store
        self._clock = clock or wall_clock
        self._default_token = token_address

        loaded = None
        if state_store is not None:
            loaded = state_store.load(self._config, self._event_log, self._clock)
        if loaded is not None:
            self._registry, self._ledgers = loaded
        else:
            self._registry = DeploymentRegistry(
                registry_address,
                config=self._config,
                event_log=self._event_log,
                clock=self._clock,
            )
            self._ledgers: Dict[str, InMemoryTokenLedger] = {}
        self._ledgers.setdefault(token_address, InMemoryTokenLedger(token_address))

        # Set when a snapshot write fails after in-memory state changed.
        self._persistence_degraded = False

    @property
    def registry(self) -> DeploymentRegistry:
        return self._registry

    @property
    def event_log(self) -> EventLog:
        return self._event_log

    def ledger(self, token: Optional[str] = None) -> InMemoryTokenLedger:
        return self._ledgers[token or self._default_token]

    # ------------------------------------------------------------------
    # Deployment
    # ------------------------------------------------------------------

    def create_subscription(
        self,
        creator: str,
        name: str,
        recipient: Optional[str] = None,
        token: Optional[str] = None,
    ) -> ServiceResult:
        """Deploy a subscription instance. Recipient defaults to creator."""
        ledger = self._ledgers.get(token or self._default_token)
        if ledger is None:
            return ServiceResult(success=False, errors=[f"Unknown token ledger: {token}"])
        instance = self._registry.create_subscription(
            creator, name, recipient or creator, ledger,
        )
        return self._persisted({"address": instance.address, "creator": creator, "name": name})

    # ------------------------------------------------------------------
    # Tiers
    # ------------------------------------------------------------------

    def create_tier(self, subscription: str, caller: str, name: str, price: int) -> ServiceResult:
        try:
            tier_id = self._registry.get(subscription).create_tier(caller, name, price)
        except (SubscriptionError, ValueError) as e:
            return _failure(e)
        return self._persisted({"tier_id": tier_id, "name": name, "price": price})

    def list_tiers(self, subscription: str) -> ServiceResult:
        try:
            tiers = self._registry.get(subscription).tiers()
        except SubscriptionError as e:
            return _failure(e)
        return ServiceResult(success=True, data={
            "tiers": [
                {"tier_id": t.tier_id, "name": t.name, "price": t.price, "active": t.active}
                for t in tiers
            ],
        })

    # ------------------------------------------------------------------
    # Payment source
    # ------------------------------------------------------------------

    def fund_account(self, holder: str, amount: int, token: Optional[str] = None) -> ServiceResult:
        try:
            ledger = self.ledger(token)
            ledger.mint(holder, amount)
        except (KeyError, ValueError) as e:
            return _failure(e)
        return self._persisted({"holder": holder, "balance": ledger.balance_of(holder)})

    def authorize(self, holder: str, subscription: str, amount: int) -> ServiceResult:
        """Grant ``subscription`` a pull-authorization on the holder's funds."""
        try:
            instance = self._registry.get(subscription)
            self._ledgers[instance.token_ledger.address].authorize_operator(
                holder, instance.address, amount,
            )
        except (SubscriptionError, ValueError) as e:
            return _failure(e)
        return self._persisted({"holder": holder, "operator": subscription, "amount": amount})

    def revoke(self, holder: str, subscription: str) -> ServiceResult:
        return self.authorize(holder, subscription, 0)

    # ------------------------------------------------------------------
    # Subscribers
    # ------------------------------------------------------------------

    def subscribe(
        self,
        subscription: str,
        caller: str,
        tier_id: int,
        now: Optional[int] = None,
    ) -> ServiceResult:
        try:
            receipt = self._registry.get(subscription).subscribe(caller, tier_id, now=now)
        except SubscriptionError as e:
            return _failure(e)
        return self._persisted({
            "subscriber": receipt.subscriber,
            "tier_id": receipt.tier_id,
            "expiry": receipt.expiry,
            "creator_net": receipt.split.creator_net,
            "protocol_fee": receipt.split.protocol_fee,
            "membership_token_id": receipt.membership_token_id,
        })

    def unsubscribe(self, subscription: str, caller: str, now: Optional[int] = None) -> ServiceResult:
        try:
            self._registry.get(subscription).unsubscribe(caller, now=now)
        except SubscriptionError as e:
            return _failure(e)
        return self._persisted({"subscriber": caller})

    def is_subscribed(self, subscription: str, address: str, now: Optional[int] = None) -> ServiceResult:
        try:
            instance = self._registry.get(subscription)
        except SubscriptionError as e:
            return _failure(e)
        record = instance.get_subscriber(address)
        return ServiceResult(success=True, data={
            "subscribed": instance.is_subscribed(address, now=now),
            "active": record.active,
            "expiry": record.expiry,
            "tier_id": record.tier_id,
        })

    def charge_subscribers(
        self,
        subscription: str,
        addresses: Iterable[str],
        now: Optional[int] = None,
    ) -> ServiceResult:
        try:
            report = self._registry.get(subscription).charge_subscribers(addresses, now=now)
        except SubscriptionError as e:
            return _failure(e)
        return self._persisted({"charged": report.charged, "lapsed": report.lapsed})

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def status(self) -> dict[str, Any]:
        instances = self._registry.instances()
        return {
            "registry": self._registry.address,
            "config": self._config.to_dict(),
            "subscriptions": [
                {
                    "address": i.address,
                    "name": i.name,
                    "owner": i.owner,
                    "tiers": i.total_tiers,
                    "active_subscribers": sum(
                        1 for a in i.subscriber_addresses() if i.is_subscribed(a)
                    ),
                }
                for i in instances
            ],
            "protocol_fees_collected": {
                address: ledger.balance_of(self._registry.address)
                for address, ledger in self._ledgers.items()
            },
            "events": self._event_log.count,
            "persistence_degraded": self._persistence_degraded or any(
                i.engine.event_log_degraded for i in instances
            ),
        }

    def get_subscription(self, subscription: str) -> SubscriptionLifecycle:
        return self._registry.get(subscription)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _persisted(self, data: dict[str, Any]) -> ServiceResult:
        err = self._safe_persist()
        if err:
            return ServiceResult(success=False, errors=[err], data=data)
        return ServiceResult(success=True, data=data)

    def _safe_persist(self) -> Optional[str]:
        """Save a snapshot. Returns an error string or None.

        In-memory state and the event log already reflect the operation,
        so a failed write marks persistence degraded rather than rolling
        back a payment that has happened.
        """
        if self._state_store is None:
            return None
        try:
            self._state_store.save(self._registry, self._ledgers)
        except (OSError, TypeError, ValueError) as e:
            self._persistence_degraded = True
            logger.error("State snapshot failed: %s", e)
            return f"Persistence failure: {e}"
        return None
