"""Deployment registry — one subscription instance per creator request.

The registry is the factory for SubscriptionLifecycle instances and the
protocol-fee collector for every instance it creates. It indexes
instances by creator and by address, and can optionally represent each
instance as a token on a collection, keyed by the instance address
reinterpreted as a 32-byte token id.
"""

from __future__ import annotations

import hashlib
import logging
from typing import Any, Callable, Dict, List, Optional

from tierflow.billing.token_ledger import TokenLedger
from tierflow.config import BillingConfig
from tierflow.errors import UnknownSubscription
from tierflow.persistence.event_log import EventKind, EventLog
from tierflow.subscription.lifecycle import SubscriptionLifecycle, wall_clock
from tierflow.subscription.membership import (
    MembershipIssuer,
    address_from_token_id,
    token_id_from_address,
)

logger = logging.getLogger(__name__)


class DeploymentRegistry:
    """Creates and indexes subscription instances.

    Usage:
        registry = DeploymentRegistry("0xregistry")
        sub = registry.create_subscription("creator", "Fan Club", "creator", ledger)
        registry.subscriptions_of("creator")  # [sub.address]
    """

    def __init__(
        self,
        address: str,
        config: Optional[BillingConfig] = None,
        event_log: Optional[EventLog] = None,
        clock: Optional[Callable[[], int]] = None,
    ) -> None:
        self._address = address
        self._config = config or BillingConfig()
        self._event_log = event_log
        self._clock = clock or wall_clock
        self._nonce = 0
        self._instances: Dict[str, SubscriptionLifecycle] = {}
        self._by_creator: Dict[str, List[str]] = {}
        self._creator_of: Dict[str, str] = {}

    @property
    def address(self) -> str:
        """Also the protocol-fee collector of every instance."""
        return self._address

    def create_subscription(
        self,
        creator: str,
        name: str,
        recipient: str,
        payment_source: TokenLedger,
        now: Optional[int] = None,
    ) -> SubscriptionLifecycle:
        """Instantiate a subscription owned by ``creator``."""
        instance = self._build(creator, name, recipient, payment_source)
        self._register(instance, now)
        return instance

    def create_subscription_with_collection(
        self,
        creator: str,
        name: str,
        recipient: str,
        payment_source: TokenLedger,
        collection: MembershipIssuer,
        now: Optional[int] = None,
    ) -> SubscriptionLifecycle:
        """Create an instance and issue its representational token to the
        creator on ``collection``.

        All or nothing: if the collection refuses the token, no instance is
        registered, no event is emitted and the address nonce is released.
        """
        instance = self._build(creator, name, recipient, payment_source)
        try:
            collection.issue(creator, token_id_from_address(instance.address), True, b"")
        except Exception:
            self._nonce -= 1
            raise
        self._register(instance, now)
        return instance

    def _build(
        self,
        creator: str,
        name: str,
        recipient: str,
        payment_source: TokenLedger,
    ) -> SubscriptionLifecycle:
        return SubscriptionLifecycle(
            address=self._next_address(),
            owner=creator,
            name=name,
            recipient=recipient,
            protocol_collector=self._address,
            token_ledger=payment_source,
            config=self._config,
            event_log=self._event_log,
            clock=self._clock,
        )

    def _register(self, instance: SubscriptionLifecycle, now: Optional[int]) -> None:
        self._index(instance)
        if self._event_log is not None:
            self._event_log.emit(
                EventKind.SUBSCRIPTION_CONTRACT_CREATED,
                actor_id=instance.owner,
                payload={
                    "source": self._address,
                    "address": instance.address,
                    "creator": instance.owner,
                    "name": instance.name,
                },
                timestamp=self._clock() if now is None else now,
            )
        logger.info(
            "Created subscription %s (%s) for %s", instance.address, instance.name, instance.owner,
        )

    def get(self, address: str) -> SubscriptionLifecycle:
        instance = self._instances.get(address)
        if instance is None:
            raise UnknownSubscription(f"Unknown subscription: {address}")
        return instance

    def subscriptions_of(self, creator: str) -> List[str]:
        return list(self._by_creator.get(creator, []))

    def creator_of(self, address: str) -> Optional[str]:
        return self._creator_of.get(address)

    def instances(self) -> List[SubscriptionLifecycle]:
        return list(self._instances.values())

    @staticmethod
    def token_id_for(address: str) -> str:
        return token_id_from_address(address)

    def address_for(self, token_id: str) -> str:
        address = address_from_token_id(token_id)
        if address not in self._instances:
            raise UnknownSubscription(f"No subscription for token id {token_id}")
        return address

    def _next_address(self) -> str:
        self._nonce += 1
        digest = hashlib.sha256(f"{self._address}:{self._nonce}".encode("utf-8")).hexdigest()
        return "0x" + digest[:40]

    def _index(self, instance: SubscriptionLifecycle) -> None:
        self._instances[instance.address] = instance
        self._by_creator.setdefault(instance.owner, []).append(instance.address)
        self._creator_of[instance.address] = instance.owner

    def to_dict(self) -> dict[str, Any]:
        return {
            "address": self._address,
            "nonce": self._nonce,
            "instances": [i.to_dict() for i in self._instances.values()],
        }

    @classmethod
    def from_dict(
        cls,
        data: dict[str, Any],
        ledgers: Dict[str, TokenLedger],
        config: Optional[BillingConfig] = None,
        event_log: Optional[EventLog] = None,
        clock: Optional[Callable[[], int]] = None,
    ) -> DeploymentRegistry:
        """Rebuild from ``to_dict`` output. ``ledgers`` maps payment-source
        addresses to ledger objects."""
        registry = cls(data["address"], config=config, event_log=event_log, clock=clock)
        registry._nonce = int(data.get("nonce", 0))
        for row in data.get("instances", []):
            ledger_address = row["token_ledger"]
            if ledger_address not in ledgers:
                raise ValueError(f"No token ledger available for {ledger_address}")
            instance = SubscriptionLifecycle.from_dict(
                row,
                ledgers[ledger_address],
                config=registry._config,
                event_log=event_log,
                clock=registry._clock,
            )
            registry._index(instance)
        return registry
