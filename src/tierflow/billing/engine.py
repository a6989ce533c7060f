"""Billing engine — single charges and batch settlement.

A charge pulls the tier price from the subscriber through the token
ledger in one atomic two-leg instruction:

    creator_net  → subscription recipient
    protocol_fee → protocol fee collector

Either both legs land or neither does. Whatever the ledger's reason for
rejecting, the caller sees a uniform PAYMENT_FAILED result; ``charge``
never raises. Once funds have moved the charge is committed: a failure
to append the audit event is logged and marks the engine
``event_log_degraded`` instead of undoing or hiding the payment.

Settlement walks a caller-supplied list of addresses in order. Each
element is isolated: an expired subscriber is lapsed without a charge,
a failed charge lapses the subscriber, and nothing that happens to one
address (including an unexpected exception from a collaborator) can
affect the next. Successful recurring charges do not extend expiry.

Double-charge protection has two layers:
1. A subscriber that is active and unexpired is refused.
2. An explicit in-flight marker is held across the external ledger call,
   so a re-entrant charge for the same subscriber is refused even before
   any record has been written.
"""

from __future__ import annotations

import logging
from typing import Any, Iterable, Optional

from tierflow.billing.fees import split_price
from tierflow.billing.token_ledger import TokenLedger, TransferLeg
from tierflow.config import BillingConfig
from tierflow.errors import LedgerError
from tierflow.models.subscription import (
    ChargeFailure,
    ChargeResult,
    FeeSplit,
    SettlementReport,
)
from tierflow.persistence.event_log import EventKind, EventLog
from tierflow.subscription.subscribers import SubscriberLedger
from tierflow.subscription.tiers import TierRegistry

logger = logging.getLogger(__name__)


class BillingEngine:
    """Orchestrates charges against one subscription instance.

    Usage:
        engine = BillingEngine(tiers, subscribers, ledger,
                               operator=instance_address,
                               recipient=creator_wallet,
                               protocol_collector=registry_address)
        result = engine.charge("alice", tier_id=0, now=now)
        report = engine.settle_batch(["alice", "bob"], now=now)
    """

    def __init__(
        self,
        tiers: TierRegistry,
        subscribers: SubscriberLedger,
        token_ledger: TokenLedger,
        operator: str,
        recipient: str,
        protocol_collector: str,
        config: Optional[BillingConfig] = None,
        event_log: Optional[EventLog] = None,
    ) -> None:
        self._tiers = tiers
        self._subscribers = subscribers
        self._token_ledger = token_ledger
        self._operator = operator
        self._recipient = recipient
        self._protocol_collector = protocol_collector
        self._config = config or BillingConfig()
        self._event_log = event_log
        self._in_flight: set[str] = set()
        # Set when an event for an already-applied change could not be appended.
        self._event_log_degraded = False

    @property
    def event_log_degraded(self) -> bool:
        return self._event_log_degraded

    def charge(self, subscriber: str, tier_id: int, now: int) -> ChargeResult:
        """Attempt one charge of ``tier_id``'s price against ``subscriber``."""
        with self._subscribers.lock_for(subscriber):
            if subscriber in self._in_flight:
                return ChargeResult.failed(
                    subscriber, tier_id, ChargeFailure.ALREADY_SUBSCRIBED,
                    "charge already in flight",
                )
            if self._subscribers.is_currently_active(subscriber, now):
                return ChargeResult.failed(
                    subscriber, tier_id, ChargeFailure.ALREADY_SUBSCRIBED,
                    "subscriber is active and unexpired",
                )

            tier = self._tiers.get_tier(tier_id)
            split = split_price(tier.price, self._config.protocol_fee_percent)

            self._in_flight.add(subscriber)
            try:
                err = self._pull_funds(subscriber, split)
            finally:
                self._in_flight.discard(subscriber)

            if err:
                logger.info("Charge of %s for tier %d failed: %s", subscriber, tier_id, err)
                return ChargeResult.failed(
                    subscriber, tier_id, ChargeFailure.PAYMENT_FAILED, err,
                )

            self.record_event(
                EventKind.PAYMENT_SENT,
                subscriber,
                {
                    "source": self._operator,
                    "user": subscriber,
                    "creator_net": split.creator_net,
                    "protocol_fee": split.protocol_fee,
                },
                now,
            )
            return ChargeResult.ok(subscriber, tier_id, split)

    def settle_batch(self, addresses: Iterable[str], now: int) -> SettlementReport:
        """Renew-or-lapse every address, in order, each in isolation."""
        report = SettlementReport()
        for address in addresses:
            try:
                charged = self._settle_one(address, now, report)
            except Exception:
                logger.exception("Settlement of %s raised; lapsing", address)
                self._lapse(address, now, reason="error")
                charged = False
            if charged:
                report.charged.append(address)
            else:
                report.lapsed.append(address)
        logger.info(
            "Settled batch for %s: %d charged, %d lapsed",
            self._operator, len(report.charged), len(report.lapsed),
        )
        return report

    def _settle_one(self, address: str, now: int, report: SettlementReport) -> bool:
        with self._subscribers.lock_for(address):
            record = self._subscribers.get(address)
            if record.expiry <= now:
                self._lapse(address, now, reason="expired")
                return False

            result = self.charge(address, record.tier_id, now)
            report.results.append(result)
            if not result.success:
                self._lapse(address, now, reason=result.failure.value)
                return False
            return True

    def _lapse(self, address: str, now: int, reason: str) -> None:
        self._subscribers.deactivate(address)
        logger.warning("Subscription %s lapsed on %s (%s)", address, self._operator, reason)
        self.record_event(
            EventKind.SUBSCRIPTION_LAPSED,
            address,
            {"source": self._operator, "user": address, "reason": reason},
            now,
        )

    def record_event(
        self,
        kind: EventKind,
        actor_id: str,
        payload: dict[str, Any],
        now: int,
    ) -> None:
        """Append the event for a change that has already been applied.

        Never raises. A write failure is logged and sets
        ``event_log_degraded``; the applied change stands.
        """
        if self._event_log is None:
            return
        try:
            self._event_log.emit(kind, actor_id=actor_id, payload=payload, timestamp=now)
        except Exception:
            self._event_log_degraded = True
            logger.exception("Could not record %s event for %s", kind.value, actor_id)

    def _pull_funds(self, subscriber: str, split: FeeSplit) -> Optional[str]:
        """Issue the atomic two-leg pull. Returns an error string or None."""
        legs = [
            TransferLeg(subscriber, self._recipient, split.creator_net),
            TransferLeg(subscriber, self._protocol_collector, split.protocol_fee),
        ]
        try:
            self._token_ledger.transfer_batch(self._operator, legs)
        except LedgerError as e:
            return f"Ledger rejected transfer: {e}"
        except Exception as e:
            logger.exception("Token ledger raised during charge of %s", subscriber)
            return f"Ledger failure: {e}"
        return None
