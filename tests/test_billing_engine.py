"""Tests for the billing engine — proves charge guards and batch isolation.

Covers:
- A charge moves creator_net and protocol_fee in one atomic batch
- Any ledger rejection is reported as PAYMENT_FAILED, never raised
- Active-and-unexpired subscribers are refused (double-charge guard)
- A re-entrant charge during the ledger call is refused (in-flight guard)
- Batch settlement isolates every element from every other
"""

from __future__ import annotations

from typing import Optional, Sequence

import pytest

from tierflow.billing.engine import BillingEngine
from tierflow.billing.token_ledger import InMemoryTokenLedger, TransferLeg
from tierflow.models.subscription import ChargeFailure, ChargeResult
from tierflow.persistence.event_log import EventKind, EventLog
from tierflow.subscription.subscribers import SubscriberLedger
from tierflow.subscription.tiers import TierRegistry

NOW = 1_700_000_000
SUB = "0x" + "a" * 40
REGISTRY = "0x" + "1" * 40
TOKEN = "0x" + "2" * 40


class ReentrantLedger(InMemoryTokenLedger):
    """Calls back into the engine once, mid-transfer, for the same sender."""

    def __init__(self, address: str) -> None:
        super().__init__(address)
        self.engine: Optional[BillingEngine] = None
        self.inner_results: list[ChargeResult] = []

    def transfer_batch(self, operator: str, legs: Sequence[TransferLeg]) -> None:
        if self.engine is not None and not self.inner_results:
            self.inner_results.append(self.engine.charge(legs[0].sender, 0, NOW))
        super().transfer_batch(operator, legs)


class ExplodingLedger(InMemoryTokenLedger):
    """Raises a non-ledger exception for one sender."""

    def __init__(self, address: str, victim: str) -> None:
        super().__init__(address)
        self.victim = victim

    def transfer_batch(self, operator: str, legs: Sequence[TransferLeg]) -> None:
        if legs[0].sender == self.victim:
            raise RuntimeError("node unreachable")
        super().transfer_batch(operator, legs)


class Harness:
    def __init__(self, ledger: Optional[InMemoryTokenLedger] = None) -> None:
        self.log = EventLog()
        self.tiers = TierRegistry("creator", SUB, self.log)
        self.tiers.create_tier("creator", "Gold", 100)
        self.subscribers = SubscriberLedger()
        self.ledger = ledger or InMemoryTokenLedger(TOKEN)
        self.engine = BillingEngine(
            self.tiers,
            self.subscribers,
            self.ledger,
            operator=SUB,
            recipient="creator",
            protocol_collector=REGISTRY,
            event_log=self.log,
        )

    def fund(self, holder: str, amount: int = 100, authorize: int = 100) -> None:
        self.ledger.mint(holder, amount)
        if authorize:
            self.ledger.authorize_operator(holder, SUB, authorize)

    def payments(self) -> list:
        return self.log.events(EventKind.PAYMENT_SENT)

    def lapses(self) -> list:
        return self.log.events(EventKind.SUBSCRIPTION_LAPSED)


@pytest.fixture
def h() -> Harness:
    return Harness()


class TestCharge:
    def test_successful_charge_splits_funds(self, h: Harness) -> None:
        h.fund("alice")
        result = h.engine.charge("alice", 0, NOW)
        assert result.success
        assert result.split.creator_net == 98
        assert result.split.protocol_fee == 2
        assert h.ledger.balance_of("alice") == 0
        assert h.ledger.balance_of("creator") == 98
        assert h.ledger.balance_of(REGISTRY) == 2

    def test_successful_charge_emits_payment(self, h: Harness) -> None:
        h.fund("alice")
        h.engine.charge("alice", 0, NOW)
        payments = h.payments()
        assert len(payments) == 1
        assert payments[0].payload == {
            "source": SUB,
            "user": "alice",
            "creator_net": 98,
            "protocol_fee": 2,
        }

    def test_charge_does_not_touch_subscriber_record(self, h: Harness) -> None:
        h.fund("alice")
        h.engine.charge("alice", 0, NOW)
        assert not h.subscribers.known("alice")

    def test_no_authorization_fails_uniformly(self, h: Harness) -> None:
        h.fund("alice", authorize=0)
        result = h.engine.charge("alice", 0, NOW)
        assert not result.success
        assert result.failure == ChargeFailure.PAYMENT_FAILED
        assert h.ledger.balance_of("alice") == 100
        assert h.payments() == []

    def test_no_balance_fails_uniformly(self, h: Harness) -> None:
        h.ledger.authorize_operator("alice", SUB, 100)
        result = h.engine.charge("alice", 0, NOW)
        assert result.failure == ChargeFailure.PAYMENT_FAILED

    def test_unexpected_ledger_exception_is_contained(self) -> None:
        h = Harness(ExplodingLedger(TOKEN, victim="alice"))
        h.fund("alice")
        result = h.engine.charge("alice", 0, NOW)
        assert not result.success
        assert result.failure == ChargeFailure.PAYMENT_FAILED
        assert "node unreachable" in result.detail

    def test_active_unexpired_subscriber_refused(self, h: Harness) -> None:
        h.fund("alice")
        h.subscribers.record("alice", 0, NOW + 10)
        result = h.engine.charge("alice", 0, NOW)
        assert result.failure == ChargeFailure.ALREADY_SUBSCRIBED
        assert h.ledger.balance_of("alice") == 100

    def test_inactive_unexpired_subscriber_is_charged_as_deployed(self, h: Harness) -> None:
        """Preserved deployed behaviour: only an active, unexpired record
        is refused, so an opted-out record with time left is chargeable."""
        h.fund("alice")
        h.subscribers.record("alice", 0, NOW + 10)
        h.subscribers.deactivate("alice")
        assert h.engine.charge("alice", 0, NOW).success


class TestReentrancy:
    def test_reentrant_charge_is_refused(self) -> None:
        ledger = ReentrantLedger(TOKEN)
        h = Harness(ledger)
        ledger.engine = h.engine
        h.fund("alice", amount=1_000, authorize=1_000)

        outer = h.engine.charge("alice", 0, NOW)

        assert outer.success
        assert len(ledger.inner_results) == 1
        inner = ledger.inner_results[0]
        assert inner.failure == ChargeFailure.ALREADY_SUBSCRIBED
        assert "in flight" in inner.detail
        assert len(h.payments()) == 1
        assert h.ledger.balance_of("alice") == 900

    def test_in_flight_marker_cleared_after_failure(self) -> None:
        h = Harness(ExplodingLedger(TOKEN, victim="alice"))
        h.fund("alice")
        h.engine.charge("alice", 0, NOW)
        h.ledger.victim = "nobody"
        assert h.engine.charge("alice", 0, NOW).success


class TestSettleBatch:
    def test_expired_and_unauthorized_both_lapse(self, h: Harness) -> None:
        h.subscribers.record("a", 0, NOW)          # expiry <= now
        h.subscribers.record("b", 0, NOW + 1_000)  # unexpired, no funds
        h.subscribers.deactivate("b")

        h.engine.settle_batch(["a", "b"], NOW)

        assert not h.subscribers.get("a").active
        assert not h.subscribers.get("b").active
        assert h.payments() == []
        assert len(h.lapses()) == 2

    def test_processing_order_does_not_change_outcome(self) -> None:
        outcomes = []
        for order in (["a", "b"], ["b", "a"]):
            h = Harness()
            h.subscribers.record("a", 0, NOW)
            h.subscribers.record("b", 0, NOW + 1_000)
            h.subscribers.deactivate("b")
            h.engine.settle_batch(order, NOW)
            outcomes.append({
                addr: (r.active, r.expiry, r.tier_id)
                for addr in ("a", "b")
                for r in [h.subscribers.get(addr)]
            })
        assert outcomes[0] == outcomes[1]

    def test_expired_subscriber_not_charged_even_if_authorized(self, h: Harness) -> None:
        h.fund("alice")
        h.subscribers.record("alice", 0, NOW - 1)
        report = h.engine.settle_batch(["alice"], NOW)
        assert report.lapsed == ["alice"]
        assert h.ledger.balance_of("alice") == 100
        assert h.lapses()[0].payload["reason"] == "expired"

    def test_charge_of_inactive_unexpired_record_leaves_it_inactive(self, h: Harness) -> None:
        """Preserved deployed behaviour: settlement charges any record that
        has not expired and never reactivates or extends it."""
        h.fund("carol")
        h.subscribers.record("carol", 0, NOW + 500)
        h.subscribers.deactivate("carol")

        report = h.engine.settle_batch(["carol"], NOW)

        assert report.charged == ["carol"]
        record = h.subscribers.get("carol")
        assert (record.active, record.expiry) == (False, NOW + 500)
        assert len(h.payments()) == 1

    def test_active_subscriber_within_period_lapses(self, h: Harness) -> None:
        """Documented behaviour: the charge guard refuses an active,
        unexpired subscriber, so settlement inside the paid period lapses
        them without charging."""
        h.fund("alice")
        h.subscribers.record("alice", 0, NOW + 1_000)

        report = h.engine.settle_batch(["alice"], NOW)

        assert report.lapsed == ["alice"]
        assert not h.subscribers.get("alice").active
        assert h.ledger.balance_of("alice") == 100
        assert h.lapses()[0].payload["reason"] == "AlreadySubscribed"

    def test_unknown_address_lapses_without_record(self, h: Harness) -> None:
        report = h.engine.settle_batch(["ghost"], NOW)
        assert report.lapsed == ["ghost"]
        assert not h.subscribers.known("ghost")
        assert len(h.lapses()) == 1

    def test_exploding_element_does_not_abort_batch(self) -> None:
        h = Harness(ExplodingLedger(TOKEN, victim="bob"))
        for name in ("alice", "bob", "carol"):
            h.fund(name)
            h.subscribers.record(name, 0, NOW + 500)
            h.subscribers.deactivate(name)

        report = h.engine.settle_batch(["alice", "bob", "carol"], NOW)

        assert report.charged == ["alice", "carol"]
        assert report.lapsed == ["bob"]
        assert len(h.payments()) == 2

    def test_internal_error_is_converted_to_lapse(
        self, h: Harness, monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        def broken(tier_id: int):
            raise RuntimeError("corrupt tier table")

        for name in ("x", "y"):
            h.subscribers.record(name, 0, NOW + 500)
            h.subscribers.deactivate(name)
        monkeypatch.setattr(h.tiers, "get_tier", broken)

        report = h.engine.settle_batch(["x", "y"], NOW)

        assert report.lapsed == ["x", "y"]
        assert [e.payload["reason"] for e in h.lapses()] == ["error", "error"]

    def test_report_preserves_input_order(self, h: Harness) -> None:
        for name in ("c", "a", "b"):
            h.fund(name)
            h.subscribers.record(name, 0, NOW + 500)
            h.subscribers.deactivate(name)
        report = h.engine.settle_batch(["c", "a", "b"], NOW)
        assert report.charged == ["c", "a", "b"]
        assert report.processed == 3
        assert [r.subscriber for r in report.results] == ["c", "a", "b"]


class TestCommittedCharge:
    def test_event_append_failure_does_not_undo_charge(self, h: Harness) -> None:
        def fail(*args, **kwargs):
            raise OSError("disk full")

        h.fund("alice")
        h.log.emit = fail

        result = h.engine.charge("alice", 0, NOW)

        assert result.success
        assert h.ledger.balance_of("alice") == 0
        assert h.ledger.balance_of("creator") == 98
        assert h.engine.event_log_degraded
