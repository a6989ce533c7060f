"""Tests for the tier registry — proves creation rules and id assignment."""

import pytest

from tierflow.errors import EmptyTierName, InvalidTierPrice, OnlyOwner
from tierflow.persistence.event_log import EventKind, EventLog
from tierflow.subscription.tiers import TierRegistry

SOURCE = "0x" + "a" * 40


@pytest.fixture
def log() -> EventLog:
    return EventLog()


@pytest.fixture
def registry(log: EventLog) -> TierRegistry:
    return TierRegistry("creator", SOURCE, log)


class TestTierCreation:
    def test_ids_are_sequential_from_zero(self, registry: TierRegistry) -> None:
        assert registry.total_tiers == 0
        assert registry.create_tier("creator", "Gold", 100) == 0
        assert registry.total_tiers == 1
        assert registry.create_tier("creator", "Silver", 50) == 1
        assert registry.total_tiers == 2

    def test_created_tier_is_active(self, registry: TierRegistry) -> None:
        tier_id = registry.create_tier("creator", "Gold", 100)
        tier = registry.get_tier(tier_id)
        assert tier.name == "Gold"
        assert tier.price == 100
        assert tier.active

    def test_creation_emits_event(self, registry: TierRegistry, log: EventLog) -> None:
        registry.create_tier("creator", "Gold", 100, now=1_700_000_000)
        events = log.events(EventKind.TIER_CREATED)
        assert len(events) == 1
        assert events[0].payload == {
            "source": SOURCE,
            "tier_id": 0,
            "name": "Gold",
            "price": 100,
        }
        assert events[0].timestamp_utc == "2023-11-14T22:13:20Z"

    def test_tiers_listed_in_id_order(self, registry: TierRegistry) -> None:
        registry.create_tier("creator", "Gold", 100)
        registry.create_tier("creator", "Silver", 50)
        assert [t.name for t in registry.tiers()] == ["Gold", "Silver"]


class TestTierRejection:
    def test_non_owner_rejected(self, registry: TierRegistry, log: EventLog) -> None:
        with pytest.raises(OnlyOwner):
            registry.create_tier("mallory", "Gold", 100)
        assert registry.total_tiers == 0
        assert log.count == 0

    def test_empty_name_rejected(self, registry: TierRegistry) -> None:
        with pytest.raises(EmptyTierName):
            registry.create_tier("creator", "", 100)
        assert registry.total_tiers == 0

    def test_blank_name_rejected(self, registry: TierRegistry) -> None:
        with pytest.raises(EmptyTierName):
            registry.create_tier("creator", "   ", 100)

    def test_zero_price_rejected(self, registry: TierRegistry, log: EventLog) -> None:
        registry.create_tier("creator", "Gold", 100)
        with pytest.raises(InvalidTierPrice):
            registry.create_tier("creator", "Free", 0)
        assert registry.total_tiers == 1
        assert len(log.events(EventKind.TIER_CREATED)) == 1

    def test_negative_price_rejected(self, registry: TierRegistry) -> None:
        with pytest.raises(InvalidTierPrice):
            registry.create_tier("creator", "Refund", -5)

    def test_error_kinds_are_stable(self) -> None:
        assert EmptyTierName.kind == "EmptyTierName"
        assert InvalidTierPrice.kind == "InvalidTierPrice"
        assert OnlyOwner.kind == "OnlyOwner"


class TestTierLookup:
    def test_unknown_tier_is_zero_valued_and_inactive(self, registry: TierRegistry) -> None:
        tier = registry.get_tier(7)
        assert tier.tier_id == 7
        assert tier.name == ""
        assert tier.price == 0
        assert not tier.active
