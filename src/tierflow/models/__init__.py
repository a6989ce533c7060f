"""Core data models for tierflow."""

from tierflow.models.subscription import (
    ChargeFailure,
    ChargeResult,
    FeeSplit,
    SettlementReport,
    Subscriber,
    SubscriptionReceipt,
    Tier,
)

__all__ = [
    "ChargeFailure",
    "ChargeResult",
    "FeeSplit",
    "SettlementReport",
    "Subscriber",
    "SubscriptionReceipt",
    "Tier",
]
