"""Error taxonomy for subscription and billing operations.

Callers branch on these kinds, so the ``kind`` strings are part of the
public contract. Every operation that raises one of these leaves state
exactly as it found it.
"""

from __future__ import annotations


class SubscriptionError(Exception):
    """Base class for every subscription-level failure."""

    kind = "SubscriptionError"

    def __init__(self, message: str = "") -> None:
        super().__init__(message or self.kind)


class InvalidTierPrice(SubscriptionError):
    """Raised when a tier is created with a price that is not positive."""

    kind = "InvalidTierPrice"


class EmptyTierName(SubscriptionError):
    """Raised when a tier is created with a blank name."""

    kind = "EmptyTierName"


class TierNotActive(SubscriptionError):
    """Raised when subscribing to an inactive or unknown tier."""

    kind = "TierNotActive"


class AlreadySubscribed(SubscriptionError):
    """Raised when the caller is already active and unexpired."""

    kind = "AlreadySubscribed"


class NotSubscribed(SubscriptionError):
    """Raised when unsubscribing without an active subscription."""

    kind = "NotSubscribed"


class AllowanceNotZero(SubscriptionError):
    """Raised when unsubscribing while a pull-authorization is outstanding."""

    kind = "AllowanceNotZero"


class PaymentFailed(SubscriptionError):
    """Raised when the token ledger rejects the charge for any reason."""

    kind = "PaymentFailed"


class OnlyOwner(SubscriptionError):
    """Raised when a non-owner attempts an owner-only operation."""

    kind = "OnlyOwner"


class UnknownSubscription(SubscriptionError):
    """Raised when a subscription instance address is not registered."""

    kind = "UnknownSubscription"


class LedgerError(Exception):
    """Raised by a token ledger when it rejects a transfer instruction.

    Never escapes the billing engine: it is converted into a failed
    ChargeResult at the ledger-call boundary.
    """
