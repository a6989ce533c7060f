"""Billing subsystem — fee splitting, token ledger seam, charge engine."""

from tierflow.billing.engine import BillingEngine
from tierflow.billing.fees import split_price
from tierflow.billing.token_ledger import InMemoryTokenLedger, TokenLedger, TransferLeg

__all__ = [
    "BillingEngine",
    "InMemoryTokenLedger",
    "TokenLedger",
    "TransferLeg",
    "split_price",
]
