"""Token ledger abstraction — where balances and pull-authorizations live.

The billing engine never holds funds. It pulls them through a token
ledger that satisfies the TokenLedger Protocol: a query for the amount a
holder has authorized a spender to pull, and one atomic multi-leg
transfer instruction that commits every leg or none.

InMemoryTokenLedger is the reference implementation used by the service
layer, the CLI and the tests. A production deployment substitutes an
adapter over its real ledger without touching any billing logic.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Any, Dict, List, Protocol, Sequence, runtime_checkable

from tierflow.errors import LedgerError


@dataclass(frozen=True)
class TransferLeg:
    """One leg of an atomic batch transfer."""

    sender: str
    recipient: str
    amount: int
    force: bool = True
    data: bytes = b""


@dataclass(frozen=True)
class TransferNotification:
    """Emitted per committed leg, in leg order."""

    operator: str
    sender: str
    recipient: str
    amount: int
    force: bool
    data: bytes


@runtime_checkable
class TokenLedger(Protocol):
    """Abstract contract for the external token ledger.

    Implementations must make ``transfer_batch`` all-or-nothing and
    signal rejection by raising LedgerError.
    """

    @property
    def address(self) -> str:
        """Address identifying this ledger (the payment source)."""
        ...

    def authorized_amount(self, holder: str, spender: str) -> int:
        """Amount ``spender`` may currently pull from ``holder``."""
        ...

    def transfer_batch(self, operator: str, legs: Sequence[TransferLeg]) -> None:
        """Move every leg on behalf of ``operator``, atomically."""
        ...


class InMemoryTokenLedger:
    """Fungible token ledger with operator authorizations.

    Usage:
        ledger = InMemoryTokenLedger("0xtoken")
        ledger.mint("alice", 1_000)
        ledger.authorize_operator("alice", subscription.address, 100)
    """

    def __init__(self, address: str) -> None:
        self._address = address
        self._balances: Dict[str, int] = {}
        self._authorizations: Dict[str, Dict[str, int]] = {}
        self._notifications: List[TransferNotification] = []
        self._lock = threading.Lock()

    @property
    def address(self) -> str:
        return self._address

    @property
    def notifications(self) -> List[TransferNotification]:
        return list(self._notifications)

    def mint(self, to: str, amount: int) -> None:
        if amount <= 0:
            raise ValueError("Mint amount must be positive")
        with self._lock:
            self._balances[to] = self._balances.get(to, 0) + amount

    def balance_of(self, holder: str) -> int:
        return self._balances.get(holder, 0)

    def authorize_operator(self, holder: str, operator: str, amount: int) -> None:
        """Set (not add to) the amount ``operator`` may pull from ``holder``."""
        if amount < 0:
            raise ValueError("Authorization amount must be non-negative")
        if holder == operator:
            raise ValueError("Cannot authorize the holder as its own operator")
        with self._lock:
            if amount == 0:
                self._authorizations.get(holder, {}).pop(operator, None)
            else:
                self._authorizations.setdefault(holder, {})[operator] = amount

    def revoke_operator(self, holder: str, operator: str) -> None:
        self.authorize_operator(holder, operator, 0)

    def authorized_amount(self, holder: str, spender: str) -> int:
        return self._authorizations.get(holder, {}).get(spender, 0)

    def transfer_batch(self, operator: str, legs: Sequence[TransferLeg]) -> None:
        """Validate every leg against cumulative balances and allowances,
        then commit them all. Nothing is written if any leg is rejected.
        """
        if not legs:
            raise LedgerError("Empty transfer batch")
        with self._lock:
            pulled: Dict[str, int] = {}
            for index, leg in enumerate(legs):
                if leg.amount < 0:
                    raise LedgerError(f"Leg {index}: negative amount {leg.amount}")
                pulled[leg.sender] = pulled.get(leg.sender, 0) + leg.amount

            for sender, total in pulled.items():
                if operator != sender:
                    allowed = self.authorized_amount(sender, operator)
                    if allowed < total:
                        raise LedgerError(
                            f"Operator {operator} authorized for {allowed} "
                            f"from {sender}, batch pulls {total}"
                        )
                balance = self._balances.get(sender, 0)
                if balance < total:
                    raise LedgerError(
                        f"Insufficient balance for {sender}: {balance} < {total}"
                    )

            for leg in legs:
                self._balances[leg.sender] -= leg.amount
                self._balances[leg.recipient] = (
                    self._balances.get(leg.recipient, 0) + leg.amount
                )
                if operator != leg.sender:
                    remaining = self.authorized_amount(leg.sender, operator) - leg.amount
                    if remaining == 0:
                        self._authorizations[leg.sender].pop(operator, None)
                    else:
                        self._authorizations[leg.sender][operator] = remaining
                self._notifications.append(TransferNotification(
                    operator=operator,
                    sender=leg.sender,
                    recipient=leg.recipient,
                    amount=leg.amount,
                    force=leg.force,
                    data=leg.data,
                ))

    def to_dict(self) -> dict[str, Any]:
        return {
            "address": self._address,
            "balances": dict(self._balances),
            "authorizations": {
                holder: dict(spenders)
                for holder, spenders in self._authorizations.items()
                if spenders
            },
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> InMemoryTokenLedger:
        ledger = cls(data["address"])
        ledger._balances = {k: int(v) for k, v in data.get("balances", {}).items()}
        ledger._authorizations = {
            holder: {spender: int(v) for spender, v in spenders.items()}
            for holder, spenders in data.get("authorizations", {}).items()
        }
        return ledger
