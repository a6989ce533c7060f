"""Membership-token issuance — non-transferable subscription receipts.

A membership token is a receipt, not the authority on subscription
state: the subscriber ledger is. Tokens are issued once per successful
subscribe and are never transferred, reclaimed or burned by tierflow.
"""

from __future__ import annotations

from typing import Any, Dict, Optional, Protocol, runtime_checkable


def token_id_from_int(value: int) -> str:
    """Encode an integer as a 32-byte hex token identifier."""
    if value < 0:
        raise ValueError("Token id must be non-negative")
    return "0x" + format(value, "064x")


def token_id_from_address(address: str) -> str:
    """Reinterpret a hex address as a 32-byte token id (left-padded)."""
    digits = address[2:] if address.startswith("0x") else address
    int(digits, 16)  # raises ValueError on non-hex input
    if len(digits) > 64:
        raise ValueError(f"Address too long for a 32-byte token id: {address}")
    return "0x" + digits.lower().rjust(64, "0")


def address_from_token_id(token_id: str) -> str:
    """Inverse of token_id_from_address for 20-byte addresses."""
    digits = token_id[2:] if token_id.startswith("0x") else token_id
    return "0x" + digits[-40:]


@runtime_checkable
class MembershipIssuer(Protocol):
    """Abstract contract for the external membership-token issuer."""

    @property
    def address(self) -> str:
        ...

    def issue(self, to: str, token_id: str, force: bool, data: bytes) -> None:
        """Issue a single non-divisible unit to ``to``."""
        ...

    def owner_of(self, token_id: str) -> Optional[str]:
        ...

    def balance_of(self, holder: str) -> int:
        ...


class InMemoryMembershipIssuer:
    """Reference issuer: one owner per token id, no transfer path."""

    def __init__(self, address: str) -> None:
        self._address = address
        self._owners: Dict[str, str] = {}

    @property
    def address(self) -> str:
        return self._address

    @property
    def total_supply(self) -> int:
        return len(self._owners)

    def issue(self, to: str, token_id: str, force: bool = True, data: bytes = b"") -> None:
        if not to:
            raise ValueError("Cannot issue to an empty address")
        if token_id in self._owners:
            raise ValueError(f"Token already issued: {token_id}")
        self._owners[token_id] = to

    def owner_of(self, token_id: str) -> Optional[str]:
        return self._owners.get(token_id)

    def balance_of(self, holder: str) -> int:
        return sum(1 for owner in self._owners.values() if owner == holder)

    def tokens_of(self, holder: str) -> list[str]:
        return [tid for tid, owner in self._owners.items() if owner == holder]

    def to_dict(self) -> dict[str, Any]:
        return {"address": self._address, "owners": dict(self._owners)}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> InMemoryMembershipIssuer:
        issuer = cls(data["address"])
        issuer._owners = dict(data.get("owners", {}))
        return issuer
