"""Fee splitting — protocol fee versus creator net for a single charge.

protocol_fee = floor(price * fee_percent / 100)
creator_net  = price - protocol_fee

Rounding always favours the creator: the remainder of the integer
division stays with creator_net, so the two legs always sum to price.
"""

from __future__ import annotations

from tierflow.config import PROTOCOL_FEE_PERCENT
from tierflow.models.subscription import FeeSplit


def split_price(price: int, fee_percent: int = PROTOCOL_FEE_PERCENT) -> FeeSplit:
    """Split ``price`` into (protocol_fee, creator_net).

    Raises:
        ValueError: if price is negative or not an integer, or the
            fee percentage is outside [0, 100].
    """
    if isinstance(price, bool) or not isinstance(price, int):
        raise ValueError(f"Price must be an integer, got {type(price).__name__}")
    if price < 0:
        raise ValueError(f"Price must be non-negative, got {price}")
    if not 0 <= fee_percent <= 100:
        raise ValueError(f"Fee percent must be in [0, 100], got {fee_percent}")

    protocol_fee = price * fee_percent // 100
    return FeeSplit(protocol_fee=protocol_fee, creator_net=price - protocol_fee)
