#!/usr/bin/env python3
"""tierflow invariant checks against the billing parameter file."""

import json
import sys
from pathlib import Path


ROOT = Path(__file__).resolve().parents[1]
PARAMS_PATH = ROOT / "config" / "billing_params.json"

SAMPLE_PRICES = (0, 1, 49, 50, 99, 100, 101, 12_345, 10**9)


def load_json(path: Path) -> dict:
    with path.open("r", encoding="utf-8") as handle:
        return json.load(handle)


def check_split(fee_percent: int, errors: list[str]) -> None:
    """Protocol fee plus creator net must reconstruct every sample price."""
    for price in SAMPLE_PRICES:
        fee = price * fee_percent // 100
        net = price - fee
        if fee + net != price:
            errors.append(f"split({price}) does not sum back to price")
        if net < fee and fee_percent <= 50:
            errors.append(f"split({price}) gives the protocol more than the creator")


def check(params_path: Path = PARAMS_PATH) -> int:
    params = load_json(params_path)
    billing = params.get("billing", {})
    errors: list[str] = []

    fee_percent = billing.get("PROTOCOL_FEE_PERCENT")
    if not isinstance(fee_percent, int):
        errors.append(f"PROTOCOL_FEE_PERCENT must be an integer, got {fee_percent!r}")
    elif not (0 <= fee_percent <= 100):
        errors.append(f"PROTOCOL_FEE_PERCENT must be in [0, 100], got {fee_percent}")
    else:
        check_split(fee_percent, errors)

    period = billing.get("SUBSCRIPTION_PERIOD_SECONDS")
    if not isinstance(period, int) or period <= 0:
        errors.append(f"SUBSCRIPTION_PERIOD_SECONDS must be a positive integer, got {period!r}")
    elif period % 86_400 != 0:
        errors.append("SUBSCRIPTION_PERIOD_SECONDS must be a whole number of days")

    if errors:
        print("Invariant check failed:")
        for error in errors:
            print(f"  - {error}")
        return 1

    print("Invariant check passed.")
    return 0


if __name__ == "__main__":
    sys.exit(check())
