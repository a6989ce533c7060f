"""Billing configuration.

Defaults match the deployed protocol: a 2% protocol fee and a fixed
30-day subscription period. Values can be loaded from
``config/billing_params.json`` and overridden from the environment
(``TIERFLOW_PROTOCOL_FEE_PERCENT``, ``TIERFLOW_PERIOD_SECONDS``), with a
``.env`` file at the project root picked up automatically.
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

PROTOCOL_FEE_PERCENT = 2
SUBSCRIPTION_PERIOD_SECONDS = 30 * 24 * 60 * 60

ROOT = Path(__file__).resolve().parents[2]
DEFAULT_PARAMS_PATH = ROOT / "config" / "billing_params.json"

ENV_FEE_PERCENT = "TIERFLOW_PROTOCOL_FEE_PERCENT"
ENV_PERIOD_SECONDS = "TIERFLOW_PERIOD_SECONDS"


@dataclass(frozen=True)
class BillingConfig:
    """Protocol-wide billing parameters."""

    protocol_fee_percent: int = PROTOCOL_FEE_PERCENT
    period_seconds: int = SUBSCRIPTION_PERIOD_SECONDS

    def __post_init__(self) -> None:
        if not isinstance(self.protocol_fee_percent, int) or not (
            0 <= self.protocol_fee_percent <= 100
        ):
            raise ValueError(
                f"protocol_fee_percent must be an integer in [0, 100], "
                f"got {self.protocol_fee_percent!r}"
            )
        if not isinstance(self.period_seconds, int) or self.period_seconds <= 0:
            raise ValueError(
                f"period_seconds must be a positive integer, "
                f"got {self.period_seconds!r}"
            )

    @classmethod
    def from_params_file(cls, path: Path = DEFAULT_PARAMS_PATH) -> BillingConfig:
        """Load from a billing_params.json file. Missing keys keep defaults."""
        params = json.loads(Path(path).read_text(encoding="utf-8"))
        billing = params.get("billing", params)
        return cls(
            protocol_fee_percent=billing.get(
                "PROTOCOL_FEE_PERCENT", PROTOCOL_FEE_PERCENT,
            ),
            period_seconds=billing.get(
                "SUBSCRIPTION_PERIOD_SECONDS", SUBSCRIPTION_PERIOD_SECONDS,
            ),
        )

    @classmethod
    def from_env(
        cls,
        params_path: Optional[Path] = None,
        dotenv_path: Optional[Path] = None,
    ) -> BillingConfig:
        """Load the params file (if present) then apply env overrides."""
        load_dotenv(dotenv_path or ROOT / ".env")
        path = params_path or DEFAULT_PARAMS_PATH
        config = cls.from_params_file(path) if Path(path).exists() else cls()

        fee = os.getenv(ENV_FEE_PERCENT)
        period = os.getenv(ENV_PERIOD_SECONDS)
        if fee is not None:
            config = replace(config, protocol_fee_percent=_parse_int(ENV_FEE_PERCENT, fee))
        if period is not None:
            config = replace(config, period_seconds=_parse_int(ENV_PERIOD_SECONDS, period))
        return config

    def to_dict(self) -> dict[str, int]:
        return {
            "PROTOCOL_FEE_PERCENT": self.protocol_fee_percent,
            "SUBSCRIPTION_PERIOD_SECONDS": self.period_seconds,
        }


def _parse_int(name: str, raw: str) -> int:
    try:
        return int(raw.strip())
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from None
