"""Per-node retry policy, read from config["retry"]."""

import logging
import math
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger(__name__)

MAX_RETRIES_CAP = 10


@dataclass(frozen=True)
class RetryConfig:
    """
    How a node is retried after a FAILURE result.

        {"retry": {"maxRetries": 3, "backoffMs": 2000, "backoffMultiplier": 2.0}}

    gives delays of 2s, 4s and 8s between the four attempts.
    """

    max_retries: int = 0
    backoff_ms: int = 1000
    backoff_multiplier: float = 2.0

    @property
    def initial_delay_seconds(self) -> float:
        return self.backoff_ms / 1000.0

    @classmethod
    def from_config(cls, config: dict[str, Any] | None) -> "RetryConfig":
        """Build from a node config. Missing or invalid values fall back to defaults."""
        raw = (config or {}).get("retry")
        if not isinstance(raw, dict):
            return cls()

        defaults = cls()
        max_retries = _as_number(raw.get("maxRetries"))
        backoff_ms = _as_number(raw.get("backoffMs"))
        multiplier = _as_number(raw.get("backoffMultiplier"))

        if max_retries is None:
            max_retries = defaults.max_retries
        max_retries = min(MAX_RETRIES_CAP, max(0, int(max_retries)))

        if backoff_ms is None or backoff_ms <= 0:
            backoff_ms = defaults.backoff_ms
        if multiplier is None or multiplier <= 0:
            multiplier = defaults.backoff_multiplier

        return cls(
            max_retries=max_retries,
            backoff_ms=int(backoff_ms),
            backoff_multiplier=float(multiplier),
        )


def _as_number(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value) if isinstance(value, (int, float)) else float(str(value).strip())
    except ValueError:
        logger.warning(f"Ignoring non-numeric retry setting: {value!r}")
        return None
    return number if math.isfinite(number) else None
