"""
Backoff calculation for resilient reconnection.

Fetches are never retried by the freshness layer; callers own that policy.
Only the push-stream connection reconnects, using the delays computed here.
"""

import random
from typing import Optional

from shared.errors import ConfigurationError


class BackoffConfig:
    """Configuration for reconnect backoff behavior."""

    def __init__(self,
                 base_delay: float = 1.0,
                 max_delay: float = 30.0,
                 exponential_base: float = 2.0,
                 jitter: bool = False,
                 backoff_strategy: str = "exponential"):
        if base_delay <= 0 or max_delay < base_delay:
            raise ConfigurationError(
                "Backoff requires 0 < base_delay <= max_delay",
                details={"base_delay": base_delay, "max_delay": max_delay},
            )
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.exponential_base = exponential_base
        self.jitter = jitter
        self.backoff_strategy = backoff_strategy

    def __repr__(self) -> str:
        return (
            f"BackoffConfig(base_delay={self.base_delay}, max_delay={self.max_delay}, "
            f"strategy={self.backoff_strategy!r}, jitter={self.jitter})"
        )


def calculate_delay(attempt: int, config: BackoffConfig, rng: Optional[random.Random] = None) -> float:
    """Calculate the delay before reconnect attempt number ``attempt`` (1-based)."""
    attempt = max(1, attempt)
    if config.backoff_strategy == "exponential":
        delay = config.base_delay * (config.exponential_base ** (attempt - 1))
    elif config.backoff_strategy == "linear":
        delay = config.base_delay * attempt
    elif config.backoff_strategy == "fixed":
        delay = config.base_delay
    else:
        delay = config.base_delay

    # Apply max delay cap
    delay = min(delay, config.max_delay)

    if config.jitter:
        jitter_amount = delay * 0.1  # 10% jitter
        delay += (rng or random).uniform(-jitter_amount, jitter_amount)

    return max(0.0, delay)
