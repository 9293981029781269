"""
Delay strategies for polling an upstream that is not ready yet.
"""

import random
from typing import Optional


BACKOFF_STRATEGIES = ("exponential", "linear", "fixed")


class RetryConfig:
    """Configuration for retry behavior."""

    def __init__(self,
                 max_attempts: int = 1,
                 base_delay: float = 0.0,
                 max_delay: float = 5.0,
                 exponential_base: float = 2.0,
                 jitter: bool = False,
                 backoff_strategy: str = "fixed"):
        if max_attempts < 0:
            raise ValueError("max_attempts must be >= 0")
        if backoff_strategy not in BACKOFF_STRATEGIES:
            raise ValueError(f"Unknown backoff strategy: {backoff_strategy}")
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.exponential_base = exponential_base
        self.jitter = jitter
        self.backoff_strategy = backoff_strategy

    @classmethod
    def from_settings(cls, settings) -> "RetryConfig":
        """Build the polling config from ``MorphSettings``."""
        return cls(
            max_attempts=settings.max_retries,
            base_delay=settings.retry_base_delay,
            max_delay=settings.retry_max_delay,
            jitter=settings.retry_jitter,
            backoff_strategy=settings.retry_backoff,
        )


def calculate_delay(attempt: int, config: RetryConfig, rng: Optional[random.Random] = None) -> float:
    """Calculate the pause before retry number ``attempt`` (1-based)."""
    if config.backoff_strategy == "exponential":
        delay = config.base_delay * (config.exponential_base ** (attempt - 1))
    elif config.backoff_strategy == "linear":
        delay = config.base_delay * attempt
    else:
        delay = config.base_delay

    # Apply max delay cap
    delay = min(delay, config.max_delay)

    if config.jitter and delay > 0:
        jitter_amount = delay * 0.1  # 10% jitter
        delay += (rng or random).uniform(-jitter_amount, jitter_amount)

    return max(0.0, delay)
