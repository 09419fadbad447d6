"""
Retry policy for the delivery worker.

Retryable outcomes leave the item at the head of the queue; the policy
decides how long the worker waits before the next attempt and when the item
has run out of attempts.
"""

from __future__ import annotations

import random
from dataclasses import dataclass

from ..settings import RelayRuntimeSettings


@dataclass(frozen=True)
class RetryPolicy:
    """Capped exponential backoff with optional jitter.

    Args:
        max_attempts: Attempts per item before it is dropped; 0 means never drop
        initial_backoff_ms: Delay after the first failed attempt
        max_backoff_ms: Upper bound for any delay
        backoff_multiplier: Growth factor per attempt
        jitter: Scale each delay by a random factor in [0.5, 1.0]
    """

    max_attempts: int = 10
    initial_backoff_ms: int = 500
    max_backoff_ms: int = 30_000
    backoff_multiplier: float = 2.0
    jitter: bool = True

    def __post_init__(self):
        if self.max_attempts < 0:
            raise ValueError("max_attempts must be >= 0")
        if self.initial_backoff_ms < 0 or self.max_backoff_ms < 0:
            raise ValueError("backoff values must be >= 0")
        if self.backoff_multiplier < 1.0:
            raise ValueError("backoff_multiplier must be >= 1.0")

    @classmethod
    def from_settings(cls, settings: RelayRuntimeSettings) -> "RetryPolicy":
        return cls(
            max_attempts=settings.relay_max_attempts,
            initial_backoff_ms=settings.relay_initial_backoff_ms,
            max_backoff_ms=settings.relay_max_backoff_ms,
            backoff_multiplier=settings.relay_backoff_multiplier,
            jitter=settings.relay_backoff_jitter,
        )

    def next_backoff_ms(self, attempt: int) -> int:
        """Delay after failed attempt number ``attempt`` (1-based)."""
        attempt = max(1, attempt)
        delay = self.initial_backoff_ms * (self.backoff_multiplier ** (attempt - 1))
        delay = min(delay, self.max_backoff_ms)
        if self.jitter:
            delay *= random.uniform(0.5, 1.0)
        return int(delay)

    def exhausted(self, attempts: int) -> bool:
        return self.max_attempts > 0 and attempts >= self.max_attempts
