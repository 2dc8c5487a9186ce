"""Retry policy with exponential backoff and jitter."""

from __future__ import annotations

import random
from collections.abc import Callable
from dataclasses import dataclass

from synq.duration import parse_duration
from synq.types import Duration

# Jitter spreads each delay by up to this fraction in either direction
JITTER_RATIO = 0.2

RetryDelayFn = Callable[[int, BaseException], Duration]


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    """How failed fetches are retried.

    ``retry_count`` counts retries after the first attempt, so a fetcher that
    always fails is invoked ``retry_count + 1`` times.

    Delay for retry ``attempt`` (0-indexed)::

        min(max_delay, base_delay * multiplier ** attempt) +/- 20% jitter

    A ``delay_fn`` replaces the whole computation, cap and jitter included.
    """

    retry_count: int = 3
    base_delay: Duration = "200ms"
    max_delay: Duration = "30s"
    multiplier: float = 2.0
    exponential: bool = True
    jitter: bool = True
    delay_fn: RetryDelayFn | None = None

    def __post_init__(self) -> None:
        if self.retry_count < 0:
            raise ValueError("retry_count must be >= 0")
        if self.multiplier < 1:
            raise ValueError("multiplier must be >= 1")
        # Fail fast on malformed durations
        parse_duration(self.base_delay)
        parse_duration(self.max_delay)

    def should_retry(self, attempt: int) -> bool:
        """Whether retry number ``attempt`` (0-indexed) is allowed."""
        return attempt < self.retry_count

    def next_delay(self, attempt: int, error: BaseException) -> int:
        """Delay in milliseconds before retry number ``attempt``."""
        if self.delay_fn is not None:
            return parse_duration(self.delay_fn(attempt, error))

        base = parse_duration(self.base_delay)
        if not self.exponential:
            delay = float(base)
        else:
            delay = min(float(parse_duration(self.max_delay)), base * self.multiplier**attempt)

        if self.jitter and delay > 0:
            spread = delay * JITTER_RATIO
            delay += spread * (random.random() * 2 - 1)

        return max(0, int(delay))


NO_RETRY = RetryPolicy(retry_count=0)

__all__ = ["NO_RETRY", "RetryDelayFn", "RetryPolicy"]
