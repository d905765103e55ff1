"""Retry delay helpers used by the queue worker."""

from __future__ import annotations

import random
from dataclasses import dataclass
from typing import Callable


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    """Retry ceiling and exponential backoff parameters."""

    max_attempts: int = 5
    base_delay_seconds: float = 2.0
    max_delay_seconds: float = 60.0
    jitter_seconds: float = 1.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.base_delay_seconds < 0 or self.max_delay_seconds < 0:
            raise ValueError("delays must not be negative")
        if self.jitter_seconds < 0:
            raise ValueError("jitter_seconds must not be negative")

    def is_exhausted(self, attempt: int) -> bool:
        """Return ``True`` once ``attempt`` reached the retry ceiling."""

        return attempt >= self.max_attempts

    def delay_for(self, attempt: int, *, rng: Callable[[], float] = random.random) -> float:
        """Return the delay before retry number ``attempt`` (1-based)."""

        return calculate_backoff(
            attempt,
            base_delay_seconds=self.base_delay_seconds,
            max_delay_seconds=self.max_delay_seconds,
            jitter_seconds=self.jitter_seconds,
            rng=rng,
        )


def calculate_backoff(
    attempt: int,
    *,
    base_delay_seconds: float,
    max_delay_seconds: float,
    jitter_seconds: float = 0.0,
    rng: Callable[[], float] = random.random,
) -> float:
    """Return ``min(base * 2**(attempt - 1), cap) + uniform(0, jitter)``."""

    if attempt < 1:
        raise ValueError("attempt must be positive")
    exponent = min(attempt - 1, 32)
    delay = min(base_delay_seconds * (2**exponent), max_delay_seconds)
    if jitter_seconds:
        delay += rng() * jitter_seconds
    return delay


__all__ = ["RetryPolicy", "calculate_backoff"]
