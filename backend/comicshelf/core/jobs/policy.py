"""Retry policy for ingestion jobs."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

BackoffStrategy = Literal["exponential", "fixed"]


@dataclass(frozen=True)
class RetryPolicy:
    """How many times a job may run and how long to wait between attempts.

    With the exponential strategy the wait after attempt ``n`` is
    ``backoff_base * 2 ** (n - 1)``, capped at ``max_delay``.
    """

    max_attempts: int = 3
    backoff_base: float = 5.0
    backoff_strategy: BackoffStrategy = "exponential"
    max_delay: float = 3600.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.backoff_base < 0:
            raise ValueError("backoff_base must not be negative")

    def delay_for(self, attempt: int) -> float:
        """Seconds to wait before retrying after the given (1-based) failed attempt."""
        if self.backoff_strategy == "fixed":
            delay = self.backoff_base
        else:
            delay = self.backoff_base * (2 ** max(attempt - 1, 0))
        return min(delay, self.max_delay)

    def should_retry(self, attempts: int) -> bool:
        return attempts < self.max_attempts
