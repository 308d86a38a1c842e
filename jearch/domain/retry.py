"""Bounded retry with backoff, shared by every retryable side effect."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional

BackoffFunction = Callable[[int], timedelta]


@dataclass(frozen=True, slots=True)
class ExponentialBackoff:
    """Delay doubling per failed attempt, starting at ``base`` and capped at ``ceiling``."""

    base: timedelta
    ceiling: timedelta

    def __post_init__(self) -> None:
        if self.base <= timedelta(0):
            raise ValueError("Backoff base delay must be positive.")
        if self.ceiling < self.base:
            raise ValueError("Backoff ceiling must not be lower than the base delay.")

    def delay(self, attempt: int) -> timedelta:
        if attempt < 1:
            raise ValueError("Backoff is only defined for attempt >= 1.")
        exponent = min(attempt - 1, 64)
        seconds = self.base.total_seconds() * (2**exponent)
        return min(timedelta(seconds=min(seconds, self.ceiling.total_seconds())), self.ceiling)

    def __call__(self, attempt: int) -> timedelta:
        return self.delay(attempt)


@dataclass(frozen=True, slots=True)
class RetryOutcome:
    attempts: int
    exhausted: bool
    next_retry_at: Optional[datetime]


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    max_attempts: int
    backoff: BackoffFunction

    def __post_init__(self) -> None:
        if self.max_attempts <= 0:
            raise ValueError("max_attempts must be greater than zero.")

    def on_failure(
        self,
        attempts: int,
        now: datetime,
        *,
        max_attempts: Optional[int] = None,
    ) -> RetryOutcome:
        """
        Account for one more failed attempt.

        Args:
            attempts: Failed attempts recorded before this one
            now: Instant of the failure, used as the backoff origin
            max_attempts: Per-item budget overriding the policy default

        Returns:
            The new attempt count, whether the budget is spent, and when to retry
        """
        budget = max_attempts if max_attempts is not None else self.max_attempts
        if attempts >= budget:
            raise ValueError(f"Attempt budget of {budget} already spent.")
        total = attempts + 1
        if total >= budget:
            return RetryOutcome(attempts=total, exhausted=True, next_retry_at=None)
        return RetryOutcome(attempts=total, exhausted=False, next_retry_at=now + self.backoff(total))
