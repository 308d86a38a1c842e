"""Login lockout decisions derived from the attempt ledger."""

from __future__ import annotations

import math
from datetime import datetime, timedelta
from typing import Optional

from ..domain.clock import ensure_utc
from ..domain.models import RateLimitInfo
from .attempt_ledger import AttemptLedger


class RateLimitPolicy:
    """
    Fixed-threshold lockout over a sliding window.

    An email is locked while at least ``threshold`` failed attempts fall within
    the last ``window``. The lock lifts when the ``threshold``-th most recent
    failure slides out of the window, which is what ``retry_after_seconds``
    counts down to.
    """

    def __init__(self, ledger: AttemptLedger, *, threshold: int, window: timedelta) -> None:
        if threshold < 1:
            raise ValueError("Lockout threshold must be at least 1.")
        if window <= timedelta(0):
            raise ValueError("Lockout window must be positive.")
        self._ledger = ledger
        self.threshold = threshold
        self.window = window

    def evaluate(
        self,
        email: str,
        now: datetime,
        *,
        not_before: Optional[datetime] = None,
    ) -> RateLimitInfo:
        """
        Args:
            email: Identity being logged into
            now: Evaluation instant
            not_before: Ignore failures earlier than this (set by an unlock link)
        """
        now = ensure_utc(now)
        window_start = now - self.window
        if not_before is not None and ensure_utc(not_before) > window_start:
            window_start = ensure_utc(not_before)

        failed = self._ledger.recent_failures(email, window_start, now)
        if failed < self.threshold:
            return RateLimitInfo(failed_attempts=failed, retry_after_seconds=None, is_locked=False)

        oldest_counted = self._ledger.nth_most_recent_failure(email, self.threshold, window_start, now)
        if oldest_counted is None:  # pragma: no cover
            oldest_counted = now
        remaining = (oldest_counted + self.window - now).total_seconds()
        return RateLimitInfo(
            failed_attempts=failed,
            retry_after_seconds=max(1, math.ceil(remaining)),
            is_locked=True,
        )
