from __future__ import annotations

from datetime import datetime
from typing import Optional

from ..domain.models import LoginAttemptRecord
from ..domain.ports.persistence import LoginAttemptRepository


def normalize_email(email: str) -> str:
    return email.strip().lower()


class AttemptLedger:
    """Append-only history of login attempts, keyed by normalised email."""

    def __init__(self, repository: LoginAttemptRepository) -> None:
        self._repository = repository

    def record(
        self,
        email: str,
        ip_address: Optional[str],
        success: bool,
        at: datetime,
    ) -> LoginAttemptRecord:
        return self._repository.append_login_attempt(normalize_email(email), ip_address, success, at)

    def recent_failures(
        self,
        email: str,
        window_start: datetime,
        until: Optional[datetime] = None,
    ) -> int:
        """Count failed attempts with ``window_start <= attempt_at <= until``."""
        return self._repository.count_failed_attempts(normalize_email(email), window_start, until)

    def nth_most_recent_failure(
        self,
        email: str,
        n: int,
        window_start: datetime,
        until: Optional[datetime] = None,
    ) -> Optional[datetime]:
        return self._repository.nth_recent_failure(normalize_email(email), n, window_start, until)
