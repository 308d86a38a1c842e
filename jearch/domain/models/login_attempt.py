from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional


@dataclass(frozen=True, slots=True)
class LoginAttemptRecord:
    id: str
    email: str
    ip_address: Optional[str]
    success: bool
    attempt_at: datetime


@dataclass(frozen=True, slots=True)
class RateLimitInfo:
    failed_attempts: int
    retry_after_seconds: Optional[int]
    is_locked: bool
