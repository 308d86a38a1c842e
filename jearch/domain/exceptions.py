"""Shared exceptions for service layer operations."""

from __future__ import annotations

from .models.login_attempt import RateLimitInfo


class RecordNotFoundError(Exception):
    """Raised when a record does not exist or is not owned by the requesting user."""

    def __init__(self, kind: str, record_id: str) -> None:
        self.kind = kind
        self.record_id = record_id
        super().__init__(f"{kind} record not found: {record_id}")


class InvalidStateError(Exception):
    """Raised when an operation is invalid for a resource's current state."""

    def __init__(self, message: str) -> None:
        super().__init__(message)


class UserFlowError(Exception):
    """Raised when an account flow (registration, token redemption...) is rejected."""

    def __init__(self, message: str) -> None:
        super().__init__(message)


class InvalidCredentialsError(Exception):
    """Raised on a failed credential check. Carries the post-attempt rate limit state."""

    def __init__(self, info: RateLimitInfo) -> None:
        self.info = info
        super().__init__("Invalid email or password")


class AccountLockedError(Exception):
    """Raised when a login is refused before credential verification because of lockout."""

    def __init__(self, info: RateLimitInfo) -> None:
        self.info = info
        super().__init__("Too many failed login attempts")


class EmailNotFoundError(LookupError):
    """Raised when a queued email id is unknown."""

    def __init__(self, email_id: str) -> None:
        self.email_id = email_id
        super().__init__(f"Queued email not found: {email_id}")
