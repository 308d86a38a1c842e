from __future__ import annotations

from contextlib import AbstractContextManager
from datetime import datetime
from typing import Any, Dict, List, Optional, Protocol

from ..models import (
    EditableRecord,
    EmailStatus,
    EmailTemplate,
    LoginAttemptRecord,
    QueuedEmail,
    RecordKind,
    User,
)


class UserRepository(Protocol):
    """Persistence functions related to user accounts."""

    def create_user(
        self,
        email: str,
        password_hash: str,
        verification_token: Optional[str],
        verification_expires_at: Optional[datetime],
    ) -> User:
        ...

    def get_user_by_id(self, user_id: str) -> Optional[User]:
        ...

    def get_user_by_email(self, email: str) -> Optional[User]:
        ...

    def get_user_by_token(self, column: str, token: str) -> Optional[User]:
        ...

    def update_user(self, user_id: str, **changes: Any) -> User:
        ...


class LockedRecord(Protocol):
    """A record row held inside an open write transaction."""

    record: Optional[EditableRecord]

    def apply(self, changes: Dict[str, Any], updated_at: datetime) -> EditableRecord:
        ...


class RecordRepository(Protocol):
    """Persistence functions for the editable career records."""

    def create_record(self, kind: RecordKind, user_id: str, values: Dict[str, Any]) -> EditableRecord:
        ...

    def get_record(self, kind: RecordKind, user_id: str, record_id: str) -> Optional[EditableRecord]:
        ...

    def list_records(self, kind: RecordKind, user_id: str) -> List[EditableRecord]:
        ...

    def delete_record(self, kind: RecordKind, user_id: str, record_id: str) -> bool:
        ...

    def lock_record(
        self, kind: RecordKind, user_id: str, record_id: str
    ) -> AbstractContextManager[LockedRecord]:
        """Open a write transaction holding the row until the context exits."""
        ...


class EmailQueueRepository(Protocol):
    """Durable storage for the outbound email queue."""

    def insert_email(
        self,
        to_address: str,
        subject: str,
        body_text: str,
        body_html: Optional[str],
        template: EmailTemplate,
        user_id: Optional[str],
        max_attempts: int,
        now: datetime,
    ) -> QueuedEmail:
        ...

    def get_email(self, email_id: str) -> Optional[QueuedEmail]:
        ...

    def list_emails(self, status: Optional[EmailStatus], limit: int) -> List[QueuedEmail]:
        ...

    def claim_ready_emails(
        self,
        now: datetime,
        lease_until: datetime,
        limit: int,
        due_by: Optional[datetime] = None,
    ) -> List[QueuedEmail]:
        ...

    def complete_email(self, email_id: str, expected_attempts: int, sent_at: datetime) -> Optional[QueuedEmail]:
        ...

    def fail_email_attempt(
        self,
        email_id: str,
        expected_attempts: int,
        attempts: int,
        status: EmailStatus,
        next_retry_at: Optional[datetime],
        error_message: str,
        now: datetime,
        hold_until: Optional[datetime] = None,
    ) -> Optional[QueuedEmail]:
        ...

    def cancel_email(self, email_id: str, error_message: str, now: datetime) -> Optional[QueuedEmail]:
        ...

    def release_email_claim(self, email_id: str, claimed_until: datetime) -> bool:
        ...


class LoginAttemptRepository(Protocol):
    """Append-only storage of login attempts."""

    def append_login_attempt(
        self,
        email: str,
        ip_address: Optional[str],
        success: bool,
        attempt_at: datetime,
    ) -> LoginAttemptRecord:
        ...

    def count_failed_attempts(self, email: str, window_start: datetime, until: Optional[datetime]) -> int:
        ...

    def nth_recent_failure(
        self,
        email: str,
        n: int,
        window_start: datetime,
        until: Optional[datetime],
    ) -> Optional[datetime]:
        ...


class PersistenceGateway(
    UserRepository,
    RecordRepository,
    EmailQueueRepository,
    LoginAttemptRepository,
    Protocol,
):
    """Composite gateway combining every persistence concern used by the app."""

    def close(self) -> None:
        ...
