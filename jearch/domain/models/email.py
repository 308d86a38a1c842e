"""Outbound email queue items."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional


class EmailStatus(str, Enum):
    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self is not EmailStatus.PENDING


class EmailTemplate(str, Enum):
    VERIFICATION = "verification"
    PASSWORD_RESET = "password_reset"
    UNLOCK = "unlock"


@dataclass(slots=True)
class QueuedEmail:
    """
    Email waiting for, or done with, delivery through the mail transport.

    Attributes:
        attempts: Failed delivery attempts so far, never above ``max_attempts``
        max_attempts: Attempt budget fixed when the item is enqueued
        next_retry_at: Earliest instant the dispatcher may pick the item up
        claimed_until: Lease held by a dispatcher while a send is in flight
    """

    id: str
    to_address: str
    subject: str
    body_text: str
    body_html: Optional[str]
    template: EmailTemplate
    user_id: Optional[str]
    attempts: int
    max_attempts: int
    next_retry_at: Optional[datetime]
    status: EmailStatus
    error_message: Optional[str]
    sent_at: Optional[datetime]
    claimed_until: Optional[datetime]
    created_at: datetime
    updated_at: datetime

    def __repr__(self) -> str:
        return (
            f"<QueuedEmail id={self.id} template={self.template.value} "
            f"status={self.status.value} attempts={self.attempts}/{self.max_attempts}>"
        )
