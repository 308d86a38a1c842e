"""Durable outbound email queue with bounded retry."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import List, Optional

from ..domain.clock import Clock, utc_now
from ..domain.exceptions import EmailNotFoundError, InvalidStateError
from ..domain.models import EmailStatus, EmailTemplate, QueuedEmail
from ..domain.ports.persistence import EmailQueueRepository
from ..domain.retry import RetryPolicy

logger = logging.getLogger(__name__)


class DeliveryQueue:
    """
    State machine over QueuedEmail items.

    ``pending`` moves to ``sent`` on a successful delivery, stays ``pending``
    with a rescheduled ``next_retry_at`` on a failure within budget, and moves
    to ``failed`` when the failure spends the last attempt. Every transition
    is conditional on the item still being ``pending`` with the attempt count
    the caller observed, so stale results (e.g. after a cancellation) are
    discarded instead of overwriting a terminal state.
    """

    def __init__(
        self,
        repository: EmailQueueRepository,
        retry_policy: RetryPolicy,
        *,
        clock: Clock = utc_now,
    ) -> None:
        self._repository = repository
        self._retry_policy = retry_policy
        self._clock = clock

    @property
    def retry_policy(self) -> RetryPolicy:
        return self._retry_policy

    def enqueue(
        self,
        to_address: str,
        subject: str,
        body_text: str,
        template: EmailTemplate,
        *,
        body_html: Optional[str] = None,
        user_id: Optional[str] = None,
        max_attempts: Optional[int] = None,
    ) -> QueuedEmail:
        budget = max_attempts if max_attempts is not None else self._retry_policy.max_attempts
        if budget <= 0:
            raise ValueError("max_attempts must be greater than zero.")
        email = self._repository.insert_email(
            to_address=to_address,
            subject=subject,
            body_text=body_text,
            body_html=body_html,
            template=template,
            user_id=user_id,
            max_attempts=budget,
            now=self._clock(),
        )
        logger.info("Queued %s email %s for %s", template.value, email.id, to_address)
        return email

    def claim_ready(
        self,
        now: datetime,
        lease: timedelta,
        limit: int = 100,
        *,
        due_by: Optional[datetime] = None,
    ) -> List[QueuedEmail]:
        """
        Lease up to ``limit`` pending items so no other dispatcher picks them up.

        Items must be due at ``due_by`` (default ``now``) and hold no lease
        still running at ``now``. The lease runs until ``now + lease``.
        """
        return self._repository.claim_ready_emails(now, now + lease, limit, due_by)

    def mark_sent(self, email: QueuedEmail, now: datetime) -> Optional[QueuedEmail]:
        updated = self._repository.complete_email(email.id, email.attempts, now)
        if updated is None:
            logger.warning("Discarding delivery result for email %s: no longer pending.", email.id)
        return updated

    def mark_failed_attempt(
        self,
        email: QueuedEmail,
        error: str,
        now: datetime,
        *,
        hold_until: Optional[datetime] = None,
    ) -> Optional[QueuedEmail]:
        """Record a failed attempt. ``hold_until`` keeps the item leased while a send is still running."""
        outcome = self._retry_policy.on_failure(email.attempts, now, max_attempts=email.max_attempts)
        status = EmailStatus.FAILED if outcome.exhausted else EmailStatus.PENDING
        updated = self._repository.fail_email_attempt(
            email.id,
            expected_attempts=email.attempts,
            attempts=outcome.attempts,
            status=status,
            next_retry_at=outcome.next_retry_at,
            error_message=error,
            now=now,
            hold_until=hold_until,
        )
        if updated is None:
            logger.warning("Discarding failure result for email %s: no longer pending.", email.id)
        return updated

    def release_claim(self, email_id: str, claimed_until: datetime) -> bool:
        """Drop the lease on an item if it still ends at ``claimed_until``."""
        return self._repository.release_email_claim(email_id, claimed_until)

    def cancel(self, email_id: str, reason: str) -> QueuedEmail:
        """Force a pending item into the terminal ``failed`` state."""
        cancelled = self._repository.cancel_email(email_id, f"Cancelled: {reason}", self._clock())
        if cancelled is not None:
            logger.warning("Email %s cancelled: %s", email_id, reason)
            return cancelled
        current = self._repository.get_email(email_id)
        if current is None:
            raise EmailNotFoundError(email_id)
        raise InvalidStateError(f"Email {email_id} is already {current.status.value}.")

    def get(self, email_id: str) -> QueuedEmail:
        email = self._repository.get_email(email_id)
        if email is None:
            raise EmailNotFoundError(email_id)
        return email

    def list(self, status: Optional[EmailStatus] = None, limit: int = 100) -> List[QueuedEmail]:
        return self._repository.list_emails(status, limit)
