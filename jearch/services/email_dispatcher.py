from __future__ import annotations

import asyncio
import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Awaitable, Callable, Dict, Optional

from ..domain.clock import Clock, utc_now
from ..domain.models import EmailStatus, QueuedEmail
from ..domain.ports.mail import MailTransport
from .delivery_queue import DeliveryQueue

logger = logging.getLogger(__name__)

FailedEmailCallback = Callable[[QueuedEmail], Awaitable[None]]

# Extra lease time on top of the send timeout, covering the bookkeeping writes.
_LEASE_MARGIN = timedelta(seconds=30)


@dataclass(slots=True)
class DispatchSummary:
    claimed: int = 0
    sent: int = 0
    retried: int = 0
    failed: int = 0
    discarded: int = 0
    deferred: int = 0
    errored: int = 0


class _SendAttempt:
    """One transport call. It can outlive the dispatcher's wait on it after a timeout."""

    def __init__(self, email: QueuedEmail) -> None:
        self.email = email
        self.lock = threading.Lock()
        self.finished = False
        self.hold_until: Optional[datetime] = None


class EmailDispatcher:
    """
    Background worker that drains due items from the delivery queue.

    Each worker leases one item right before sending it, so the lease clock
    starts when the send does. A send that times out keeps its item leased
    until the transport call actually returns: an item never has two
    transport calls in flight.
    """

    def __init__(
        self,
        queue: DeliveryQueue,
        transport: MailTransport,
        *,
        interval_seconds: float = 30.0,
        send_timeout_seconds: float = 30.0,
        max_workers: int = 4,
        batch_size: int = 100,
        on_failed: Optional[FailedEmailCallback] = None,
        clock: Clock = utc_now,
    ) -> None:
        if max_workers < 1:
            raise ValueError("max_workers must be at least 1.")
        self._queue = queue
        self._transport = transport
        self._interval = interval_seconds
        self._send_timeout = send_timeout_seconds
        self._lease = timedelta(seconds=send_timeout_seconds) + _LEASE_MARGIN
        self._max_workers = max_workers
        self._batch_size = batch_size
        self._on_failed = on_failed
        self._clock = clock
        self._in_flight: Dict[str, _SendAttempt] = {}
        self._in_flight_lock = threading.Lock()
        self._task: Optional[asyncio.Task[None]] = None
        self._shutdown = asyncio.Event()

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        if self.is_running:
            return
        logger.info(
            "Starting email dispatcher (interval=%ss, workers=%s).", self._interval, self._max_workers
        )
        self._shutdown.clear()
        loop = asyncio.get_running_loop()
        self._task = loop.create_task(self._run(), name="email-dispatcher")

    async def stop(self) -> None:
        if self._task is None:
            return
        logger.info("Stopping email dispatcher.")
        self._shutdown.set()
        await asyncio.gather(self._task, return_exceptions=True)
        self._task = None

    async def _run(self) -> None:
        while not self._shutdown.is_set():
            try:
                await self.dispatch_ready()
            except Exception:
                logger.exception("Email dispatch cycle failed.")
            try:
                await asyncio.wait_for(self._shutdown.wait(), timeout=self._interval)
            except asyncio.TimeoutError:
                continue

    async def dispatch_ready(self, now: Optional[datetime] = None) -> DispatchSummary:
        """
        Deliver the pending items due at ``now``, at most ``batch_size`` of them.

        ``max_workers`` workers each claim one item at a time, so no more than
        ``max_workers`` items are leased by this call at once. Every worker is
        collected before the summary is returned.
        """
        due_by = now or self._clock()
        summary = DispatchSummary()

        async def _worker() -> None:
            while summary.claimed < self._batch_size:
                claimed = self._queue.claim_ready(self._clock(), self._lease, limit=1, due_by=due_by)
                if not claimed:
                    return
                summary.claimed += 1
                email = claimed[0]
                if self._is_in_flight(email.id):
                    summary.deferred += 1
                    logger.warning("Email %s still has a send in flight; deferring it.", email.id)
                    continue
                try:
                    result = await self._deliver(email)
                except Exception:
                    summary.errored += 1
                    logger.exception("Recording the delivery result for email %s failed.", email.id)
                    continue
                _tally(summary, result)

        outcomes = await asyncio.gather(
            *(_worker() for _ in range(self._max_workers)), return_exceptions=True
        )
        for outcome in outcomes:
            if isinstance(outcome, BaseException):
                summary.errored += 1
                logger.error("Email dispatch worker stopped: %r", outcome)
        if summary.claimed:
            logger.debug("Dispatch cycle done: %s", summary)
        return summary

    def _is_in_flight(self, email_id: str) -> bool:
        with self._in_flight_lock:
            return email_id in self._in_flight

    async def _deliver(self, email: QueuedEmail) -> Optional[QueuedEmail]:
        attempt = _SendAttempt(email)
        with self._in_flight_lock:
            self._in_flight[email.id] = attempt

        error: Optional[str] = None
        timed_out = False
        try:
            await asyncio.wait_for(asyncio.to_thread(self._send, attempt), timeout=self._send_timeout)
        except asyncio.TimeoutError:
            timed_out = True
            error = f"Delivery timed out after {self._send_timeout:g}s"
        except Exception as exc:
            error = str(exc) or exc.__class__.__name__

        now = self._clock()
        if error is None:
            updated = self._queue.mark_sent(email, now)
            if updated is not None:
                logger.info("Sent %s email %s to %s", email.template.value, email.id, email.to_address)
            return updated

        if timed_out:
            updated = self._record_timeout(attempt, error, now)
        else:
            updated = self._queue.mark_failed_attempt(email, error, now)
        if updated is None:
            return None
        if updated.status is EmailStatus.FAILED:
            logger.error(
                "Email %s to %s failed permanently after %s attempts: %s",
                updated.id,
                updated.to_address,
                updated.attempts,
                error,
            )
            await self._notify_failed(updated)
        else:
            logger.warning(
                "Email %s attempt %s/%s failed (%s); retrying at %s",
                updated.id,
                updated.attempts,
                updated.max_attempts,
                error,
                updated.next_retry_at.isoformat() if updated.next_retry_at else "-",
            )
        return updated

    def _send(self, attempt: _SendAttempt) -> None:
        """Runs in a worker thread. Releases a timeout hold once the transport returns."""
        try:
            self._transport.send(attempt.email)
        finally:
            with attempt.lock:
                attempt.finished = True
                hold_until = attempt.hold_until
            with self._in_flight_lock:
                if self._in_flight.get(attempt.email.id) is attempt:
                    del self._in_flight[attempt.email.id]
            if hold_until is not None:
                try:
                    self._queue.release_claim(attempt.email.id, hold_until)
                except Exception:
                    logger.exception("Could not release the lease on email %s.", attempt.email.id)

    def _record_timeout(self, attempt: _SendAttempt, error: str, now: datetime) -> Optional[QueuedEmail]:
        # The lock orders this write before the sending thread's release.
        with attempt.lock:
            if attempt.finished:
                return self._queue.mark_failed_attempt(attempt.email, error, now)
            hold_until = now + self._lease
            updated = self._queue.mark_failed_attempt(attempt.email, error, now, hold_until=hold_until)
            if updated is not None:
                attempt.hold_until = hold_until
            return updated

    async def _notify_failed(self, email: QueuedEmail) -> None:
        if not self._on_failed:
            return
        try:
            await self._on_failed(email)
        except Exception:  # pragma: no cover
            logger.exception("Failed-email alert callback raised for email %s.", email.id)


def _tally(summary: DispatchSummary, result: Optional[QueuedEmail]) -> None:
    if result is None:
        summary.discarded += 1
    elif result.status is EmailStatus.SENT:
        summary.sent += 1
    elif result.status is EmailStatus.FAILED:
        summary.failed += 1
    else:
        summary.retried += 1
