import asyncio
import logging
import sqlite3
import threading
import time
from datetime import timedelta

from jearch.domain.models import EmailStatus, EmailTemplate
from jearch.domain.ports.mail import MailTransportError
from jearch.domain.retry import ExponentialBackoff, RetryPolicy
from jearch.services.delivery_queue import DeliveryQueue
from jearch.services.email_dispatcher import EmailDispatcher


class RecordingTransport:
    def __init__(self, failures=0):
        self.failures = failures
        self.sent = []
        self._lock = threading.Lock()

    def send(self, email):
        with self._lock:
            if self.failures:
                self.failures -= 1
                raise MailTransportError("550 mailbox unavailable")
            self.sent.append(email.id)


class AlwaysFailingTransport:
    def __init__(self):
        self.calls = 0

    def send(self, email):
        self.calls += 1
        raise MailTransportError("connection refused")


class SlowTransport:
    def send(self, email):
        time.sleep(0.3)


def _enqueue(queue, to_address="user@example.com"):
    return queue.enqueue(to_address, "Subject", "Body", EmailTemplate.PASSWORD_RESET)


def test_dispatch_sends_due_items(queue, clock):
    email = _enqueue(queue)
    transport = RecordingTransport()
    dispatcher = EmailDispatcher(queue, transport, clock=clock)

    summary = asyncio.run(dispatcher.dispatch_ready())

    assert (summary.claimed, summary.sent) == (1, 1)
    assert transport.sent == [email.id]
    stored = queue.get(email.id)
    assert stored.status is EmailStatus.SENT
    assert stored.sent_at == clock.now


def test_failures_retry_until_budget_then_alert(queue, clock, caplog):
    email = _enqueue(queue)
    transport = AlwaysFailingTransport()
    alerts = []

    async def on_failed(item):
        alerts.append(item)

    dispatcher = EmailDispatcher(queue, transport, on_failed=on_failed, clock=clock)

    first = asyncio.run(dispatcher.dispatch_ready())
    assert first.retried == 1
    assert asyncio.run(dispatcher.dispatch_ready()).claimed == 0

    clock.advance(minutes=1)
    assert asyncio.run(dispatcher.dispatch_ready()).retried == 1

    clock.advance(minutes=2)
    with caplog.at_level(logging.ERROR, logger="jearch.services.email_dispatcher"):
        last = asyncio.run(dispatcher.dispatch_ready())

    assert last.failed == 1
    assert transport.calls == 3
    stored = queue.get(email.id)
    assert stored.status is EmailStatus.FAILED
    assert stored.attempts == 3
    assert stored.sent_at is None
    assert [item.id for item in alerts] == [email.id]
    assert any("failed permanently" in record.getMessage() for record in caplog.records)


def test_transient_failure_then_success(queue, clock):
    email = _enqueue(queue)
    transport = RecordingTransport(failures=1)
    dispatcher = EmailDispatcher(queue, transport, clock=clock)

    asyncio.run(dispatcher.dispatch_ready())
    clock.advance(minutes=1)
    summary = asyncio.run(dispatcher.dispatch_ready())

    assert summary.sent == 1
    stored = queue.get(email.id)
    assert stored.status is EmailStatus.SENT
    assert stored.attempts == 1


def test_send_timeout_counts_as_failed_attempt(queue, clock):
    email = _enqueue(queue)
    dispatcher = EmailDispatcher(queue, SlowTransport(), send_timeout_seconds=0.05, clock=clock)

    summary = asyncio.run(dispatcher.dispatch_ready())

    assert summary.retried == 1
    stored = queue.get(email.id)
    assert stored.attempts == 1
    assert "timed out" in stored.error_message
    assert stored.next_retry_at == clock.now + timedelta(minutes=1)


def test_concurrent_dispatchers_do_not_double_send(queue, clock):
    emails = [_enqueue(queue, to_address=f"user{i}@example.com") for i in range(5)]
    transport = RecordingTransport()
    first = EmailDispatcher(queue, transport, max_workers=2, clock=clock)
    second = EmailDispatcher(queue, transport, max_workers=2, clock=clock)

    async def run_both():
        return await asyncio.gather(first.dispatch_ready(), second.dispatch_ready())

    summaries = asyncio.run(run_both())

    assert sum(s.sent for s in summaries) == len(emails)
    assert sorted(transport.sent) == sorted(email.id for email in emails)


def test_cancelled_item_result_is_discarded(queue, clock):
    email = _enqueue(queue)

    class CancellingTransport:
        def send(self, item):
            queue.cancel(item.id, "operator")

    summary = asyncio.run(EmailDispatcher(queue, CancellingTransport(), clock=clock).dispatch_ready())

    assert summary.discarded == 1
    stored = queue.get(email.id)
    assert stored.status is EmailStatus.FAILED
    assert stored.sent_at is None


def test_background_loop_drains_queue(queue, clock):
    email = _enqueue(queue)
    transport = RecordingTransport()

    async def scenario():
        dispatcher = EmailDispatcher(queue, transport, interval_seconds=0.01, clock=clock)
        await dispatcher.start()
        assert dispatcher.is_running
        for _ in range(100):
            if transport.sent:
                break
            await asyncio.sleep(0.01)
        await dispatcher.stop()
        return dispatcher.is_running

    assert asyncio.run(scenario()) is False
    assert transport.sent == [email.id]


class CountingSlowTransport:
    def __init__(self, delay):
        self.delay = delay
        self.calls = []
        self.in_flight = 0
        self.max_in_flight = 0
        self._lock = threading.Lock()

    def send(self, email):
        with self._lock:
            self.calls.append(email.id)
            self.in_flight += 1
            self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            time.sleep(self.delay)
        finally:
            with self._lock:
                self.in_flight -= 1


class FailAfterDelayTransport:
    def __init__(self, clock):
        self.clock = clock

    def send(self, email):
        self.clock.advance(seconds=10)
        raise MailTransportError("451 greylisted")


class BrokenBookkeepingQueue(DeliveryQueue):
    broken_id = None

    def mark_sent(self, email, now):
        if email.id == self.broken_id:
            raise sqlite3.OperationalError("database is locked")
        return super().mark_sent(email, now)


def _fast_retry_queue(persistence, clock):
    policy = RetryPolicy(
        max_attempts=5,
        backoff=ExponentialBackoff(base=timedelta(seconds=1), ceiling=timedelta(seconds=10)),
    )
    return DeliveryQueue(persistence, policy, clock=clock)


def test_timed_out_send_holds_its_lease_until_the_transport_returns(persistence, clock):
    queue = _fast_retry_queue(persistence, clock)
    email = _enqueue(queue)
    transport = CountingSlowTransport(delay=0.5)
    first = EmailDispatcher(queue, transport, send_timeout_seconds=0.05, clock=clock)
    second = EmailDispatcher(queue, transport, send_timeout_seconds=0.05, clock=clock)

    async def scenario():
        timed_out = await first.dispatch_ready()
        clock.advance(seconds=1)
        same_dispatcher = await first.dispatch_ready()
        other_dispatcher = await second.dispatch_ready()
        await asyncio.sleep(0.7)
        resumed = await second.dispatch_ready()
        return timed_out, same_dispatcher, other_dispatcher, resumed

    timed_out, same_dispatcher, other_dispatcher, resumed = asyncio.run(scenario())

    assert timed_out.retried == 1
    assert same_dispatcher.claimed == 0
    assert other_dispatcher.claimed == 0
    assert resumed.claimed == 1
    assert transport.calls == [email.id, email.id]
    assert transport.max_in_flight == 1
    stored = queue.get(email.id)
    assert stored.attempts == 2
    assert stored.claimed_until is None


def test_item_with_send_still_running_is_deferred_after_hold_expires(persistence, clock):
    queue = _fast_retry_queue(persistence, clock)
    email = _enqueue(queue)
    transport = CountingSlowTransport(delay=0.5)
    dispatcher = EmailDispatcher(queue, transport, send_timeout_seconds=0.05, clock=clock)

    async def scenario():
        await dispatcher.dispatch_ready()
        clock.advance(minutes=5)
        return await dispatcher.dispatch_ready()

    summary = asyncio.run(scenario())

    assert (summary.claimed, summary.deferred) == (1, 1)
    assert transport.calls == [email.id]
    assert transport.max_in_flight == 1
    assert queue.get(email.id).attempts == 1


def test_workers_lease_one_item_at_a_time(queue, clock):
    emails = [_enqueue(queue, to_address=f"user{i}@example.com") for i in range(3)]
    transport = CountingSlowTransport(delay=0.1)
    first = EmailDispatcher(queue, transport, max_workers=1, send_timeout_seconds=1, clock=clock)
    second = EmailDispatcher(queue, transport, max_workers=1, send_timeout_seconds=1, clock=clock)

    async def scenario():
        task = asyncio.create_task(first.dispatch_ready())
        await asyncio.sleep(0.03)
        leased = [item.id for item in queue.list() if item.claimed_until is not None]
        other = await second.dispatch_ready()
        return leased, await task, other

    leased, first_summary, second_summary = asyncio.run(scenario())

    assert len(leased) == 1
    assert first_summary.sent + second_summary.sent == 3
    assert second_summary.discarded == 0
    assert sorted(transport.calls) == sorted(email.id for email in emails)


def test_retry_is_scheduled_from_the_failure_instant(queue, clock):
    email = _enqueue(queue)
    started = clock.now

    asyncio.run(EmailDispatcher(queue, FailAfterDelayTransport(clock), clock=clock).dispatch_ready())

    stored = queue.get(email.id)
    assert stored.next_retry_at == started + timedelta(seconds=10) + timedelta(minutes=1)
    assert stored.updated_at == started + timedelta(seconds=10)


def test_bookkeeping_error_on_one_item_does_not_abort_the_cycle(persistence, retry_policy, clock, caplog):
    queue = BrokenBookkeepingQueue(persistence, retry_policy, clock=clock)
    emails = [_enqueue(queue, to_address=f"user{i}@example.com") for i in range(3)]
    queue.broken_id = emails[1].id
    transport = RecordingTransport()

    with caplog.at_level(logging.ERROR, logger="jearch.services.email_dispatcher"):
        summary = asyncio.run(EmailDispatcher(queue, transport, max_workers=2, clock=clock).dispatch_ready())

    assert summary.claimed == 3
    assert summary.sent == 2
    assert summary.errored == 1
    assert len(transport.sent) == 3
    assert any(emails[1].id in record.getMessage() for record in caplog.records)
    assert queue.get(emails[1].id).status is EmailStatus.PENDING
