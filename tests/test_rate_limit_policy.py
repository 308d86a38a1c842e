from datetime import timedelta

import pytest

from jearch.services.attempt_ledger import AttemptLedger
from jearch.services.rate_limit_policy import RateLimitPolicy

EMAIL = "user@example.com"
WINDOW = timedelta(minutes=15)


@pytest.fixture
def ledger(persistence):
    return AttemptLedger(persistence)


@pytest.fixture
def policy(ledger):
    return RateLimitPolicy(ledger, threshold=5, window=WINDOW)


def _fail(ledger, at, count=1):
    for _ in range(count):
        ledger.record(EMAIL, "198.51.100.4", False, at)


def test_below_threshold_is_not_locked(ledger, policy, clock):
    t0 = clock.now
    for minute in range(4):
        _fail(ledger, t0 + timedelta(minutes=minute))

    info = policy.evaluate(EMAIL, t0 + timedelta(minutes=4))

    assert info.is_locked is False
    assert info.failed_attempts == 4
    assert info.retry_after_seconds is None


def test_threshold_reached_locks_until_oldest_counted_failure_expires(ledger, policy, clock):
    t0 = clock.now
    for minute in range(5):
        _fail(ledger, t0 + timedelta(minutes=minute))

    at_lock = policy.evaluate(EMAIL, t0 + timedelta(minutes=4))
    later = policy.evaluate(EMAIL, t0 + timedelta(minutes=10))

    assert at_lock.is_locked is True
    assert at_lock.failed_attempts == 5
    assert at_lock.retry_after_seconds == 11 * 60
    assert later.retry_after_seconds == 5 * 60
    assert later.retry_after_seconds < at_lock.retry_after_seconds


def test_lock_lifts_once_failure_slides_out_of_window(ledger, policy, clock):
    t0 = clock.now
    for minute in range(5):
        _fail(ledger, t0 + timedelta(minutes=minute))

    at_edge = policy.evaluate(EMAIL, t0 + WINDOW)
    after = policy.evaluate(EMAIL, t0 + WINDOW + timedelta(seconds=1))

    assert at_edge.is_locked is True
    assert at_edge.retry_after_seconds == 1
    assert after.is_locked is False
    assert after.failed_attempts == 4


def test_retry_after_tracks_threshold_th_most_recent_failure(ledger, policy, clock):
    t0 = clock.now
    for minute in range(7):
        _fail(ledger, t0 + timedelta(minutes=minute))

    info = policy.evaluate(EMAIL, t0 + timedelta(minutes=6))

    assert info.failed_attempts == 7
    # 5th most recent failure happened at t0 + 2min.
    assert info.retry_after_seconds == (2 + 15 - 6) * 60


def test_success_does_not_reset_failures(ledger, policy, clock):
    _fail(ledger, clock.now, count=5)
    ledger.record(EMAIL, None, True, clock.now + timedelta(seconds=1))

    assert policy.evaluate(EMAIL, clock.now + timedelta(seconds=2)).is_locked is True


def test_not_before_ignores_earlier_failures(ledger, policy, clock):
    t0 = clock.now
    _fail(ledger, t0, count=5)
    cleared = t0 + timedelta(seconds=30)
    _fail(ledger, t0 + timedelta(minutes=1))

    info = policy.evaluate(EMAIL, t0 + timedelta(minutes=2), not_before=cleared)

    assert info.is_locked is False
    assert info.failed_attempts == 1


def test_other_emails_are_independent(ledger, policy, clock):
    _fail(ledger, clock.now, count=5)

    assert policy.evaluate("someone@example.com", clock.now).is_locked is False


@pytest.mark.parametrize("threshold, window", [(0, WINDOW), (5, timedelta(0))])
def test_rejects_invalid_configuration(ledger, threshold, window):
    with pytest.raises(ValueError):
        RateLimitPolicy(ledger, threshold=threshold, window=window)
