from datetime import timedelta

import pytest

from jearch.services.attempt_ledger import AttemptLedger, normalize_email

EMAIL = "user@example.com"


@pytest.fixture
def ledger(persistence):
    return AttemptLedger(persistence)


def test_counts_failures_inside_inclusive_window(ledger, clock):
    t0 = clock.now
    for offset in (0, 1, 20):
        ledger.record(EMAIL, "203.0.113.7", False, t0 + timedelta(minutes=offset))

    assert ledger.recent_failures(EMAIL, t0, t0 + timedelta(minutes=20)) == 3
    assert ledger.recent_failures(EMAIL, t0 + timedelta(seconds=30), t0 + timedelta(minutes=20)) == 2
    assert ledger.recent_failures(EMAIL, t0, t0 + timedelta(minutes=10)) == 2
    assert ledger.recent_failures(EMAIL, t0 + timedelta(minutes=21)) == 0


def test_successes_are_recorded_but_not_counted(ledger, clock):
    ledger.record(EMAIL, None, False, clock.now)
    attempt = ledger.record(EMAIL, None, True, clock.now + timedelta(seconds=1))

    assert attempt.success is True
    assert ledger.recent_failures(EMAIL, clock.now - timedelta(minutes=1)) == 1


def test_email_is_normalised(ledger, clock):
    ledger.record("  User@Example.COM ", None, False, clock.now)

    assert normalize_email("  User@Example.COM ") == EMAIL
    assert ledger.recent_failures(EMAIL, clock.now) == 1
    assert ledger.recent_failures("other@example.com", clock.now) == 0


def test_nth_most_recent_failure(ledger, clock):
    t0 = clock.now
    for offset in range(3):
        ledger.record(EMAIL, None, False, t0 + timedelta(minutes=offset))

    assert ledger.nth_most_recent_failure(EMAIL, 1, t0) == t0 + timedelta(minutes=2)
    assert ledger.nth_most_recent_failure(EMAIL, 3, t0) == t0
    assert ledger.nth_most_recent_failure(EMAIL, 4, t0) is None
    assert ledger.nth_most_recent_failure(EMAIL, 1, t0, t0 + timedelta(seconds=30)) == t0
