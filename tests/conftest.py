from datetime import date, datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

from jearch.core.app_factory import create_application
from jearch.core.config import Settings
from jearch.domain.models import RecordKind
from jearch.domain.retry import ExponentialBackoff, RetryPolicy
from jearch.infrastructure.persistence.sqlite import SQLitePersistence
from jearch.services.delivery_queue import DeliveryQueue


PASSWORD = "correct-horse-battery"
OPERATOR_TOKEN = "operator-secret-token"

BASE_ENV = {
    "JWT_SECRET": "tests-jwt-secret",
    "LOGIN_LOCKOUT_THRESHOLD": "5",
    "LOGIN_LOCKOUT_WINDOW_SECONDS": "900",
    "EMAIL_MAX_ATTEMPTS": "3",
    "EMAIL_BACKOFF_BASE_SECONDS": "60",
    "EMAIL_BACKOFF_MAX_SECONDS": "600",
    "EMAIL_DISPATCHER_ENABLED": "false",
    "OPERATOR_TOKEN": OPERATOR_TOKEN,
}


class FakeClock:
    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock():
    return FakeClock(datetime(2026, 1, 5, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def persistence(tmp_path, clock):
    store = SQLitePersistence(tmp_path / "jearch.sqlite3", clock=clock)
    yield store
    store.close()


@pytest.fixture
def retry_policy():
    return RetryPolicy(
        max_attempts=3,
        backoff=ExponentialBackoff(base=timedelta(minutes=1), ceiling=timedelta(minutes=10)),
    )


@pytest.fixture
def queue(persistence, retry_policy, clock):
    return DeliveryQueue(persistence, retry_policy, clock=clock)


@pytest.fixture
def user(persistence):
    return persistence.create_user(
        email="owner@example.com",
        password_hash="not-a-real-hash",
        verification_token=None,
        verification_expires_at=None,
    )


@pytest.fixture
def professional_record(persistence, user):
    return persistence.create_record(
        RecordKind.PROFESSIONAL,
        user.id,
        {
            "company": "Acme",
            "role": "Engineer",
            "start_date": date(2020, 1, 1),
            "is_current": True,
        },
    )


@pytest.fixture
def env(monkeypatch, tmp_path):
    for key, value in BASE_ENV.items():
        monkeypatch.setenv(key, value)
    monkeypatch.setenv("DATABASE_PATH", str(tmp_path / "api.sqlite3"))
    for key in ("SMTP_HOST", "SMTP_USERNAME", "SMTP_FROM_EMAIL", "CORS_ALLOW_ORIGINS"):
        monkeypatch.delenv(key, raising=False)


@pytest.fixture
def settings(env):
    return Settings()


@pytest.fixture
def client(settings):
    app = create_application(settings)
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def container(client):
    return client.app.state.container


def register(client, email="user@example.com", password=PASSWORD):
    response = client.post("/api/users/register", json={"email": email, "password": password})
    assert response.status_code == 201, response.text
    return response.json()


def login(client, email="user@example.com", password=PASSWORD):
    return client.post("/api/users/login", json={"email": email, "password": password})


def auth_headers(client, email="user@example.com"):
    register(client, email=email)
    response = login(client, email=email)
    assert response.status_code == 200, response.text
    return {"Authorization": f"Bearer {response.json()['access_token']}"}
