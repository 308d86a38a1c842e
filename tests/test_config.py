from pathlib import Path

import pytest

from jearch.core.config import Settings


def test_settings_read_environment(settings, tmp_path):
    assert settings.login_lockout_threshold == 5
    assert settings.login_lockout_window_seconds == 900
    assert settings.email_max_attempts == 3
    assert settings.email_backoff_base_seconds == 60
    assert settings.email_backoff_max_seconds == 600
    assert settings.email_dispatcher_enabled is False
    assert settings.database_path == Path(tmp_path / "api.sqlite3").resolve()
    assert settings.smtp_enabled is False
    assert settings.cors_allow_origins == ["*"]


@pytest.mark.parametrize(
    "missing",
    [
        "JWT_SECRET",
        "LOGIN_LOCKOUT_THRESHOLD",
        "LOGIN_LOCKOUT_WINDOW_SECONDS",
        "EMAIL_MAX_ATTEMPTS",
        "EMAIL_BACKOFF_BASE_SECONDS",
        "EMAIL_BACKOFF_MAX_SECONDS",
    ],
)
def test_required_settings_have_no_defaults(env, monkeypatch, missing):
    monkeypatch.delenv(missing)

    with pytest.raises(RuntimeError, match=missing):
        Settings()


def test_integer_settings_are_validated(env, monkeypatch):
    monkeypatch.setenv("EMAIL_MAX_ATTEMPTS", "three")

    with pytest.raises(RuntimeError, match="EMAIL_MAX_ATTEMPTS"):
        Settings()


def test_cors_origins_are_split(env, monkeypatch):
    monkeypatch.setenv("CORS_ALLOW_ORIGINS", "https://app.example.com, https://admin.example.com")

    assert Settings().cors_allow_origins == ["https://app.example.com", "https://admin.example.com"]
