import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv


class Settings:
    """Centralised application configuration sourced from environment variables."""

    def __init__(self) -> None:
        load_dotenv()
        self.database_path = Path(os.getenv("DATABASE_PATH", "data/jearch.db")).resolve()
        self.frontend_base_url = os.getenv("FRONTEND_BASE_URL", "http://localhost:3000")

        self.jwt_secret = self._get("JWT_SECRET")
        self.jwt_expiration_hours = self._get_int("JWT_EXPIRATION_HOURS", default=24)
        self.jwt_remember_me_hours = self._get_int("JWT_REMEMBER_ME_HOURS", default=24 * 30)
        self.operator_token = os.getenv("OPERATOR_TOKEN")

        # Lockout and retry tuning has no built-in values: deployments must choose them.
        self.login_lockout_threshold = self._get_int("LOGIN_LOCKOUT_THRESHOLD")
        self.login_lockout_window_seconds = self._get_int("LOGIN_LOCKOUT_WINDOW_SECONDS")
        self.email_max_attempts = self._get_int("EMAIL_MAX_ATTEMPTS")
        self.email_backoff_base_seconds = self._get_int("EMAIL_BACKOFF_BASE_SECONDS")
        self.email_backoff_max_seconds = self._get_int("EMAIL_BACKOFF_MAX_SECONDS")

        self.email_dispatcher_enabled = self._get_bool("EMAIL_DISPATCHER_ENABLED", default=True)
        self.email_dispatch_interval_seconds = self._get_int("EMAIL_DISPATCH_INTERVAL_SECONDS", default=15)
        self.email_send_timeout_seconds = self._get_int("EMAIL_SEND_TIMEOUT_SECONDS", default=30)
        self.email_dispatch_workers = self._get_int("EMAIL_DISPATCH_WORKERS", default=4)

        self.smtp_host = os.getenv("SMTP_HOST", "")
        self.smtp_port = self._get_int("SMTP_PORT", default=587)
        self.smtp_username = os.getenv("SMTP_USERNAME", "")
        self.smtp_password = os.getenv("SMTP_PASSWORD", "")
        self.smtp_from_email = os.getenv("SMTP_FROM_EMAIL", "")
        self.smtp_from_name = os.getenv("SMTP_FROM_NAME", "Jearch")

        origins = os.getenv("CORS_ALLOW_ORIGINS")
        if origins:
            self.cors_allow_origins = [item.strip() for item in origins.split(",") if item.strip()]
        else:
            self.cors_allow_origins = ["*"]

    @property
    def smtp_enabled(self) -> bool:
        return bool(self.smtp_host and self.smtp_username and self.smtp_from_email)

    @staticmethod
    def _get(key: str) -> str:
        value = os.getenv(key)
        if not value:
            raise RuntimeError(f"Missing required environment variable: {key}")
        return value

    @staticmethod
    def _get_int(key: str, default: Optional[int] = None) -> int:
        value = os.getenv(key)
        if value is None:
            if default is None:
                raise RuntimeError(f"Missing required environment variable: {key}")
            return default
        try:
            return int(value)
        except ValueError as exc:
            raise RuntimeError(f"Environment variable {key} must be an integer") from exc

    @staticmethod
    def _get_bool(key: str, default: bool) -> bool:
        value = os.getenv(key)
        if value is None:
            return default
        return value.strip().lower() in {"1", "true", "yes", "on"}
