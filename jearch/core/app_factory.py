from __future__ import annotations

import logging
import sqlite3
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import Any, AsyncIterator, Dict, Optional

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .config import Settings
from .container import ApplicationContainer
from .logging import configure_logging
from ..application.services.login_service import LoginService
from ..application.services.record_service import RecordService
from ..domain.models import QueuedEmail
from ..domain.retry import ExponentialBackoff, RetryPolicy
from ..infrastructure.mail.smtp import LoggingMailTransport, SmtpMailTransport
from ..infrastructure.persistence.sqlite import SQLitePersistence
from ..presentation.api.routers import emails as emails_router
from ..presentation.api.routers import records as records_router
from ..presentation.api.routers import users as users_router
from ..services.attempt_ledger import AttemptLedger
from ..services.delivery_queue import DeliveryQueue
from ..services.email_composer import EmailComposer
from ..services.email_dispatcher import EmailDispatcher
from ..services.rate_limit_policy import RateLimitPolicy
from ..services.user_service import UserService
from ..services.version_guard import VersionGuard

logger = logging.getLogger(__name__)


def create_application(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or Settings()

    app = FastAPI(title="Jearch Career Profile API", lifespan=_create_lifespan(settings))

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allow_origins,
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(records_router.router)
    app.include_router(users_router.router)
    app.include_router(emails_router.router)

    @app.exception_handler(sqlite3.Error)
    async def storage_unavailable(request: Request, exc: sqlite3.Error) -> JSONResponse:
        logger.error("Storage error on %s %s: %s", request.method, request.url.path, exc)
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"error": "storage_unavailable", "message": "Storage is temporarily unavailable."},
        )

    @app.get("/health")
    async def health() -> Dict[str, Any]:
        container: ApplicationContainer = app.state.container  # type: ignore[attr-defined]
        return {"ok": True, "email_dispatcher": container.email_dispatcher.is_running}

    return app


def build_container(settings: Settings) -> ApplicationContainer:
    persistence = SQLitePersistence(settings.database_path)
    retry_policy = RetryPolicy(
        max_attempts=settings.email_max_attempts,
        backoff=ExponentialBackoff(
            base=timedelta(seconds=settings.email_backoff_base_seconds),
            ceiling=timedelta(seconds=settings.email_backoff_max_seconds),
        ),
    )
    delivery_queue = DeliveryQueue(persistence, retry_policy)

    if settings.smtp_enabled:
        transport = SmtpMailTransport(
            smtp_host=settings.smtp_host,
            smtp_port=settings.smtp_port,
            smtp_username=settings.smtp_username,
            smtp_password=settings.smtp_password,
            from_email=settings.smtp_from_email,
            from_name=settings.smtp_from_name,
            timeout_seconds=settings.email_send_timeout_seconds,
        )
    else:
        logger.warning("SMTP is not configured; queued emails will be written to the log.")
        transport = LoggingMailTransport()

    email_dispatcher = EmailDispatcher(
        delivery_queue,
        transport,
        interval_seconds=settings.email_dispatch_interval_seconds,
        send_timeout_seconds=settings.email_send_timeout_seconds,
        max_workers=settings.email_dispatch_workers,
        on_failed=_alert_failed_email,
    )

    attempt_ledger = AttemptLedger(persistence)
    rate_limit_policy = RateLimitPolicy(
        attempt_ledger,
        threshold=settings.login_lockout_threshold,
        window=timedelta(seconds=settings.login_lockout_window_seconds),
    )
    user_service = UserService(
        persistence,
        delivery_queue,
        EmailComposer(settings.frontend_base_url),
        jwt_secret=settings.jwt_secret,
        jwt_expiration_hours=settings.jwt_expiration_hours,
        jwt_remember_me_hours=settings.jwt_remember_me_hours,
    )
    version_guard = VersionGuard(persistence)

    return ApplicationContainer(
        settings=settings,
        persistence=persistence,
        version_guard=version_guard,
        record_service=RecordService(persistence, version_guard),
        delivery_queue=delivery_queue,
        email_dispatcher=email_dispatcher,
        attempt_ledger=attempt_ledger,
        rate_limit_policy=rate_limit_policy,
        user_service=user_service,
        login_service=LoginService(user_service, attempt_ledger, rate_limit_policy),
    )


async def _alert_failed_email(email: QueuedEmail) -> None:
    logger.critical(
        "ALERT: %s email %s to %s exhausted its retries: %s",
        email.template.value,
        email.id,
        email.to_address,
        email.error_message,
    )


def _create_lifespan(settings: Settings):
    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        configure_logging()
        container = build_container(settings)
        app.state.container = container  # type: ignore[attr-defined]

        if settings.email_dispatcher_enabled:
            await container.email_dispatcher.start()

        try:
            yield
        finally:
            await container.email_dispatcher.stop()
            container.persistence.close()

    return lifespan
