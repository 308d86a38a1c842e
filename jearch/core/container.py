from dataclasses import dataclass

from ..application.services.login_service import LoginService
from ..application.services.record_service import RecordService
from .config import Settings
from ..domain.ports.persistence import PersistenceGateway
from ..services.attempt_ledger import AttemptLedger
from ..services.delivery_queue import DeliveryQueue
from ..services.email_dispatcher import EmailDispatcher
from ..services.rate_limit_policy import RateLimitPolicy
from ..services.user_service import UserService
from ..services.version_guard import VersionGuard


@dataclass(slots=True)
class ApplicationContainer:
    """Dependency registry shared across the FastAPI application lifecycle."""

    settings: Settings
    persistence: PersistenceGateway
    version_guard: VersionGuard
    record_service: RecordService
    delivery_queue: DeliveryQueue
    email_dispatcher: EmailDispatcher
    attempt_ledger: AttemptLedger
    rate_limit_policy: RateLimitPolicy
    user_service: UserService
    login_service: LoginService
