from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from ...domain.clock import Clock, utc_now
from ...domain.exceptions import AccountLockedError, InvalidCredentialsError
from ...domain.models import User
from ...services.attempt_ledger import AttemptLedger, normalize_email
from ...services.rate_limit_policy import RateLimitPolicy
from ...services.user_service import UserService

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class LoginResult:
    user: User
    access_token: str


class LoginService:
    """Runs a login attempt through lockout, credential check and the attempt ledger."""

    def __init__(
        self,
        user_service: UserService,
        ledger: AttemptLedger,
        policy: RateLimitPolicy,
        *,
        clock: Clock = utc_now,
    ) -> None:
        self._users = user_service
        self._ledger = ledger
        self._policy = policy
        self._clock = clock

    def login(
        self,
        email: str,
        password: str,
        *,
        ip_address: Optional[str] = None,
        remember_me: bool = False,
    ) -> LoginResult:
        """
        Raises:
            AccountLockedError: The email is locked out; credentials were not checked
            InvalidCredentialsError: Unknown email or wrong password
        """
        email_clean = normalize_email(email)
        now = self._clock()
        user = self._users.get_by_email(email_clean)
        not_before = user.lockout_cleared_at if user else None

        info = self._policy.evaluate(email_clean, now, not_before=not_before)
        if info.is_locked:
            self._ledger.record(email_clean, ip_address, False, now)
            logger.info("Refused login for locked email %s from %s", email_clean, ip_address)
            raise AccountLockedError(self._policy.evaluate(email_clean, now, not_before=not_before))

        success = False
        try:
            success = self._users.authenticate(user, password)
        finally:
            self._ledger.record(email_clean, ip_address, success, now)

        if not success or user is None:
            after = self._policy.evaluate(email_clean, now, not_before=not_before)
            if after.is_locked and user is not None:
                self._users.issue_unlock(user, after.retry_after_seconds)
            raise InvalidCredentialsError(after)

        return LoginResult(user=user, access_token=self._users.create_token(user, remember_me=remember_me))
