"""Service for user authentication and account email flows."""

import logging
import secrets
from datetime import datetime, timedelta
from typing import Optional

import bcrypt
import jwt

from ..domain.clock import Clock, utc_now
from ..domain.exceptions import UserFlowError
from ..domain.models import User
from ..domain.ports.persistence import UserRepository
from .attempt_ledger import normalize_email
from .delivery_queue import DeliveryQueue
from .email_composer import ComposedEmail, EmailComposer

logger = logging.getLogger(__name__)

PASSWORD_MIN_LENGTH = 12
# bcrypt only looks at the first 72 bytes of a password.
PASSWORD_MAX_BYTES = 72
# Password checks for unknown accounts run against this hash.
_DUMMY_PASSWORD_HASH = bcrypt.hashpw(b"jearch-unknown-account", bcrypt.gensalt())


class UserService:
    """Service for managing user registration, tokens and account emails."""

    def __init__(
        self,
        user_repository: UserRepository,
        delivery_queue: DeliveryQueue,
        composer: EmailComposer,
        jwt_secret: str,
        jwt_algorithm: str = "HS256",
        jwt_expiration_hours: int = 24,
        jwt_remember_me_hours: int = 24 * 30,
        verification_expiration_hours: int = 24,
        reset_expiration_hours: int = 1,
        clock: Clock = utc_now,
    ):
        self.user_repository = user_repository
        self.delivery_queue = delivery_queue
        self.composer = composer
        self.jwt_secret = jwt_secret
        self.jwt_algorithm = jwt_algorithm
        self.jwt_expiration_hours = jwt_expiration_hours
        self.jwt_remember_me_hours = jwt_remember_me_hours
        self.verification_expiration_hours = verification_expiration_hours
        self.reset_expiration_hours = reset_expiration_hours
        self._clock = clock

    def register(self, email: str, password: str) -> User:
        """
        Register a new user and queue the verification email.

        Args:
            email: User email
            password: Plain text password

        Returns:
            The created user

        Raises:
            UserFlowError: If the email is taken or the password too weak
        """
        email_clean = normalize_email(email)
        if self.user_repository.get_user_by_email(email_clean):
            raise UserFlowError("Email already registered")
        password_hash = self._hash_password(password)

        verification_token = secrets.token_urlsafe(32)
        user = self.user_repository.create_user(
            email=email_clean,
            password_hash=password_hash,
            verification_token=verification_token,
            verification_expires_at=self._clock() + timedelta(hours=self.verification_expiration_hours),
        )
        self._enqueue(user, self.composer.verification(verification_token))
        logger.info("Registered user %s", user.id)
        return user

    def authenticate(self, user: Optional[User], password: str) -> bool:
        """Check ``password`` against the user's stored hash."""
        encoded = password.encode("utf-8")
        if user is None:
            bcrypt.checkpw(encoded[:PASSWORD_MAX_BYTES], _DUMMY_PASSWORD_HASH)
            return False
        if len(encoded) > PASSWORD_MAX_BYTES:
            return False
        return bcrypt.checkpw(encoded, user.password_hash.encode("utf-8"))

    def verify_email(self, token: str) -> User:
        user = self.user_repository.get_user_by_token("verification_token", token)
        if not user or self._expired(user.verification_expires_at):
            raise UserFlowError("Invalid or expired verification token")
        return self.user_repository.update_user(
            user.id,
            email_confirmed_at=self._clock(),
            verification_token=None,
            verification_expires_at=None,
        )

    def resend_verification(self, email: str) -> Optional[User]:
        """
        Issue a fresh verification token and queue it.

        Returns None when no account matches, so callers can answer uniformly.

        Raises:
            UserFlowError: If the email is already verified
        """
        user = self.user_repository.get_user_by_email(normalize_email(email))
        if not user:
            return None
        if user.is_verified:
            raise UserFlowError("Email already verified")

        verification_token = secrets.token_urlsafe(32)
        user = self.user_repository.update_user(
            user.id,
            verification_token=verification_token,
            verification_expires_at=self._clock() + timedelta(hours=self.verification_expiration_hours),
        )
        self._enqueue(user, self.composer.verification(verification_token))
        return user

    def request_password_reset(self, email: str) -> Optional[User]:
        user = self.user_repository.get_user_by_email(normalize_email(email))
        if not user:
            return None
        reset_token = secrets.token_urlsafe(32)
        user = self.user_repository.update_user(
            user.id,
            reset_token=reset_token,
            reset_expires_at=self._clock() + timedelta(hours=self.reset_expiration_hours),
        )
        self._enqueue(user, self.composer.password_reset(reset_token))
        return user

    def confirm_password_reset(self, token: str, new_password: str) -> User:
        user = self.user_repository.get_user_by_token("reset_token", token)
        if not user or self._expired(user.reset_expires_at):
            raise UserFlowError("Invalid or expired reset token")
        return self.user_repository.update_user(
            user.id,
            password_hash=self._hash_password(new_password),
            reset_token=None,
            reset_expires_at=None,
        )

    def issue_unlock(self, user: User, retry_after_seconds: Optional[int]) -> User:
        """Queue the unlock email for an account that just got locked out."""
        unlock_token = secrets.token_urlsafe(32)
        user = self.user_repository.update_user(user.id, unlock_token=unlock_token)
        self._enqueue(user, self.composer.unlock(unlock_token, retry_after_seconds))
        logger.warning("Account %s locked out; unlock email queued.", user.id)
        return user

    def redeem_unlock(self, token: str) -> User:
        user = self.user_repository.get_user_by_token("unlock_token", token)
        if not user:
            raise UserFlowError("Invalid unlock token")
        return self.user_repository.update_user(
            user.id,
            unlock_token=None,
            lockout_cleared_at=self._clock(),
        )

    def create_token(self, user: User, remember_me: bool = False) -> str:
        """
        Create JWT token for user.

        Args:
            user: User entity
            remember_me: Use the long-lived expiration

        Returns:
            JWT token string
        """
        now = self._clock()
        hours = self.jwt_remember_me_hours if remember_me else self.jwt_expiration_hours
        payload = {
            "sub": user.id,
            "email": user.email,
            "is_verified": user.is_verified,
            "exp": now + timedelta(hours=hours),
            "iat": now,
        }
        return jwt.encode(payload, self.jwt_secret, algorithm=self.jwt_algorithm)

    def verify_token(self, token: str) -> Optional[dict]:
        """
        Verify and decode JWT token.

        Returns:
            Decoded payload if valid, None otherwise
        """
        try:
            return jwt.decode(token, self.jwt_secret, algorithms=[self.jwt_algorithm])
        except jwt.ExpiredSignatureError:
            return None
        except jwt.InvalidTokenError:
            return None

    def get_by_id(self, user_id: str) -> Optional[User]:
        """Get user by ID."""
        return self.user_repository.get_user_by_id(user_id)

    def get_by_email(self, email: str) -> Optional[User]:
        """Get user by email."""
        return self.user_repository.get_user_by_email(normalize_email(email))

    def _hash_password(self, password: str) -> str:
        if len(password) < PASSWORD_MIN_LENGTH:
            raise UserFlowError(f"Password must be at least {PASSWORD_MIN_LENGTH} characters")
        encoded = password.encode("utf-8")
        if len(encoded) > PASSWORD_MAX_BYTES:
            raise UserFlowError(f"Password must be at most {PASSWORD_MAX_BYTES} bytes")
        return bcrypt.hashpw(encoded, bcrypt.gensalt()).decode("utf-8")

    def _expired(self, expires_at: Optional[datetime]) -> bool:
        return expires_at is not None and expires_at < self._clock()

    def _enqueue(self, user: User, message: ComposedEmail) -> None:
        self.delivery_queue.enqueue(
            to_address=user.email,
            subject=message.subject,
            body_text=message.body_text,
            template=message.template,
            body_html=message.body_html,
            user_id=user.id,
        )
