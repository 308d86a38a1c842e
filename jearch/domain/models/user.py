"""User domain model for account authentication and email flows."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional


@dataclass(slots=True)
class User:
    """
    Account owning the editable career records.

    Attributes:
        id: Opaque identifier
        email: Lower-cased email address (unique)
        password_hash: bcrypt hash of the password
        email_confirmed_at: When the address was verified, if ever
        verification_token: Pending email verification token
        verification_expires_at: Expiration of the verification token
        reset_token: Pending password reset token
        reset_expires_at: Expiration of the reset token
        unlock_token: Token mailed when the account gets locked out
        lockout_cleared_at: Failures before this instant no longer count towards lockout
        created_at: Account creation timestamp
        updated_at: Last update timestamp
    """

    id: str
    email: str
    password_hash: str
    created_at: datetime
    updated_at: datetime
    email_confirmed_at: Optional[datetime] = None
    verification_token: Optional[str] = None
    verification_expires_at: Optional[datetime] = None
    reset_token: Optional[str] = None
    reset_expires_at: Optional[datetime] = None
    unlock_token: Optional[str] = None
    lockout_cleared_at: Optional[datetime] = None

    @property
    def is_verified(self) -> bool:
        return self.email_confirmed_at is not None

    def __repr__(self) -> str:
        return f"<User id={self.id} email={self.email} verified={self.is_verified}>"
