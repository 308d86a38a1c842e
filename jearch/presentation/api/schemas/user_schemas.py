"""Pydantic schemas for user API endpoints."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field


class UserRegisterRequest(BaseModel):
    """Request schema for user registration."""

    email: EmailStr
    password: str = Field(..., min_length=1, max_length=256)


class UserRegisterResponse(BaseModel):
    """Response schema for user registration."""

    user_id: str
    email: str
    message: str


class UserLoginRequest(BaseModel):
    """Request schema for user login."""

    model_config = ConfigDict(populate_by_name=True)

    email: EmailStr
    password: str = Field(..., max_length=256)
    remember_me: bool = Field(default=False, alias="rememberMe")


class UserResponse(BaseModel):
    """Response schema for user data."""

    id: str
    email: str
    is_verified: bool
    created_at: datetime


class UserLoginResponse(BaseModel):
    """Response schema for user login."""

    access_token: str
    token_type: str = "bearer"
    user: UserResponse


class UserVerifyEmailRequest(BaseModel):
    token: str


class UserEmailRequest(BaseModel):
    """Request schema for flows keyed by email (resend verification, password reset)."""

    email: EmailStr


class PasswordResetConfirmRequest(BaseModel):
    token: str
    password: str = Field(..., min_length=1, max_length=256)


class UnlockRequest(BaseModel):
    token: str


class UserProfileResponse(BaseModel):
    """Response schema for user profile."""

    id: str
    email: str
    is_verified: bool
    email_confirmed_at: Optional[datetime]
    created_at: datetime
    updated_at: datetime
