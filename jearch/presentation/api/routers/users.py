"""API router for user authentication and account flows."""

from typing import Any, Dict

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import JSONResponse

from jearch.application.services.login_service import LoginService
from jearch.core.dependencies import get_login_service, get_user_service
from jearch.domain.exceptions import AccountLockedError, InvalidCredentialsError, UserFlowError
from jearch.domain.models import RateLimitInfo, User
from jearch.presentation.api.dependencies import get_current_user
from jearch.presentation.api.schemas.user_schemas import (
    PasswordResetConfirmRequest,
    UnlockRequest,
    UserEmailRequest,
    UserLoginRequest,
    UserLoginResponse,
    UserProfileResponse,
    UserRegisterRequest,
    UserRegisterResponse,
    UserResponse,
    UserVerifyEmailRequest,
)
from jearch.services.user_service import UserService

router = APIRouter(prefix="/api/users", tags=["users"])

_NEUTRAL_RESET_MESSAGE = "If the email exists, a password reset link has been sent."
_NEUTRAL_VERIFICATION_MESSAGE = "If the email exists, a verification email has been sent."


@router.post("/register", response_model=UserRegisterResponse, status_code=status.HTTP_201_CREATED)
async def register(
    request: UserRegisterRequest,
    user_service: UserService = Depends(get_user_service),
) -> UserRegisterResponse:
    """Register a new user and queue the verification email."""
    try:
        user = user_service.register(email=request.email, password=request.password)
    except UserFlowError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e

    return UserRegisterResponse(
        user_id=user.id,
        email=user.email,
        message="Registration successful. Please check your email to verify your account.",
    )


@router.post("/login", response_model=UserLoginResponse)
async def login(
    payload: UserLoginRequest,
    request: Request,
    login_service: LoginService = Depends(get_login_service),
) -> Any:
    """Login and get access token, subject to failed-attempt lockout."""
    ip_address = request.client.host if request.client else None
    try:
        result = login_service.login(
            payload.email,
            payload.password,
            ip_address=ip_address,
            remember_me=payload.remember_me,
        )
    except AccountLockedError as exc:
        response = _rate_limit_response(
            status.HTTP_429_TOO_MANY_REQUESTS, "too_many_attempts", str(exc), exc.info
        )
        if exc.info.retry_after_seconds:
            response.headers["Retry-After"] = str(exc.info.retry_after_seconds)
        return response
    except InvalidCredentialsError as exc:
        return _rate_limit_response(
            status.HTTP_401_UNAUTHORIZED, "invalid_credentials", str(exc), exc.info
        )

    user = result.user
    return UserLoginResponse(
        access_token=result.access_token,
        user=UserResponse(
            id=user.id,
            email=user.email,
            is_verified=user.is_verified,
            created_at=user.created_at,
        ),
    )


@router.post("/verify-email", status_code=status.HTTP_200_OK)
async def verify_email(
    request: UserVerifyEmailRequest,
    user_service: UserService = Depends(get_user_service),
) -> Dict[str, str]:
    """Verify user email with token."""
    try:
        user_service.verify_email(request.token)
    except UserFlowError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e
    return {"message": "Email verified successfully"}


@router.post("/resend-verification", status_code=status.HTTP_200_OK)
async def resend_verification(
    request: UserEmailRequest,
    user_service: UserService = Depends(get_user_service),
) -> Dict[str, str]:
    """Resend verification email."""
    try:
        user_service.resend_verification(request.email)
    except UserFlowError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e
    # Don't reveal if email exists or not
    return {"message": _NEUTRAL_VERIFICATION_MESSAGE}


@router.post("/password-reset", status_code=status.HTTP_202_ACCEPTED)
async def request_password_reset(
    request: UserEmailRequest,
    user_service: UserService = Depends(get_user_service),
) -> Dict[str, str]:
    user_service.request_password_reset(request.email)
    return {"message": _NEUTRAL_RESET_MESSAGE}


@router.post("/password-reset/confirm", status_code=status.HTTP_200_OK)
async def confirm_password_reset(
    request: PasswordResetConfirmRequest,
    user_service: UserService = Depends(get_user_service),
) -> Dict[str, str]:
    try:
        user_service.confirm_password_reset(request.token, request.password)
    except UserFlowError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e
    return {"message": "Password updated"}


@router.post("/unlock", status_code=status.HTTP_200_OK)
async def unlock_account(
    request: UnlockRequest,
    user_service: UserService = Depends(get_user_service),
) -> Dict[str, str]:
    try:
        user_service.redeem_unlock(request.token)
    except UserFlowError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e
    return {"message": "Account unlocked"}


@router.get("/me", response_model=UserProfileResponse)
async def get_profile(user: User = Depends(get_current_user)) -> UserProfileResponse:
    """Get current user profile."""
    return UserProfileResponse(
        id=user.id,
        email=user.email,
        is_verified=user.is_verified,
        email_confirmed_at=user.email_confirmed_at,
        created_at=user.created_at,
        updated_at=user.updated_at,
    )


def _rate_limit_response(status_code: int, error: str, message: str, info: RateLimitInfo) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={
            "error": error,
            "message": message,
            "failedAttempts": info.failed_attempts,
            "retryAfter": info.retry_after_seconds,
            "isLocked": info.is_locked,
        },
    )
