"""
NameCard Backend - Auth Route Handlers
=======================================

What:  Account endpoints under /api/v1/auth. Credentials live in Cognito;
       responses carry the local user and the provider's tokens.
"""

import logging
from typing import Any, Dict

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db_session
from app.dependencies import get_bearer_token, get_current_user
from app.models.user import User
from app.schemas.auth import (
    AuthResponse,
    AuthTokens,
    ForgotPasswordRequest,
    LoginRequest,
    RefreshRequest,
    RegisterRequest,
    ResetPasswordRequest,
    UserResponse,
)
from app.schemas.common import ApiResponse, ErrorResponse
from app.services.auth_service import auth_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/auth", tags=["Auth"])

_ERRORS = {
    400: {"description": "Invalid input", "model": ErrorResponse},
    401: {"description": "Invalid credentials or token", "model": ErrorResponse},
    429: {"description": "Too many attempts", "model": ErrorResponse},
}


@router.post(
    "/register",
    status_code=201,
    response_model=ApiResponse[AuthResponse],
    responses=_ERRORS,
    summary="Create an account",
)
async def register(
    body: RegisterRequest,
    db: AsyncSession = Depends(get_db_session),
) -> ApiResponse[AuthResponse]:
    return ApiResponse(data=await auth_service.register(db, body), message="Account created")


@router.post(
    "/login",
    response_model=ApiResponse[AuthResponse],
    responses=_ERRORS,
    summary="Exchange email and password for tokens",
)
async def login(
    body: LoginRequest,
    db: AsyncSession = Depends(get_db_session),
) -> ApiResponse[AuthResponse]:
    result = await auth_service.login(db, str(body.email), body.password)
    return ApiResponse(data=result, message="Logged in")


@router.post(
    "/refresh",
    response_model=ApiResponse[AuthTokens],
    responses=_ERRORS,
    summary="Refresh the access token",
)
async def refresh(body: RefreshRequest) -> ApiResponse[AuthTokens]:
    tokens = await auth_service.refresh(body.refresh_token, str(body.email) if body.email else None)
    return ApiResponse(data=tokens)


@router.post(
    "/logout",
    response_model=ApiResponse[Dict[str, Any]],
    responses=_ERRORS,
    summary="Sign out everywhere",
)
async def logout(token: str = Depends(get_bearer_token)) -> ApiResponse[Dict[str, Any]]:
    await auth_service.logout(token)
    return ApiResponse(data={}, message="Logged out")


@router.get(
    "/profile",
    response_model=ApiResponse[UserResponse],
    responses={401: {"description": "Missing or invalid token", "model": ErrorResponse}},
    summary="Current user",
)
async def profile(user: User = Depends(get_current_user)) -> ApiResponse[UserResponse]:
    return ApiResponse(data=UserResponse.model_validate(user))


@router.post(
    "/forgot-password",
    response_model=ApiResponse[Dict[str, Any]],
    responses=_ERRORS,
    summary="Send a password reset code",
)
async def forgot_password(body: ForgotPasswordRequest) -> ApiResponse[Dict[str, Any]]:
    await auth_service.forgot_password(str(body.email))
    return ApiResponse(data={}, message="If the account exists, a reset code has been sent")


@router.post(
    "/reset-password",
    response_model=ApiResponse[Dict[str, Any]],
    responses=_ERRORS,
    summary="Set a new password with the reset code",
)
async def reset_password(body: ResetPasswordRequest) -> ApiResponse[Dict[str, Any]]:
    await auth_service.reset_password(str(body.email), body.code, body.new_password)
    return ApiResponse(data={}, message="Password has been reset")
