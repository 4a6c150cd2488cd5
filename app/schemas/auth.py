"""
NameCard Backend - Auth Schemas
================================

Password policy: at least 8 characters with one lowercase letter, one
uppercase letter and one digit.
"""

import re
import uuid
from datetime import datetime
from typing import Optional

from pydantic import EmailStr, Field, field_validator

from app.schemas.common import ApiModel

_PASSWORD_RULE = re.compile(r"^(?=.*[a-z])(?=.*[A-Z])(?=.*\d).{8,128}$")


def _check_password(value: str) -> str:
    if not _PASSWORD_RULE.match(value):
        raise ValueError(
            "Password must be at least 8 characters and contain an uppercase letter, "
            "a lowercase letter and a digit"
        )
    return value


class RegisterRequest(ApiModel):
    email: EmailStr
    password: str
    name: str = Field(min_length=1, max_length=200)

    @field_validator("password")
    @classmethod
    def validate_password(cls, v: str) -> str:
        return _check_password(v)


class LoginRequest(ApiModel):
    email: EmailStr
    password: str = Field(min_length=1)


class RefreshRequest(ApiModel):
    refresh_token: str = Field(min_length=1)
    email: Optional[EmailStr] = Field(default=None, description="Needed when a client secret is configured")


class ForgotPasswordRequest(ApiModel):
    email: EmailStr


class ResetPasswordRequest(ApiModel):
    email: EmailStr
    code: str = Field(min_length=1, max_length=20)
    new_password: str

    @field_validator("new_password")
    @classmethod
    def validate_password(cls, v: str) -> str:
        return _check_password(v)


class UserResponse(ApiModel):
    id: uuid.UUID
    email: str
    name: Optional[str] = None
    tenant_id: uuid.UUID
    created_at: datetime


class AuthTokens(ApiModel):
    access_token: str
    id_token: Optional[str] = None
    refresh_token: Optional[str] = None
    expires_in: int
    token_type: str = "Bearer"


class AuthResponse(ApiModel):
    user: UserResponse
    tokens: AuthTokens
