"""
NameCard Backend - Auth Service
================================

What:  Account workflows (register, login, refresh, logout, password reset)
       and bearer-token → local User resolution.
How:   Cognito holds credentials; the local `users` table mirrors identities
       so cards can reference them. A local User is created on register or on
       the first authenticated request.

Development bypass: when ENVIRONMENT=development, the configured
DEV_BYPASS_TOKEN resolves to a local dev user without calling Cognito.
"""

import hmac
import logging
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.models.user import User
from app.schemas.auth import AuthResponse, AuthTokens, RegisterRequest, UserResponse
from app.services.cognito_service import CognitoTokens, CognitoUser, cognito_service

logger = logging.getLogger(__name__)

DEV_COGNITO_ID = "dev-user"


def _tokens(tokens: CognitoTokens) -> AuthTokens:
    return AuthTokens(
        access_token=tokens.access_token,
        id_token=tokens.id_token,
        refresh_token=tokens.refresh_token,
        expires_in=tokens.expires_in,
        token_type=tokens.token_type,
    )


class AuthService:

    async def find_or_create_user(
        self, db: AsyncSession, cognito_id: str, email: str, name: Optional[str] = None
    ) -> User:
        result = await db.execute(select(User).where(User.cognito_id == cognito_id))
        user = result.scalar_one_or_none()
        if user is None and email:
            result = await db.execute(select(User).where(User.email == email.lower()))
            user = result.scalar_one_or_none()
            if user is not None:
                user.cognito_id = cognito_id
        if user is None:
            user = User(cognito_id=cognito_id, email=email.lower(), name=name)
            db.add(user)
            await db.flush()
            await db.refresh(user)
            logger.info("Local user %s created for identity %s", user.id, cognito_id)
        return user

    def is_dev_bypass(self, token: str) -> bool:
        return (
            settings.is_development
            and bool(settings.dev_bypass_token)
            and hmac.compare_digest(token, settings.dev_bypass_token)
        )

    async def resolve_token(self, db: AsyncSession, token: str) -> User:
        """
        Raises:
            AuthenticationError: token rejected by the provider
        """
        if self.is_dev_bypass(token):
            return await self.find_or_create_user(db, DEV_COGNITO_ID, settings.dev_user_email, "Dev User")
        identity: CognitoUser = await cognito_service.get_user(token)
        return await self.find_or_create_user(db, identity.sub, identity.email, identity.name)

    async def register(self, db: AsyncSession, request: RegisterRequest) -> AuthResponse:
        email = str(request.email).lower()
        sub = await cognito_service.register_user(email, request.password, request.name)
        user = await self.find_or_create_user(db, sub, email, request.name)
        tokens = await cognito_service.authenticate(email, request.password)
        return AuthResponse(user=UserResponse.model_validate(user), tokens=_tokens(tokens))

    async def login(self, db: AsyncSession, email: str, password: str) -> AuthResponse:
        email = email.lower()
        tokens = await cognito_service.authenticate(email, password)
        identity = await cognito_service.get_user(tokens.access_token)
        user = await self.find_or_create_user(db, identity.sub, identity.email or email, identity.name)
        logger.info("User %s logged in", user.id)
        return AuthResponse(user=UserResponse.model_validate(user), tokens=_tokens(tokens))

    async def refresh(self, refresh_token: str, email: Optional[str] = None) -> AuthTokens:
        return _tokens(await cognito_service.refresh(refresh_token, email.lower() if email else None))

    async def logout(self, access_token: str) -> None:
        if self.is_dev_bypass(access_token):
            return
        await cognito_service.global_sign_out(access_token)

    async def forgot_password(self, email: str) -> None:
        await cognito_service.forgot_password(email.lower())

    async def reset_password(self, email: str, code: str, new_password: str) -> None:
        await cognito_service.confirm_forgot_password(email.lower(), code, new_password)


auth_service = AuthService()
