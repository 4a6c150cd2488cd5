"""
NameCard Backend - Cognito Identity Client
===========================================

What:  Thin wrapper over the boto3 `cognito-idp` client.
How:   Blocking boto3 calls run in the threadpool. Provider error codes are
       translated into application errors:

    UsernameExistsException, InvalidPasswordException,
    InvalidParameterException, CodeMismatchException,
    ExpiredCodeException                        → ValidationError (400)
    NotAuthorizedException, UserNotFoundException,
    UserNotConfirmedException                   → AuthenticationError (401)
    TooManyRequestsException,
    LimitExceededException                      → RateLimitExceededError (429)
    anything else                               → AuthenticationError (401)

SECRET_HASH is sent whenever COGNITO_CLIENT_SECRET is configured.
"""

import base64
import hashlib
import hmac
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError
from starlette.concurrency import run_in_threadpool

from app.config import settings
from app.exceptions import AuthenticationError, NameCardError, RateLimitExceededError, ValidationError

logger = logging.getLogger(__name__)

_VALIDATION_CODES = {
    "UsernameExistsException": "An account with this email already exists",
    "InvalidPasswordException": "Password does not meet the password policy",
    "InvalidParameterException": "Invalid request parameters",
    "CodeMismatchException": "Invalid verification code",
    "ExpiredCodeException": "Verification code has expired",
}
_AUTH_CODES = {
    "NotAuthorizedException": "Invalid email or password",
    "UserNotFoundException": "Invalid email or password",
    "UserNotConfirmedException": "Account is not confirmed",
}
_RATE_CODES = {"TooManyRequestsException", "LimitExceededException"}


@dataclass
class CognitoTokens:
    access_token: str
    id_token: Optional[str]
    refresh_token: Optional[str]
    expires_in: int
    token_type: str = "Bearer"


@dataclass
class CognitoUser:
    sub: str
    email: str
    name: Optional[str] = None
    email_verified: bool = False


def secret_hash(username: str, client_id: str, client_secret: str) -> str:
    """Base64 HMAC-SHA256 of username + client id, keyed by the client secret."""
    digest = hmac.new(
        client_secret.encode("utf-8"),
        (username + client_id).encode("utf-8"),
        hashlib.sha256,
    ).digest()
    return base64.b64encode(digest).decode("utf-8")


def translate_error(exc: Exception) -> NameCardError:
    code = exc.response.get("Error", {}).get("Code", "") if isinstance(exc, ClientError) else ""
    if code in _VALIDATION_CODES:
        return ValidationError(message=_VALIDATION_CODES[code], context={"provider_code": code})
    if code in _RATE_CODES:
        return RateLimitExceededError(
            retry_after=60,
            message="Too many authentication attempts. Please try again later.",
        )
    return AuthenticationError(
        message=_AUTH_CODES.get(code, "Authentication failed"),
        context={"provider_code": code or type(exc).__name__},
    )


def _attributes(raw: Any) -> Dict[str, str]:
    return {attr["Name"]: attr["Value"] for attr in raw or [] if "Name" in attr and "Value" in attr}


class CognitoService:

    def __init__(self, client: Any = None):
        self._client = client
        self.user_pool_id = settings.cognito_user_pool_id
        self.client_id = settings.cognito_client_id
        self.client_secret = settings.cognito_client_secret

    @property
    def client(self) -> Any:
        if self._client is None:
            self._client = boto3.client("cognito-idp", region_name=settings.cognito_region_name)
        return self._client

    @property
    def configured(self) -> bool:
        return bool(self.user_pool_id and self.client_id)

    def _secret(self, username: str) -> Dict[str, str]:
        if not self.client_secret:
            return {}
        return {"SECRET_HASH": secret_hash(username, self.client_id, self.client_secret)}

    async def _call(self, operation: str, **kwargs: Any) -> Dict[str, Any]:
        if not self.configured:
            raise AuthenticationError(message="Authentication provider is not configured")
        try:
            return await run_in_threadpool(getattr(self.client, operation), **kwargs)
        except (ClientError, BotoCoreError) as e:
            logger.warning("Cognito %s failed: %s", operation, str(e))
            raise translate_error(e)

    async def register_user(self, email: str, password: str, name: str) -> str:
        """Create the user with a permanent password; returns the provider sub."""
        result = await self._call(
            "admin_create_user",
            UserPoolId=self.user_pool_id,
            Username=email,
            MessageAction="SUPPRESS",
            TemporaryPassword=password,
            UserAttributes=[
                {"Name": "email", "Value": email},
                {"Name": "name", "Value": name},
                {"Name": "email_verified", "Value": "true"},
            ],
        )
        sub = _attributes(result.get("User", {}).get("Attributes")).get("sub")
        if not sub:
            raise AuthenticationError(message="Registration failed")
        await self._call(
            "admin_set_user_password",
            UserPoolId=self.user_pool_id,
            Username=email,
            Password=password,
            Permanent=True,
        )
        logger.info("Registered user %s", sub)
        return sub

    async def authenticate(self, email: str, password: str) -> CognitoTokens:
        result = await self._call(
            "admin_initiate_auth",
            UserPoolId=self.user_pool_id,
            ClientId=self.client_id,
            AuthFlow="ADMIN_NO_SRP_AUTH",
            AuthParameters={"USERNAME": email, "PASSWORD": password, **self._secret(email)},
        )
        if result.get("ChallengeName"):
            raise AuthenticationError(
                message="Additional authentication step required",
                context={"challenge": result["ChallengeName"]},
            )
        return self._tokens(result)

    async def refresh(self, refresh_token: str, username: Optional[str] = None) -> CognitoTokens:
        params = {"REFRESH_TOKEN": refresh_token}
        if username:
            params.update(self._secret(username))
        result = await self._call(
            "admin_initiate_auth",
            UserPoolId=self.user_pool_id,
            ClientId=self.client_id,
            AuthFlow="REFRESH_TOKEN_AUTH",
            AuthParameters=params,
        )
        tokens = self._tokens(result)
        # The refresh token itself is not rotated
        tokens.refresh_token = tokens.refresh_token or refresh_token
        return tokens

    async def get_user(self, access_token: str) -> CognitoUser:
        """Resolve an access token; the provider rejects invalid or expired tokens."""
        result = await self._call("get_user", AccessToken=access_token)
        attributes = _attributes(result.get("UserAttributes"))
        return CognitoUser(
            sub=attributes.get("sub") or result.get("Username", ""),
            email=attributes.get("email", ""),
            name=attributes.get("name"),
            email_verified=attributes.get("email_verified") == "true",
        )

    async def forgot_password(self, email: str) -> None:
        await self._call("forgot_password", ClientId=self.client_id, Username=email, **self._secret_hash_kw(email))

    async def confirm_forgot_password(self, email: str, code: str, new_password: str) -> None:
        await self._call(
            "confirm_forgot_password",
            ClientId=self.client_id,
            Username=email,
            ConfirmationCode=code,
            Password=new_password,
            **self._secret_hash_kw(email),
        )

    async def global_sign_out(self, access_token: str) -> None:
        await self._call("global_sign_out", AccessToken=access_token)

    def _secret_hash_kw(self, username: str) -> Dict[str, str]:
        secret = self._secret(username)
        return {"SecretHash": secret["SECRET_HASH"]} if secret else {}

    def _tokens(self, result: Dict[str, Any]) -> CognitoTokens:
        auth = result.get("AuthenticationResult") or {}
        if not auth.get("AccessToken"):
            raise AuthenticationError(message="Authentication failed")
        return CognitoTokens(
            access_token=auth["AccessToken"],
            id_token=auth.get("IdToken"),
            refresh_token=auth.get("RefreshToken"),
            expires_in=auth.get("ExpiresIn", 3600),
            token_type=auth.get("TokenType", "Bearer"),
        )


cognito_service = CognitoService()
