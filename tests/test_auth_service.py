"""
NameCard Backend - Auth & Cognito Service Unit Tests
=====================================================

What we test:
    ✅ SECRET_HASH derivation
    ✅ Provider error codes map to 400 / 401 / 429 application errors
    ✅ CognitoService calls against an injected boto3 client
    ✅ Unconfigured pool fails with AuthenticationError before any call
    ✅ Token resolution: existing user, email re-link, new user
    ✅ Development bypass token only honoured in development
"""

import base64
import hashlib
import hmac
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from botocore.exceptions import ClientError

from app.exceptions import AuthenticationError, RateLimitExceededError, ValidationError
from app.models.user import User
from app.services.auth_service import AuthService
from app.services.cognito_service import CognitoService, CognitoUser, secret_hash, translate_error


def client_error(code: str, operation: str = "AdminInitiateAuth") -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": code}}, operation)


def configured_service(client, secret: str = "") -> CognitoService:
    service = CognitoService(client=client)
    service.user_pool_id = "us-east-1_pool"
    service.client_id = "client-123"
    service.client_secret = secret
    return service


def lookup(value):
    result = MagicMock()
    result.scalar_one_or_none.return_value = value
    return result


class TestSecretHash:

    def test_matches_hmac_sha256(self):
        expected = base64.b64encode(
            hmac.new(b"secret", b"jane@example.comclient-123", hashlib.sha256).digest()
        ).decode()
        assert secret_hash("jane@example.com", "client-123", "secret") == expected


class TestTranslateError:

    @pytest.mark.parametrize("code", ["UsernameExistsException", "InvalidPasswordException", "CodeMismatchException"])
    def test_validation_codes(self, code):
        error = translate_error(client_error(code))
        assert isinstance(error, ValidationError)
        assert error.context["provider_code"] == code

    @pytest.mark.parametrize("code", ["NotAuthorizedException", "UserNotFoundException"])
    def test_credential_codes_share_message(self, code):
        error = translate_error(client_error(code))
        assert isinstance(error, AuthenticationError)
        assert error.message == "Invalid email or password"

    def test_throttling_is_rate_limit(self):
        error = translate_error(client_error("TooManyRequestsException"))
        assert isinstance(error, RateLimitExceededError)
        assert error.retry_after == 60

    def test_unknown_is_authentication_error(self):
        error = translate_error(RuntimeError("boom"))
        assert isinstance(error, AuthenticationError)
        assert error.context["provider_code"] == "RuntimeError"


class TestCognitoService:

    @pytest.mark.asyncio
    async def test_unconfigured_fails_fast(self):
        client = MagicMock()
        service = CognitoService(client=client)
        service.user_pool_id = ""
        with pytest.raises(AuthenticationError):
            await service.get_user("token")
        client.get_user.assert_not_called()

    @pytest.mark.asyncio
    async def test_authenticate_sends_secret_hash(self):
        client = MagicMock()
        client.admin_initiate_auth.return_value = {
            "AuthenticationResult": {
                "AccessToken": "access",
                "IdToken": "id",
                "RefreshToken": "refresh",
                "ExpiresIn": 1800,
            }
        }
        service = configured_service(client, secret="s3cret")

        tokens = await service.authenticate("jane@example.com", "Password1!")

        assert tokens.access_token == "access"
        assert tokens.expires_in == 1800
        params = client.admin_initiate_auth.call_args.kwargs["AuthParameters"]
        assert params["SECRET_HASH"] == secret_hash("jane@example.com", "client-123", "s3cret")
        assert client.admin_initiate_auth.call_args.kwargs["AuthFlow"] == "ADMIN_NO_SRP_AUTH"

    @pytest.mark.asyncio
    async def test_challenge_is_rejected(self):
        client = MagicMock()
        client.admin_initiate_auth.return_value = {"ChallengeName": "NEW_PASSWORD_REQUIRED"}
        service = configured_service(client)

        with pytest.raises(AuthenticationError) as exc_info:
            await service.authenticate("jane@example.com", "Password1!")
        assert exc_info.value.context["challenge"] == "NEW_PASSWORD_REQUIRED"

    @pytest.mark.asyncio
    async def test_refresh_keeps_refresh_token(self):
        client = MagicMock()
        client.admin_initiate_auth.return_value = {"AuthenticationResult": {"AccessToken": "new-access"}}
        service = configured_service(client)

        tokens = await service.refresh("refresh-1")

        assert tokens.access_token == "new-access"
        assert tokens.refresh_token == "refresh-1"

    @pytest.mark.asyncio
    async def test_get_user_reads_attributes(self):
        client = MagicMock()
        client.get_user.return_value = {
            "Username": "abc",
            "UserAttributes": [
                {"Name": "sub", "Value": "sub-1"},
                {"Name": "email", "Value": "jane@example.com"},
                {"Name": "email_verified", "Value": "true"},
            ],
        }
        identity = await configured_service(client).get_user("access")

        assert identity.sub == "sub-1"
        assert identity.email == "jane@example.com"
        assert identity.email_verified is True

    @pytest.mark.asyncio
    async def test_provider_error_translated(self):
        client = MagicMock()
        client.get_user.side_effect = client_error("NotAuthorizedException", "GetUser")

        with pytest.raises(AuthenticationError):
            await configured_service(client).get_user("expired")

    @pytest.mark.asyncio
    async def test_register_sets_permanent_password(self):
        client = MagicMock()
        client.admin_create_user.return_value = {
            "User": {"Attributes": [{"Name": "sub", "Value": "sub-9"}]}
        }
        sub = await configured_service(client).register_user("new@example.com", "Password1!", "New User")

        assert sub == "sub-9"
        assert client.admin_set_user_password.call_args.kwargs["Permanent"] is True


class TestAuthService:

    def setup_method(self):
        self.service = AuthService()

    @pytest.mark.asyncio
    async def test_existing_user_by_identity(self, mock_db_session, user):
        mock_db_session.execute.return_value = lookup(user)

        with patch("app.services.auth_service.cognito_service") as cognito:
            cognito.get_user = AsyncMock(
                return_value=CognitoUser(sub=user.cognito_id, email=user.email)
            )
            resolved = await self.service.resolve_token(mock_db_session, "access")

        assert resolved is user
        mock_db_session.add.assert_not_called()

    @pytest.mark.asyncio
    async def test_relinks_user_found_by_email(self, mock_db_session, user):
        mock_db_session.execute.side_effect = [lookup(None), lookup(user)]

        resolved = await self.service.find_or_create_user(mock_db_session, "new-sub", "JANE@example.com")

        assert resolved is user
        assert user.cognito_id == "new-sub"

    @pytest.mark.asyncio
    async def test_creates_user_on_first_request(self, mock_db_session):
        mock_db_session.execute.side_effect = [lookup(None), lookup(None)]

        created = await self.service.find_or_create_user(
            mock_db_session, "sub-2", "Mixed@Example.com", "Mixed Case"
        )

        assert isinstance(created, User)
        assert created.email == "mixed@example.com"
        mock_db_session.add.assert_called_once_with(created)
        mock_db_session.flush.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_dev_bypass_in_development(self, mock_db_session, user):
        mock_db_session.execute.return_value = lookup(user)
        fake_settings = MagicMock(
            is_development=True,
            dev_bypass_token="dev-token",
            dev_user_email="dev@namecard.local",
        )

        with patch("app.services.auth_service.settings", fake_settings), \
             patch("app.services.auth_service.cognito_service") as cognito:
            cognito.get_user = AsyncMock()
            resolved = await self.service.resolve_token(mock_db_session, "dev-token")

        assert resolved is user
        cognito.get_user.assert_not_awaited()

    def test_dev_bypass_ignored_outside_development(self):
        fake_settings = MagicMock(is_development=False, dev_bypass_token="dev-token")
        with patch("app.services.auth_service.settings", fake_settings):
            assert not self.service.is_dev_bypass("dev-token")
