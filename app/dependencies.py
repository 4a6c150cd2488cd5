"""
NameCard Backend - Request Dependencies
========================================

`get_current_user` authenticates every protected route: a Bearer token is
required and resolved to a local User (401 otherwise). `read_multipart_form`
decodes the raw upload body for the upload and scan routes.
"""

from typing import Optional

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.database import get_db_session
from app.exceptions import AuthenticationError, ValidationError
from app.models.user import User
from app.services.auth_service import auth_service
from app.services.multipart import MultipartForm, parse_multipart

# auto_error=False so a missing header reaches our own 401 envelope
bearer_scheme = HTTPBearer(auto_error=False)


async def get_bearer_token(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> str:
    if credentials is None or not credentials.credentials:
        raise AuthenticationError(message="Authorization header with a Bearer token is required")
    return credentials.credentials


async def get_current_user(
    token: str = Depends(get_bearer_token),
    db: AsyncSession = Depends(get_db_session),
) -> User:
    return await auth_service.resolve_token(db, token)


# Multipart framing and field overhead allowed on top of the file bytes
MULTIPART_OVERHEAD = 64 * 1024


async def read_multipart_form(request: Request) -> MultipartForm:
    """
    Raw body → MultipartForm.

    `X-Body-Encoding: base64` marks a body re-encoded by an API gateway.

    Raises:
        ValidationError: declared body larger than the upload limits
        MultipartParseError: body is not valid multipart/form-data
    """
    limit = settings.max_file_size * settings.max_upload_files + MULTIPART_OVERHEAD
    declared = request.headers.get("content-length")
    if declared and declared.isdigit() and int(declared) > limit:
        raise ValidationError(
            message=f"Request body exceeds the {limit // (1024 * 1024)}MB upload limit",
            field="body",
            context={"content_length": int(declared)},
        )
    body = await request.body()
    if len(body) > limit:
        raise ValidationError(message="Request body exceeds the upload limit", field="body")
    is_base64 = request.headers.get("x-body-encoding", "").lower() == "base64"
    return parse_multipart(body, request.headers.get("content-type"), is_base64=is_base64)
