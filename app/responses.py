"""
NameCard Backend - Response Envelope Helpers
=============================================

Every API response uses the same envelope:

    success: {"success": true,  "data": ..., "message": ..., "timestamp": ..., "requestId": ...}
    error:   {"success": false, "error": ..., "code": ..., "details": ..., "timestamp": ..., "requestId": ...}

Routes return `ApiResponse[...]` models (app.schemas.common); exception
handlers and middleware use `error_response` below.
"""

from typing import Any, Dict, Optional

from fastapi.encoders import jsonable_encoder
from starlette.responses import JSONResponse

from app.schemas.common import ErrorResponse


def error_response(
    status_code: int,
    code: str,
    message: str,
    details: Optional[Dict[str, Any]] = None,
    headers: Optional[Dict[str, str]] = None,
) -> JSONResponse:
    """Build an error envelope response (requestId read from the ContextVar)."""
    body = ErrorResponse(error=message, code=code, details=details or None)
    return JSONResponse(
        status_code=status_code,
        content=jsonable_encoder(body.model_dump(by_alias=True)),
        headers=headers,
    )
