"""
NameCard Backend - Request ID Middleware
=========================================

What:  Assigns a correlation ID to every request and echoes it back.
How:   Reuses a sane client-supplied X-Request-ID, otherwise generates an
       8-character UUID prefix. The ID lives in a ContextVar so loggers,
       exception handlers and response envelopes (`requestId`) can read it
       without passing the request around.
"""

import re
import uuid
from contextvars import ContextVar

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

# Coroutine-local storage for the current request ID
request_id_var: ContextVar[str] = ContextVar("request_id", default="")

# Client IDs longer than this or containing other characters are replaced
_CLIENT_ID_PATTERN = re.compile(r"^[A-Za-z0-9._-]{1,64}$")


def generate_request_id() -> str:
    return str(uuid.uuid4())[:8]


class RequestIDMiddleware(BaseHTTPMiddleware):
    """
    Behavior:
        1. Accept X-Request-ID from the client when it looks like an ID
        2. Otherwise generate one
        3. Store in ContextVar and request.state
        4. Add to the response headers
    """

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        incoming = request.headers.get("X-Request-ID", "").strip()
        rid = incoming if _CLIENT_ID_PATTERN.match(incoming) else generate_request_id()

        request_id_var.set(rid)
        request.state.request_id = rid

        response = await call_next(request)
        response.headers["X-Request-ID"] = rid
        return response
