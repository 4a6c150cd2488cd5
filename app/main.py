"""
NameCard Backend - FastAPI Application Factory
===============================================

What:  Creates and configures the FastAPI application instance.
How:   create_app() registers middleware, exception handlers and routers;
       the lifespan configures logging, validates settings and runs the
       OCR completion queue.
Who:   uvicorn (uvicorn app.main:app) and the test suite.

Application Architecture:
    ┌──────────────────────────────────────────────────────────────┐
    │                         FastAPI App                          │
    │                                                              │
    │  Middleware (execution order):                               │
    │  RequestID → Logging → RateLimit → GZip → CORS → routes      │
    │                                                              │
    │  Routers:                                                    │
    │  /api/v1/auth  /api/v1/cards  /api/v1/upload  /api/v1/scan   │
    │  /api/v1/enrichment  /health                                 │
    │                                                              │
    │  Exception Handlers:                                         │
    │  NameCardError → its status/code │ request validation → 400  │
    │  HTTP 404/405 → envelope         │ anything else → 500       │
    └──────────────────────────────────────────────────────────────┘

Lifecycle:
    Startup:  logging → settings check (logged, not fatal) → storage dir →
              OCR queue workers
    Shutdown: OCR queue workers → database engine
"""

import logging
import sys
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException

from app import __version__
from app.config import settings
from app.database import dispose_engine
from app.exceptions import (
    CircuitBreakerOpenError,
    EnrichmentServiceError,
    NameCardError,
    RateLimitExceededError,
)
from app.middleware.logging import RequestLoggingMiddleware
from app.middleware.rate_limit import RateLimitMiddleware
from app.middleware.request_id import RequestIDMiddleware, request_id_var
from app.responses import error_response
from app.routes import auth, cards, enrichment, health, scan, upload
from app.services.ocr_queue import ocr_queue

logger = logging.getLogger(__name__)

_HTTP_ERROR_CODES = {404: "not_found", 405: "method_not_allowed"}


# ══════════════════════════════════════════════════════════════════════════
# Logging Configuration
# ══════════════════════════════════════════════════════════════════════════

def setup_logging() -> None:
    """
    Configure the root logger once, before anything else logs.

    Format: %(asctime)s [%(levelname)s] %(name)s: %(message)s to stdout.
    """
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
        handlers=[logging.StreamHandler(sys.stdout)],
        force=True,
    )

    for noisy in ("uvicorn.access", "sqlalchemy.engine", "httpcore", "httpx", "botocore", "boto3"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


# ══════════════════════════════════════════════════════════════════════════
# Application Lifespan
# ══════════════════════════════════════════════════════════════════════════

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    setup_logging()
    logger.info("=" * 60)
    logger.info("NameCard Backend %s starting up (%s)", __version__, settings.environment)

    try:
        settings.validate_required_for_production()
    except ValueError as e:
        # Not fatal: health checks and local-backend features still work
        logger.error("Configuration error: %s", str(e))

    if not settings.s3_bucket_name:
        storage = Path(settings.storage_root)
        storage.mkdir(parents=True, exist_ok=True)
        logger.info("Local storage directory: %s", storage.resolve())

    ocr_queue.start()

    logger.info("Server ready at http://%s:%d", settings.backend_host, settings.backend_port)
    logger.info("=" * 60)

    yield

    logger.info("NameCard Backend shutting down...")
    await ocr_queue.stop()
    await dispose_engine()
    logger.info("Shutdown complete.")


# ══════════════════════════════════════════════════════════════════════════
# Exception Handlers
# ══════════════════════════════════════════════════════════════════════════

def register_exception_handlers(app: FastAPI) -> None:
    """
    Map exceptions to the error envelope.

    Handler hierarchy:
        NameCardError subclasses → exc.status_code / exc.error_code
        RequestValidationError   → 400 validation_error (field errors in details)
        HTTPException 404/405    → not_found / method_not_allowed
        Exception (fallback)     → 500 internal_server_error, stack logged

    5xx responses never carry exception context; it is logged server-side.
    """

    @app.exception_handler(NameCardError)
    async def handle_app_error(request: Request, exc: NameCardError):
        rid = request_id_var.get("")
        headers = {}
        details = exc.context or None

        if isinstance(exc, RateLimitExceededError):
            headers["Retry-After"] = str(exc.retry_after)
        elif isinstance(exc, CircuitBreakerOpenError):
            headers["Retry-After"] = str(exc.recovery_time)
        elif isinstance(exc, EnrichmentServiceError) and exc.retry_after:
            headers["Retry-After"] = str(exc.retry_after)

        if exc.status_code >= 500:
            if isinstance(exc, (CircuitBreakerOpenError, EnrichmentServiceError)):
                logger.warning("[%s] %s: %s", rid, type(exc).__name__, exc.message)
                details = {
                    k: v for k, v in exc.context.items()
                    if k in ("service", "source", "error_type", "recovery_time", "retry_after")
                } or None
            else:
                logger.error("[%s] %s: %s | Context: %s", rid, type(exc).__name__, exc.message, exc.context)
                details = None
        elif exc.status_code >= 400:
            logger.warning("[%s] %s: %s", rid, type(exc).__name__, exc.message)

        message = exc.message
        if exc.status_code == 500:
            message = "An internal error occurred. Please try again later."
        return error_response(exc.status_code, exc.error_code, message, details, headers or None)

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(request: Request, exc: RequestValidationError):
        errors = [
            {
                "field": ".".join(str(part) for part in err.get("loc", ()) if part != "body"),
                "message": err.get("msg", "Invalid value"),
            }
            for err in exc.errors()
        ]
        first = errors[0] if errors else {"field": "", "message": "Invalid request"}
        message = f"{first['field']}: {first['message']}" if first["field"] else first["message"]
        logger.warning("[%s] Request validation failed: %s", request_id_var.get(""), message)
        return error_response(400, "validation_error", message, {"errors": errors})

    @app.exception_handler(StarletteHTTPException)
    async def handle_http_error(request: Request, exc: StarletteHTTPException):
        code = _HTTP_ERROR_CODES.get(exc.status_code, "http_error")
        message = exc.detail if isinstance(exc.detail, str) else "Request failed"
        return error_response(exc.status_code, code, message, headers=getattr(exc, "headers", None))

    @app.exception_handler(Exception)
    async def handle_unexpected_error(request: Request, exc: Exception):
        logger.error("[%s] Unexpected error: %s", request_id_var.get(""), str(exc), exc_info=True)
        return error_response(
            500,
            "internal_server_error",
            "An unexpected error occurred. Please try again or contact support.",
        )


# ══════════════════════════════════════════════════════════════════════════
# Application Factory
# ══════════════════════════════════════════════════════════════════════════

def create_app() -> FastAPI:
    app = FastAPI(
        title="NameCard API",
        description=(
            "Business card scanning and contact management: OCR extraction, card "
            "CRUD and search, and company enrichment."
        ),
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    # Middleware executes in REVERSE order of addition:
    # added CORS → GZip → RateLimit → Logging → RequestID,
    # runs RequestID → Logging → RateLimit → GZip → CORS, so 429s carry a
    # request ID and reach the access log.
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=[
            "X-Request-ID",
            "X-Total-Count",
            "Retry-After",
            "X-RateLimit-Limit",
            "X-RateLimit-Remaining",
        ],
    )
    app.add_middleware(GZipMiddleware, minimum_size=500)
    app.add_middleware(RateLimitMiddleware)
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(RequestIDMiddleware)

    register_exception_handlers(app)

    app.include_router(auth.router)
    app.include_router(cards.router)
    app.include_router(upload.router)
    app.include_router(scan.router)
    app.include_router(enrichment.router)
    app.include_router(health.router)

    return app


app = create_app()
