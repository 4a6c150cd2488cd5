"""
NameCard Backend - Health Check Route
======================================

What:  GET /health for load balancers and container health checks.
How:   `SELECT 1` against the database plus in-process dependency states
       (no provider calls, so the check is free):

    database      connected / disconnected     → unhealthy when down
    textract      available / circuit_open     → degraded when open
    perplexity    available / circuit_open / disabled
    storage       s3 / local backend
    ocr_queue     running / stopped, depth

HTTP 200 for healthy and degraded, 503 for unhealthy.
"""

import logging
import time

from fastapi import APIRouter, Response
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from app import __version__
from app.config import settings
from app.database import engine
from app.schemas.common import DependencyStatus, HealthResponse
from app.services.enrichment_service import enrichment_service
from app.services.ocr_queue import ocr_queue
from app.services.storage_service import storage_service
from app.services.textract_service import textract_service

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Health"])

_start_time = time.time()


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Service health check",
    description="Database connectivity plus OCR, enrichment, storage and queue status.",
)
async def health_check(response: Response) -> HealthResponse:
    overall = "healthy"
    db_status = "connected"
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except (SQLAlchemyError, OSError) as e:
        db_status = "disconnected"
        overall = "unhealthy"
        logger.warning("Health check: database unreachable: %s", str(e))

    textract_status = textract_service.health()
    enrichment_status = await enrichment_service.source.health_check()
    if overall == "healthy" and "circuit_open" in (textract_status, enrichment_status):
        overall = "degraded"

    dependencies = [
        DependencyStatus(
            name="textract",
            status=textract_status,
            details=textract_service.circuit_breaker.snapshot(),
        ),
        DependencyStatus(name=enrichment_service.source.name, status=enrichment_status),
        DependencyStatus(name="storage", status="available", details={"backend": storage_service.backend}),
        DependencyStatus(
            name="ocr_queue",
            status="running" if ocr_queue.running else "stopped",
            details={"depth": ocr_queue.depth},
        ),
    ]

    if overall == "unhealthy":
        response.status_code = 503
    return HealthResponse(
        status=overall,
        version=__version__,
        environment=settings.environment,
        database=db_status,
        dependencies=dependencies,
        uptime_seconds=round(time.time() - _start_time, 2),
    )
