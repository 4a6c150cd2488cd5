"""
NameCard Backend - Shared Schemas
==================================

What:  Base model, response envelopes, pagination metadata, health response.
How:   `ApiModel` serializes to camelCase (alias generator) and accepts both
       camelCase and snake_case input. FastAPI serializes response models by
       alias, so every route emits camelCase JSON.
"""

import math
from datetime import datetime, timezone
from typing import Any, Dict, Generic, List, Optional, TypeVar

from pydantic import BaseModel, Field
from pydantic.alias_generators import to_camel

from app.middleware.request_id import request_id_var

T = TypeVar("T")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def current_request_id() -> str:
    return request_id_var.get("")


class ApiModel(BaseModel):
    """Base for all API schemas: camelCase on the wire, ORM-friendly."""

    model_config = {
        "alias_generator": to_camel,
        "populate_by_name": True,
        "from_attributes": True,
    }


class ApiResponse(ApiModel, Generic[T]):
    """
    Success envelope: {success, data, message, timestamp, requestId}.

    `timestamp` and `requestId` are filled automatically, so routes only pass
    data and an optional message.
    """

    success: bool = Field(default=True, description="Always true for success responses")
    data: Optional[T] = Field(default=None, description="Response payload")
    message: Optional[str] = Field(default=None, description="Human-readable summary")
    timestamp: datetime = Field(default_factory=utcnow, description="Server time (UTC)")
    request_id: str = Field(default_factory=current_request_id, description="Correlation ID")


class ErrorResponse(ApiModel):
    """Error envelope: {success: false, error, code, details, timestamp, requestId}."""

    success: bool = Field(default=False)
    error: str = Field(description="Human-readable error description")
    code: str = Field(description="Machine-readable error code")
    details: Optional[Dict[str, Any]] = Field(default=None, description="Additional error context")
    timestamp: datetime = Field(default_factory=utcnow)
    request_id: str = Field(default_factory=current_request_id)


class PaginationMeta(ApiModel):
    """Offset pagination metadata for list endpoints."""

    page: int
    limit: int
    total: int
    total_pages: int
    has_next: bool
    has_prev: bool

    @classmethod
    def build(cls, page: int, limit: int, total: int) -> "PaginationMeta":
        total_pages = math.ceil(total / limit) if limit else 0
        return cls(
            page=page,
            limit=limit,
            total=total,
            total_pages=total_pages,
            has_next=page < total_pages,
            has_prev=page > 1,
        )


class DependencyStatus(ApiModel):
    name: str
    status: str = Field(description="available, unavailable, circuit_open, disabled, not_configured")
    details: Optional[Dict[str, Any]] = None


class HealthResponse(ApiModel):
    """
    Who:   Load balancers and container health checks (GET /health).
    Status: healthy, degraded (optional dependency down), unhealthy (database down)
    """

    status: str = Field(description="Overall service status: healthy, degraded, unhealthy")
    version: str = Field(description="Application version")
    environment: str
    database: str = Field(description="Database connectivity: connected, disconnected")
    dependencies: List[DependencyStatus] = Field(default_factory=list)
    uptime_seconds: float = Field(description="Seconds since service started")
