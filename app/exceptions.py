"""
NameCard Backend - Custom Exception Hierarchy
==============================================

What:  Application-specific exceptions for each error scenario.
Why:   Custom exceptions map to an HTTP status code and error code, so routes
       and services never build error responses by hand.
How:   Each exception carries a message (safe for clients) and a context dict
       (logged, returned only as `details` where the handler allows it).
       Global exception handlers (registered in main.py) turn these into the
       standard error envelope.
Who:   Raised by services, dependencies and middleware.

Exception Hierarchy:
    NameCardError (base)                → 500
    ├── ValidationError                 → 400 Bad Request
    │   └── MultipartParseError         → 400 Bad Request
    ├── AuthenticationError             → 401 Unauthorized
    ├── AuthorizationError              → 403 Forbidden
    ├── NotFoundError                   → 404 Not Found
    ├── OCRProcessingError              → 422 Unprocessable Entity
    ├── RateLimitExceededError          → 429 Too Many Requests
    ├── StorageError                    → 500 Internal Server Error
    ├── DatabaseError                   → 500 Internal Server Error
    ├── EnrichmentServiceError          → 503 Service Unavailable
    └── CircuitBreakerOpenError         → 503 Service Unavailable
"""

from typing import Any, Dict, Optional


class NameCardError(Exception):
    """
    Base exception for all NameCard application errors.

    Attributes:
        message:  User-facing error description (safe to return in API response)
        context:  Additional debug info
        status_code / error_code: Used by the global handlers
    """

    status_code = 500
    error_code = "server_error"

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        context: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.context = context or {}
        super().__init__(self.message)


class ValidationError(NameCardError):
    """
    Raised when client input fails validation.

    When:    Bad image, malformed multipart body, invalid field values,
             failed business rules (tag limits, missing company name).
    HTTP:    400 Bad Request
    """

    status_code = 400
    error_code = "validation_error"

    def __init__(
        self,
        message: str = "Validation failed",
        field: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        if field:
            ctx["field"] = field
        super().__init__(message=message, context=ctx)
        self.field = field


class MultipartParseError(ValidationError):
    """Raised when a multipart/form-data body cannot be decoded."""

    def __init__(
        self,
        message: str = "Malformed multipart body",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, field="body", context=context)


class AuthenticationError(NameCardError):
    """
    Raised when the caller is not authenticated.

    When:    Missing/invalid bearer token, wrong credentials, expired session.
    HTTP:    401 Unauthorized
    """

    status_code = 401
    error_code = "authentication_error"

    def __init__(
        self,
        message: str = "Authentication required",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class AuthorizationError(NameCardError):
    """Authenticated but not allowed to perform the action (403)."""

    status_code = 403
    error_code = "authorization_error"

    def __init__(
        self,
        message: str = "You do not have permission to perform this action",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class NotFoundError(NameCardError):
    """
    Raised when a requested resource does not exist.

    Cards owned by another user are reported as not found as well, so card
    IDs from other tenants cannot be discovered.
    HTTP:    404 Not Found
    """

    status_code = 404
    error_code = "not_found"

    def __init__(
        self,
        resource: str = "resource",
        resource_id: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        message = f"The requested {resource} was not found"
        if resource_id:
            message = f"{resource} with ID '{resource_id}' was not found"
        ctx = context or {}
        ctx["resource"] = resource
        if resource_id:
            ctx["resource_id"] = resource_id
        super().__init__(message=message, context=ctx)


class OCRProcessingError(NameCardError):
    """
    Raised when text detection fails or yields nothing usable.

    When:    Textract rejects the image, or no line survives the confidence
             threshold.
    HTTP:    422 Unprocessable Entity
    """

    status_code = 422
    error_code = "ocr_failed"

    def __init__(
        self,
        message: str = "Unable to extract text from uploaded image",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class StorageError(NameCardError):
    """
    Raised when object storage operations fail (S3 or local backend).

    HTTP:    500 Internal Server Error
    The scan pipeline tolerates this error and creates the card without URLs.
    """

    error_code = "server_error"

    def __init__(
        self,
        message: str = "File storage operation failed",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class EnrichmentServiceError(NameCardError):
    """
    Raised when a company enrichment source fails.

    When:    Provider error, timeout, malformed response, or source disabled.
             The failure is recorded on the CompanyEnrichment row first.
    HTTP:    503 Service Unavailable
    """

    status_code = 503
    error_code = "service_unavailable"

    def __init__(
        self,
        message: str = "Company enrichment service is temporarily unavailable",
        source: Optional[str] = None,
        error_type: str = "UNKNOWN_ERROR",
        retry_after: Optional[int] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        if source:
            ctx["source"] = source
        ctx["error_type"] = error_type
        if retry_after:
            ctx["retry_after"] = retry_after
        super().__init__(message=message, context=ctx)
        self.source = source
        self.error_type = error_type
        self.retry_after = retry_after


class CircuitBreakerOpenError(NameCardError):
    """
    Raised when a provider's circuit breaker is OPEN.

    CLOSED → (N failures) → OPEN → (recovery timeout) → HALF_OPEN → CLOSED/OPEN
    HTTP:    503 Service Unavailable with Retry-After
    """

    status_code = 503
    error_code = "service_unavailable"

    def __init__(
        self,
        recovery_time: int = 60,
        service: str = "external",
        context: Optional[Dict[str, Any]] = None,
    ):
        message = (
            f"The {service} service is temporarily unavailable due to repeated failures. "
            f"Please retry in approximately {recovery_time} seconds."
        )
        ctx = context or {}
        ctx["recovery_time"] = recovery_time
        ctx["service"] = service
        super().__init__(message=message, context=ctx)
        self.recovery_time = recovery_time
        self.service = service


class DatabaseError(NameCardError):
    """
    Raised when database operations fail unexpectedly.

    Security Note:
        The client only ever sees a generic message. SQL, constraint names
        and driver errors are logged server-side.
    """

    error_code = "server_error"

    def __init__(
        self,
        message: str = "A database error occurred. Please try again later.",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class RateLimitExceededError(NameCardError):
    """
    Raised when a client or an outbound provider budget is exhausted.

    HTTP:    429 Too Many Requests, Retry-After header
    """

    status_code = 429
    error_code = "rate_limit_exceeded"

    def __init__(
        self,
        retry_after: int = 60,
        message: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        message = message or (
            f"Rate limit exceeded. Please wait {retry_after} seconds before making more requests."
        )
        ctx = context or {}
        ctx["retry_after"] = retry_after
        super().__init__(message=message, context=ctx)
        self.retry_after = retry_after
