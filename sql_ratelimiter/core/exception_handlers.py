"""Global exception handlers for consistent error responses.

This module provides FastAPI exception handlers that intercept rate limiter
errors (and anything unexpected) and return consistent JSON responses with
proper HTTP status codes and traceability.

Design:
- ValidationAppError → 400 (client sent bad limiter arguments)
- InsufficientTokensError → 429 (token bucket rejection)
- ConfigurationAppError / StoreAppError → 500 (server fault)
- Unexpected Exception → generic 500 (safety net)
- All responses include request_id for distributed tracing
"""

import logging
import math

from fastapi import Request
from fastapi.responses import JSONResponse

from sql_ratelimiter.core.errors import (
    AppError,
    ConfigurationAppError,
    InsufficientTokensError,
    StoreAppError,
)
from sql_ratelimiter.core.logging import get_request_id

logger = logging.getLogger(__name__)


def status_code_for(exc: AppError) -> int:
    """Map an AppError subclass to its HTTP status code."""
    if isinstance(exc, InsufficientTokensError):
        return 429
    if isinstance(exc, (ConfigurationAppError, StoreAppError)):
        return 500
    return 400


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    """Handle rate limiter errors with consistent JSON format.

    All responses include:
    - error.code: Machine-readable error code
    - error.message: Human-readable message
    - error.request_id: For distributed tracing
    - error.details: Optional structured context

    Store errors are reported with a generic message; the driver message
    stays in the server log.

    Args:
        request: FastAPI request object.
        exc: AppError instance (or subclass).

    Returns:
        JSONResponse with appropriate status code and error details.
    """
    status_code = status_code_for(exc)

    logger.warning(
        "app_error_handled",
        extra={
            "error_code": exc.code,
            "error_message": exc.message,
            "status_code": status_code,
            "has_details": bool(exc.details),
            "request_id": get_request_id(),
        },
    )

    error_content = {
        "code": exc.code,
        "message": exc.message,
        "request_id": get_request_id(),
    }
    if isinstance(exc, StoreAppError):
        error_content["message"] = "Rate limit store unavailable."
    elif exc.details:
        error_content["details"] = exc.details

    headers = None
    if isinstance(exc, InsufficientTokensError) and exc.details:
        retry_after_ms = exc.details.get("retry_after_ms")
        if retry_after_ms is not None:
            headers = {"Retry-After": str(max(0, math.ceil(retry_after_ms / 1000)))}

    return JSONResponse(
        status_code=status_code,
        content={"error": error_content},
        headers=headers,
    )


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Fallback handler for unexpected errors (safety net).

    Logs detailed information for debugging while returning a generic
    message; no stack traces reach the client.
    """
    logger.error(
        "unhandled_exception",
        extra={
            "error_type": type(exc).__name__,
            "error_msg": str(exc),
            "request_path": request.url.path,
            "request_method": request.method,
            "request_id": get_request_id(),
        },
    )

    return JSONResponse(
        status_code=500,
        content={
            "error": {
                "code": "internal_server_error",
                "message": "An unexpected error occurred. Please try again later.",
                "request_id": get_request_id(),
            }
        },
    )


def setup_exception_handlers(app) -> None:
    """Register all exception handlers with FastAPI app.

    Args:
        app: FastAPI application instance.
    """
    app.exception_handler(AppError)(app_error_handler)
    app.exception_handler(Exception)(general_exception_handler)
