"""Application-level exception types.

This module defines the errors raised by the rate limiter core and the HTTP
layer, enabling consistent error handling, logging, and API responses.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, NotRequired, TypedDict


class ErrorDetails(TypedDict, total=False):
    """Structured error context for observability and clients.

    Fields are optional; each error only fills in what applies to it.
    """

    code: str
    message: str
    hint: str
    parameter: str
    actual_value: Any
    table_name: str
    algorithm: str
    retry_after_ms: int
    request_id: str
    context: NotRequired[dict[str, Any]]


@dataclass
class AppError(Exception):
    """Base error for rate limiter failures.

    Attributes:
        code: Stable, machine-readable error code.
        message: Human-readable error message.
        details: Optional structured details for debugging/observability.
    """

    code: str
    message: str
    details: ErrorDetails | None = None

    def __post_init__(self) -> None:
        # Populate Exception args so str(error) is useful in logs/tracebacks.
        super().__init__(self.message)


class ConfigurationAppError(AppError):
    """Raised when the limiter is constructed with unusable configuration."""


class ValidationAppError(AppError):
    """Raised when `limit()` arguments are invalid.

    Always raised before the store is touched.
    """


class StoreAppError(AppError):
    """Raised when schema creation or a store transaction fails."""


class InsufficientTokensError(AppError):
    """Raised by the token bucket when the request cannot be covered.

    Token bucket rejections are signalled with this error instead of a
    ``success=False`` result.
    """

    def __init__(
        self,
        message: str = "Not enough tokens available",
        details: ErrorDetails | None = None,
    ) -> None:
        super().__init__(code="insufficient_tokens", message=message, details=details)
