"""Keyed rate limiting on top of a transactional SQL store."""

from sql_ratelimiter.adapters.rate_limit.base import Algorithm, RateLimitResult, TimeUnit
from sql_ratelimiter.core.errors import (
    AppError,
    ConfigurationAppError,
    InsufficientTokensError,
    StoreAppError,
    ValidationAppError,
)
from sql_ratelimiter.services.rate_limiter import (
    RateLimitConfig,
    RateLimiter,
    create_rate_limiter,
)

__all__ = [
    "Algorithm",
    "AppError",
    "ConfigurationAppError",
    "InsufficientTokensError",
    "RateLimitConfig",
    "RateLimitResult",
    "RateLimiter",
    "StoreAppError",
    "TimeUnit",
    "ValidationAppError",
    "create_rate_limiter",
]

__version__ = "0.1.0"
