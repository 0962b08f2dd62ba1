"""Rate limiting dependency for FastAPI routes.

This module wires the rate limiter into the HTTP layer.

Strategy:
- Two stacked fixed-window quotas per client: a short one (per minute by
  default) checked first, then a long one (per day by default).
- The client is identified by X-Real-IP, then the first X-Forwarded-For
  hop, then the socket peer address.
- Every checked quota sets X-RateLimit-<Name>-{Limit,Remaining,Reset}
  headers; exceeding one answers 429 with a JSON body.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from email.utils import format_datetime

from fastapi import HTTPException, Request, Response, status

from sql_ratelimiter.adapters.rate_limit.base import RateLimitResult
from sql_ratelimiter.core.config import settings
from sql_ratelimiter.core.logging import hash_key
from sql_ratelimiter.schemas.rate_limit import RateLimitExceeded
from sql_ratelimiter.services.rate_limiter import RateLimiter

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Quota:
    """One named quota applied to every limited request."""

    name: str
    limit: int
    window_seconds: int


def configured_quotas() -> list[Quota]:
    """Return the quotas to enforce, shortest window first."""
    return [
        Quota("minute", settings.app.minute_limit, settings.app.minute_window_seconds),
        Quota("day", settings.app.day_limit, settings.app.day_window_seconds),
    ]


def get_rate_limiter(request: Request) -> RateLimiter:
    """Return the limiter created by the application lifespan."""
    limiter: RateLimiter | None = getattr(request.app.state, "rate_limiter", None)
    if limiter is None:
        raise RuntimeError("Rate limiter is not configured on this application")
    return limiter


def client_identifier(request: Request) -> str:
    """Best-effort client address for keying the counters."""
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()

    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()

    return request.client.host if request.client else "unknown"


def _reset_at(result: RateLimitResult) -> datetime:
    return datetime.now(timezone.utc) + timedelta(milliseconds=result.reset)


def quota_headers(quota: Quota, result: RateLimitResult) -> dict[str, str]:
    """Build the X-RateLimit-* headers describing one quota."""
    title = quota.name.capitalize()
    return {
        f"X-RateLimit-{title}-Limit": str(result.limit),
        f"X-RateLimit-{title}-Remaining": str(result.remaining),
        f"X-RateLimit-{title}-Reset": format_datetime(_reset_at(result), usegmt=True),
    }


async def enforce_rate_limit(request: Request, response: Response) -> None:
    """FastAPI dependency enforcing the configured quotas.

    Each quota consumes one unit from the requester's allowance. The first
    quota that is exceeded stops the request with HTTP 429; later quotas
    are not consumed.

    Raises:
        HTTPException: 429 Too Many Requests when a quota is exceeded.
    """

    if not settings.app.rate_limit_enabled:
        return

    limiter = get_rate_limiter(request)
    identifier = client_identifier(request)
    headers: dict[str, str] = {}

    for quota in configured_quotas():
        key = f"{identifier}:{quota.name}"
        result = await limiter.limit(
            key,
            limit=quota.limit,
            window=quota.window_seconds,
            prefix=settings.app.rate_limit_key_prefix,
        )
        headers.update(quota_headers(quota, result))

        if result.success:
            continue

        logger.warning(
            "rate_limit.http_rejected",
            extra={
                "quota": quota.name,
                "key_hash": hash_key(key),
                "limit": result.limit,
                "remaining": result.remaining,
                "window_s": quota.window_seconds,
                "retry_after_ms": result.reset,
            },
        )
        headers["Retry-After"] = str(max(0, math.ceil(result.reset / 1000)))
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail=RateLimitExceeded(
                error=f"{quota.name.capitalize()} rate limit exceeded",
                limit=result.limit,
                remaining=result.remaining,
                reset_time=_reset_at(result),
            ).model_dump(mode="json"),
            headers=headers,
        )

    for name, value in headers.items():
        response.headers[name] = value
