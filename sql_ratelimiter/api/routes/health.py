from __future__ import annotations

from fastapi import APIRouter, Request

from sql_ratelimiter.schemas.rate_limit import HealthResponse

router = APIRouter(tags=["Health"])


@router.get("/health", response_model=HealthResponse)
def health_check(request: Request) -> HealthResponse:
    """Health check endpoint.

    Reports whether the counter table has been set up by this process.

    Returns:
        HealthResponse: ``status`` is always "ok"; ``store_initialized`` is
            False until the limiter finished creating its table.
    """

    limiter = getattr(request.app.state, "rate_limiter", None)
    return HealthResponse(store_initialized=bool(limiter and limiter.is_initialized()))
