from __future__ import annotations

from datetime import datetime, timezone

from fastapi import APIRouter, Depends
from fastapi.responses import PlainTextResponse

from sql_ratelimiter.core.rate_limit import enforce_rate_limit
from sql_ratelimiter.schemas.rate_limit import ApiResponse, RateLimitExceeded

router = APIRouter(tags=["Demo"])


@router.get("/", response_class=PlainTextResponse)
def index() -> str:
    return "Rate limiter demo is running!"


@router.get(
    "/api/",
    response_model=ApiResponse,
    dependencies=[Depends(enforce_rate_limit)],
    responses={429: {"description": "Quota exceeded", "model": RateLimitExceeded}},
)
async def limited_endpoint() -> ApiResponse:
    """Endpoint guarded by the per-client minute and day quotas.

    Returns:
        ApiResponse: Confirmation message and server timestamp.
    """

    return ApiResponse(
        message="API Request allowed",
        timestamp=datetime.now(timezone.utc),
    )
