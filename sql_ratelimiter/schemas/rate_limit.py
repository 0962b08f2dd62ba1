"""Pydantic schemas for the rate limited demo API."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field


class ApiResponse(BaseModel):
    """Body returned when a request passed every quota."""

    message: str = Field(..., description="Confirmation that the request was allowed.")
    timestamp: datetime = Field(..., description="Server time (UTC) the request was handled.")


class RateLimitExceeded(BaseModel):
    """``detail`` payload of a 429 response."""

    error: str = Field(
        ..., description="Which quota was exceeded, e.g. 'Minute rate limit exceeded'."
    )
    limit: int = Field(..., description="Maximum requests allowed in the quota window.")
    remaining: int = Field(..., ge=0, description="Requests left in the window (always 0).")
    reset_time: datetime = Field(
        ..., description="When the quota window resets (UTC, ISO 8601)."
    )


class HealthResponse(BaseModel):
    status: str = "ok"
    store_initialized: bool = Field(
        default=False,
        description="True once the counter table has been created by this process.",
    )
