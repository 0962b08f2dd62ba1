"""Rate limiter interfaces.

A ``WindowPolicy`` is one admission algorithm bound to its validated
parameters. The facade builds exactly one policy per ``limit()`` call and
hands it an open store transaction; the policy performs its read-modify-write
against the counter table inside that transaction and returns the result.
"""

from __future__ import annotations

import math
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any

from sqlalchemy import Table
from sqlalchemy.ext.asyncio import AsyncConnection

from sql_ratelimiter.core.errors import ValidationAppError


class Algorithm(str, Enum):
    """Admission algorithms understood by ``RateLimiter.limit``."""

    FIXED = "fixed"
    SLIDING = "sliding"
    TOKEN_BUCKET = "tokenBucket"


class TimeUnit(str, Enum):
    MILLISECONDS = "milliseconds"
    SECONDS = "seconds"
    MINUTES = "minutes"
    HOURS = "hours"


TIME_MULTIPLIERS: dict[TimeUnit, float] = {
    TimeUnit.MILLISECONDS: 1 / 1000,
    TimeUnit.SECONDS: 1,
    TimeUnit.MINUTES: 60,
    TimeUnit.HOURS: 3600,
}

# Window end (now + window) is stored as a signed 64-bit epoch-ms value.
MAX_WINDOW_MS = 2**62


@dataclass(frozen=True)
class RateLimitResult:
    """Result of a ``limit()`` call.

    Attributes:
        success: Whether the action is admitted.
        limit: Quota for window algorithms, bucket capacity for token bucket.
        remaining: Actions (or tokens) left; never negative for window algorithms.
        reset: Milliseconds until the quota frees up again.
    """

    success: bool
    limit: float
    remaining: float
    reset: float


def is_positive_number(value: Any) -> bool:
    """Return True for finite numbers greater than zero.

    Booleans are rejected even though ``bool`` subclasses ``int``.
    """
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    try:
        if not math.isfinite(value):
            return False
    except OverflowError:
        # ints too large for a float
        return False
    return value > 0


def convert_to_seconds(window: Any, time_unit: TimeUnit | str = TimeUnit.SECONDS) -> float:
    """Convert a window duration expressed in ``time_unit`` into seconds.

    Raises:
        ValidationAppError: If the window is not a positive finite number,
            its end would not fit a 64-bit millisecond timestamp, or the
            time unit is unknown.
    """
    if not is_positive_number(window):
        raise ValidationAppError(
            code="invalid_window",
            message="Window must be a positive number",
            details={"parameter": "window", "actual_value": repr(window)},
        )

    try:
        unit = TimeUnit(time_unit)
    except ValueError as exc:
        raise ValidationAppError(
            code="invalid_time_unit",
            message=f"Unknown time unit: {time_unit!r}",
            details={
                "parameter": "time_unit",
                "actual_value": repr(time_unit),
                "hint": ", ".join(u.value for u in TimeUnit),
            },
        ) from exc

    window_seconds = window * TIME_MULTIPLIERS[unit]
    if window_seconds * 1000 > MAX_WINDOW_MS:
        raise ValidationAppError(
            code="invalid_window",
            message="Window is too large",
            details={
                "parameter": "window",
                "actual_value": repr(window),
                "hint": f"At most {MAX_WINDOW_MS} milliseconds",
            },
        )
    return window_seconds


class WindowPolicy(ABC):
    """One admission algorithm with its parameters already validated."""

    algorithm: Algorithm

    @abstractmethod
    async def apply(
        self,
        conn: AsyncConnection,
        table: Table,
        key: str,
        now: int,
    ) -> RateLimitResult:
        """Run the algorithm's read-modify-write for ``key``.

        Args:
            conn: Connection with an open write transaction. The caller
                commits on return and rolls back if this raises.
            table: Counter table.
            key: Effective (prefix-qualified) key.
            now: Current time in epoch milliseconds.

        Returns:
            RateLimitResult for this call.
        """
        raise NotImplementedError
