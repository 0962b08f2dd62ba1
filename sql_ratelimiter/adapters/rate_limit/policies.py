"""Admission algorithms executed against the counter table.

Each policy is a frozen dataclass whose constructor validates its
parameters, so a policy that exists is always safe to run. ``apply`` is
called with a connection that already holds a write transaction; every
statement a policy issues is part of that one transaction.

Counter row fields per algorithm:

- fixed / sliding: ``count``, ``reset_at``
- token bucket: ``tokens``, ``last_refill``
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any

from sqlalchemy import Table, case, select, update
from sqlalchemy.ext.asyncio import AsyncConnection

from sql_ratelimiter.adapters.rate_limit.base import (
    Algorithm,
    RateLimitResult,
    WindowPolicy,
    is_positive_number,
)
from sql_ratelimiter.adapters.rate_limit.sql_store import dialect_insert
from sql_ratelimiter.core.errors import (
    InsufficientTokensError,
    StoreAppError,
    ValidationAppError,
)


def _require_positive(value: Any, parameter: str, code: str) -> None:
    if not is_positive_number(value):
        raise ValidationAppError(
            code=code,
            message=f"Invalid {parameter} value. Must be a positive number.",
            details={"parameter": parameter, "actual_value": repr(value)},
        )


# Largest token count that stays exact when refill arithmetic uses floats.
MAX_TOKENS = 2**53


def _window_ms(window_seconds: float) -> int:
    return round(window_seconds * 1000)


@dataclass(frozen=True)
class FixedWindowPolicy(WindowPolicy):
    """Counter that resets entirely once its window has expired.

    Cheapest of the three, but up to ``2 * limit`` actions can pass around a
    window boundary.
    """

    limit: float
    window_seconds: float

    algorithm = Algorithm.FIXED

    def __post_init__(self) -> None:
        _require_positive(self.limit, "limit", "invalid_limit")

    async def apply(
        self,
        conn: AsyncConnection,
        table: Table,
        key: str,
        now: int,
    ) -> RateLimitResult:
        reset_at = now + _window_ms(self.window_seconds)

        # Both CASE branches read the pre-update row, so this is one atomic
        # "reset if expired, else increment".
        expired = table.c.reset_at <= now
        next_count = case((expired, 1), else_=table.c.count + 1)
        next_reset_at = case((expired, reset_at), else_=table.c.reset_at)

        row = (
            await conn.execute(
                update(table)
                .where(table.c.key == key)
                .values(count=next_count, reset_at=next_reset_at)
                .returning(table.c.count, table.c.reset_at)
            )
        ).first()

        if row is None:
            stmt = dialect_insert(conn, table).values(key=key, count=1, reset_at=reset_at)
            stmt = stmt.on_conflict_do_update(
                index_elements=[table.c.key],
                set_={"count": next_count, "reset_at": next_reset_at},
            ).returning(table.c.count, table.c.reset_at)
            row = (await conn.execute(stmt)).first()
            if row is None:
                raise StoreAppError(
                    code="store_transaction_failed",
                    message="Failed to insert rate limit record",
                )

        count, current_reset_at = row
        return RateLimitResult(
            success=count <= self.limit,
            limit=self.limit,
            remaining=max(0, self.limit - count),
            reset=max(0, current_reset_at - now),
        )


@dataclass(frozen=True)
class ApproximateSlidingWindowPolicy(WindowPolicy):
    """Counter valid until its own ``reset_at`` marker.

    This approximates a sliding window: once a counter is active it behaves
    like a fixed window anchored at the first call, so bursts near the
    boundary are admitted just as with ``FixedWindowPolicy``.
    """

    limit: float
    window_seconds: float

    algorithm = Algorithm.SLIDING

    def __post_init__(self) -> None:
        _require_positive(self.limit, "limit", "invalid_limit")

    async def apply(
        self,
        conn: AsyncConnection,
        table: Table,
        key: str,
        now: int,
    ) -> RateLimitResult:
        window_ms = _window_ms(self.window_seconds)
        window_start = now - window_ms

        row = (
            await conn.execute(
                select(table.c.count)
                .where(table.c.key == key, table.c.reset_at > window_start)
                .with_for_update()
            )
        ).first()

        if row is None:
            # A stale row from an expired window is overwritten. The CASE
            # guards against a row another writer created after our SELECT.
            in_window = table.c.reset_at > window_start
            stmt = dialect_insert(conn, table).values(
                key=key, count=1, reset_at=now + window_ms
            )
            stmt = stmt.on_conflict_do_update(
                index_elements=[table.c.key],
                set_={
                    "count": case((in_window, table.c.count + 1), else_=1),
                    "reset_at": case((in_window, table.c.reset_at), else_=now + window_ms),
                },
            ).returning(table.c.count)
            inserted = (await conn.execute(stmt)).first()
            if inserted is None:
                raise StoreAppError(
                    code="store_transaction_failed",
                    message="Failed to insert rate limit record",
                )
            count = inserted[0]
        else:
            count = row[0] + 1
            await conn.execute(
                update(table).where(table.c.key == key).values(count=count)
            )

        return RateLimitResult(
            success=count <= self.limit,
            limit=self.limit,
            remaining=max(0, self.limit - count),
            # window_start is derived from now, so this is always 0.
            reset=max(0, window_ms - (now - window_start)),
        )


@dataclass(frozen=True)
class TokenBucketPolicy(WindowPolicy):
    """Bucket of ``capacity`` tokens refilled at ``refill_rate`` tokens/second.

    The first call for a key always succeeds and seeds the bucket already
    debited. A rejected call raises ``InsufficientTokensError`` and leaves
    the row untouched, including the refill it computed.
    """

    capacity: float
    refill_rate: float
    tokens_to_consume: float

    algorithm = Algorithm.TOKEN_BUCKET

    def __post_init__(self) -> None:
        _require_positive(self.capacity, "capacity", "invalid_parameter")
        _require_positive(self.refill_rate, "refill_rate", "invalid_parameter")
        _require_positive(self.tokens_to_consume, "tokens_to_consume", "invalid_parameter")
        if self.capacity > MAX_TOKENS:
            raise ValidationAppError(
                code="invalid_parameter",
                message="Invalid capacity value. Too large to store.",
                details={
                    "parameter": "capacity",
                    "actual_value": repr(self.capacity),
                    "hint": f"At most {MAX_TOKENS}",
                },
            )

    async def apply(
        self,
        conn: AsyncConnection,
        table: Table,
        key: str,
        now: int,
    ) -> RateLimitResult:
        row = (
            await conn.execute(
                select(table.c.tokens, table.c.last_refill)
                .where(table.c.key == key)
                .with_for_update()
            )
        ).first()

        if row is None:
            tokens = self.capacity - self.tokens_to_consume
            await conn.execute(
                dialect_insert(conn, table).values(key=key, tokens=tokens, last_refill=now)
            )
        else:
            stored_tokens, last_refill = row
            elapsed_ms = now - last_refill
            tokens_to_add = math.floor((elapsed_ms / 1000) * self.refill_rate)
            tokens = min(self.capacity, stored_tokens + tokens_to_add)

            if tokens < self.tokens_to_consume:
                raise InsufficientTokensError(
                    details={
                        "algorithm": self.algorithm.value,
                        "retry_after_ms": math.ceil(
                            ((self.tokens_to_consume - tokens) / self.refill_rate) * 1000
                        ),
                    }
                )

            tokens -= self.tokens_to_consume
            await conn.execute(
                update(table)
                .where(table.c.key == key)
                .values(tokens=tokens, last_refill=now)
            )

        return RateLimitResult(
            success=True,
            limit=self.capacity,
            remaining=tokens,
            # Time until a request of the same size would be covered; this is
            # not "time until full" and goes negative while tokens remain.
            reset=math.ceil(((self.tokens_to_consume - tokens) / self.refill_rate) * 1000),
        )
