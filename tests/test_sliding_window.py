"""Approximate sliding window algorithm against a real SQLite store."""

from __future__ import annotations

import pytest

from conftest import count_rows, fetch_row


@pytest.mark.asyncio
async def test_first_request_allowed(limiter) -> None:
    result = await limiter.limit("sliding-test", limit=5, window=60, algorithm="sliding")

    assert result.success is True
    assert result.remaining == 4


@pytest.mark.asyncio
async def test_blocks_request_over_limit(limiter) -> None:
    results = [
        await limiter.limit("sliding-exceed", limit=5, window=60, algorithm="sliding")
        for _ in range(5)
    ]
    assert results[-1].success is True
    assert results[-1].remaining == 0

    blocked = await limiter.limit("sliding-exceed", limit=5, window=60, algorithm="sliding")
    assert blocked.success is False
    assert blocked.remaining == 0


@pytest.mark.asyncio
async def test_reset_is_always_zero(limiter, clock) -> None:
    first = await limiter.limit("sliding-reset", limit=5, window=60, algorithm="sliding")
    clock.return_value = 1045.0
    later = await limiter.limit("sliding-reset", limit=5, window=60, algorithm="sliding")

    assert first.reset == 0
    assert later.reset == 0


@pytest.mark.asyncio
async def test_counter_survives_until_marker_leaves_window(limiter, clock) -> None:
    await limiter.limit("sliding-marker", limit=1, window=60, algorithm="sliding")

    # reset_at (1_060_000) is still newer than now - window (1_001_000).
    clock.return_value = 1061.0
    result = await limiter.limit("sliding-marker", limit=1, window=60, algorithm="sliding")
    assert result.success is False
    row = await fetch_row(limiter, "sliding-marker")
    assert row["count"] == 2
    assert row["reset_at"] == 1_060_000


@pytest.mark.asyncio
async def test_stale_row_is_overwritten(limiter, clock) -> None:
    for _ in range(3):
        await limiter.limit("sliding-stale", limit=2, window=60, algorithm="sliding")

    clock.return_value = 1120.0
    result = await limiter.limit("sliding-stale", limit=2, window=60, algorithm="sliding")

    assert result.success is True
    assert result.remaining == 1
    row = await fetch_row(limiter, "sliding-stale")
    assert row["count"] == 1
    assert row["reset_at"] == 1_180_000
    assert await count_rows(limiter) == 1


@pytest.mark.asyncio
async def test_keys_are_independent(limiter) -> None:
    first = await limiter.limit("firstUser", limit=2, window=10, algorithm="sliding")
    second = await limiter.limit("secondUser", limit=2, window=10, algorithm="sliding")

    assert first.success is True
    assert second.success is True
    assert first.remaining == second.remaining == 1
