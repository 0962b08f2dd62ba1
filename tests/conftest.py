"""Pytest configuration and fixtures shared across all test modules.

This file is automatically loaded by pytest before running any tests.
Environment defaults are set before any import that might build settings,
so no .env file or developer database is touched during tests.
"""

import os

# CRITICAL: Set this before any imports that might load settings
os.environ["TESTING"] = "true"

os.environ.setdefault("LIBSQL_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("LOG_LEVEL", "WARNING")

from unittest.mock import Mock

import pytest
import pytest_asyncio
from sqlalchemy import func, select

from sql_ratelimiter.services.rate_limiter import (
    RateLimitConfig,
    RateLimiter,
    create_rate_limiter,
)


@pytest.fixture
def clock() -> Mock:
    """Frozen time source (UNIX seconds); tests move it by setting return_value."""
    return Mock(return_value=1000.0)


@pytest.fixture
def db_config(tmp_path) -> RateLimitConfig:
    return RateLimitConfig(url=f"file:{tmp_path / 'ratelimit.db'}")


@pytest_asyncio.fixture
async def limiter(db_config: RateLimitConfig, clock: Mock):
    rate_limiter = await create_rate_limiter(db_config, clock=clock)
    yield rate_limiter
    await rate_limiter.close()


async def fetch_row(rate_limiter: RateLimiter, key: str) -> dict | None:
    """Read one counter row straight from the store."""
    table = rate_limiter.store.table
    async with rate_limiter.store.engine.connect() as conn:
        row = (await conn.execute(select(table).where(table.c.key == key))).first()
    return dict(row._mapping) if row else None


async def count_rows(rate_limiter: RateLimiter) -> int:
    table = rate_limiter.store.table
    async with rate_limiter.store.engine.connect() as conn:
        return (await conn.execute(select(func.count()).select_from(table))).scalar_one()
