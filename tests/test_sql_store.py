"""Tests for the SQLAlchemy counter store."""

from __future__ import annotations

import pytest
from sqlalchemy import text
from sqlalchemy.exc import OperationalError
from sqlalchemy.pool import AsyncAdaptedQueuePool

from sql_ratelimiter.adapters.rate_limit.sql_store import (
    CounterStore,
    build_counter_table,
    is_memory_database,
    normalize_url,
    validate_table_name,
)
from sql_ratelimiter.core.errors import (
    ConfigurationAppError,
    StoreAppError,
    ValidationAppError,
)


@pytest.fixture
def db_url(tmp_path) -> str:
    return f"file:{tmp_path / 'store.db'}"


class TestNormalizeUrl:
    def test_relative_file_url(self) -> None:
        url = normalize_url("file:./data.db")

        assert url.drivername == "sqlite+aiosqlite"
        assert url.database == "./data.db"

    def test_absolute_file_url(self) -> None:
        assert normalize_url("file:/var/lib/limits.db").database == "/var/lib/limits.db"

    def test_sqlalchemy_url_passes_through(self) -> None:
        url = normalize_url("postgresql+asyncpg://user:pw@db:5432/limits")

        assert url.drivername == "postgresql+asyncpg"
        assert url.host == "db"
        assert url.database == "limits"

    def test_auth_token_becomes_postgres_password(self) -> None:
        url = normalize_url("postgresql+asyncpg://app@db:5432/limits", auth_token="tok-123")

        assert url.password == "tok-123"
        assert "authToken" not in url.query

    def test_auth_token_conflicts_with_url_password(self) -> None:
        with pytest.raises(ConfigurationAppError) as exc_info:
            normalize_url("postgresql+asyncpg://app:pw@db/limits", auth_token="tok-123")

        assert exc_info.value.code == "unsupported_auth_token"

    @pytest.mark.parametrize(
        "url",
        ["file:./data.db", "sqlite+aiosqlite:///:memory:", "libsql://db-org.turso.io"],
    )
    def test_auth_token_rejected_for_other_dialects(self, url: str) -> None:
        with pytest.raises(ConfigurationAppError) as exc_info:
            normalize_url(url, auth_token="tok-123")

        assert exc_info.value.code == "unsupported_auth_token"

    def test_memory_urls_detected(self) -> None:
        assert is_memory_database(normalize_url("sqlite+aiosqlite:///:memory:"))
        assert is_memory_database(normalize_url("sqlite+aiosqlite://"))
        assert not is_memory_database(normalize_url("file:./data.db"))
        assert not is_memory_database(normalize_url("postgresql+asyncpg://db/limits"))

    def test_unparsable_url_rejected(self) -> None:
        with pytest.raises(ConfigurationAppError) as exc_info:
            normalize_url("not a url")

        assert exc_info.value.code == "invalid_url"


class TestTableDefinition:
    @pytest.mark.parametrize("name", ["rate_limits", "_private", "Limits2"])
    def test_valid_names_accepted(self, name: str) -> None:
        assert validate_table_name(name) == name

    def test_columns(self) -> None:
        table = build_counter_table("rate_limits")

        assert [c.name for c in table.columns] == [
            "key",
            "count",
            "reset_at",
            "tokens",
            "last_refill",
        ]
        assert [c.name for c in table.primary_key.columns] == ["key"]


class TestCounterStore:
    @pytest.mark.asyncio
    async def test_create_schema_twice_keeps_rows(self, db_url: str) -> None:
        store = CounterStore(db_url)
        try:
            await store.create_schema()
            async with store.transaction("seed") as conn:
                await conn.execute(store.table.insert().values(key="k", count=3, reset_at=1))

            await store.create_schema()

            async with store.engine.connect() as conn:
                count = (
                    await conn.execute(text('SELECT "count" FROM rate_limits WHERE "key" = \'k\''))
                ).scalar_one()
            assert count == 3
        finally:
            await store.dispose()

    @pytest.mark.asyncio
    async def test_app_error_rolls_back_and_propagates(self, db_url: str) -> None:
        store = CounterStore(db_url)
        try:
            await store.create_schema()

            with pytest.raises(ValidationAppError):
                async with store.transaction("test") as conn:
                    await conn.execute(store.table.insert().values(key="k", count=1, reset_at=1))
                    raise ValidationAppError(code="boom", message="abort")

            async with store.engine.connect() as conn:
                rows = (await conn.execute(text("SELECT COUNT(*) FROM rate_limits"))).scalar_one()
            assert rows == 0
        finally:
            await store.dispose()

    @pytest.mark.asyncio
    async def test_driver_error_is_wrapped(self, db_url: str) -> None:
        store = CounterStore(db_url)
        try:
            await store.create_schema()

            with pytest.raises(StoreAppError) as exc_info:
                async with store.transaction("fixed window") as conn:
                    await conn.execute(text("SELECT * FROM missing_table"))

            assert exc_info.value.code == "store_transaction_failed"
            assert exc_info.value.message.startswith("Failed to apply fixed window:")
            assert isinstance(exc_info.value.__cause__, OperationalError)
        finally:
            await store.dispose()

    @pytest.mark.asyncio
    async def test_schema_failure_is_wrapped(self, tmp_path) -> None:
        store = CounterStore(f"file:{tmp_path / 'missing-dir' / 'store.db'}")
        try:
            with pytest.raises(StoreAppError) as exc_info:
                await store.create_schema()

            assert exc_info.value.code == "store_initialization_failed"
            assert exc_info.value.message.startswith("Database error:")
        finally:
            await store.dispose()

    def test_sync_driver_rejected(self) -> None:
        with pytest.raises(ConfigurationAppError) as exc_info:
            CounterStore("sqlite:///./data.db")

        assert exc_info.value.code == "invalid_url"

    def test_auth_token_with_sqlite_rejected_before_engine(self, db_url: str) -> None:
        with pytest.raises(ConfigurationAppError) as exc_info:
            CounterStore(db_url, auth_token="secret")

        assert exc_info.value.code == "unsupported_auth_token"

    @pytest.mark.asyncio
    async def test_memory_store_uses_single_connection_queue(self) -> None:
        store = CounterStore("sqlite+aiosqlite:///:memory:")
        try:
            assert isinstance(store.engine.pool, AsyncAdaptedQueuePool)
            assert store.engine.pool.size() == 1
        finally:
            await store.dispose()
