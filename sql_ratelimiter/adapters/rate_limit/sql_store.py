"""SQLAlchemy-backed counter store.

Owns the async engine, the counter table definition, schema creation and
the transaction scope the window policies run in.

Atomicity comes entirely from the database:

- SQLite: every transaction starts with ``BEGIN IMMEDIATE``, so concurrent
  writers to the same database file queue on the write lock instead of
  interleaving their read-modify-write sequences.
- PostgreSQL: policies lock the row they read (``SELECT ... FOR UPDATE``)
  or change it in a single ``UPDATE``/``INSERT ... ON CONFLICT`` statement.
"""

from __future__ import annotations

import logging
import re
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

from sqlalchemy import BigInteger, Column, Integer, MetaData, Table, Text, event
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.engine import URL, make_url
from sqlalchemy.exc import ArgumentError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine, create_async_engine
from sqlalchemy.pool import AsyncAdaptedQueuePool
from sqlalchemy.schema import CreateTable

from sql_ratelimiter.core.errors import ConfigurationAppError, StoreAppError

logger = logging.getLogger(__name__)

TABLE_NAME_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

DEFAULT_TABLE_NAME = "rate_limits"

SUPPORTED_DIALECTS = {"sqlite", "postgresql"}


def validate_table_name(table_name: str) -> str:
    """Reject table names that could smuggle SQL into identifier position.

    Raises:
        ConfigurationAppError: If the name does not match ``[A-Za-z_][A-Za-z0-9_]*``.
    """
    if not isinstance(table_name, str) or not TABLE_NAME_PATTERN.match(table_name):
        raise ConfigurationAppError(
            code="invalid_table_name",
            message=(
                "Invalid table name: must start with letter/underscore and "
                "contain only alphanumeric characters"
            ),
            details={"table_name": repr(table_name)},
        )
    return table_name


def normalize_url(url: str, auth_token: str | None = None) -> URL:
    """Turn a configured store location into a SQLAlchemy URL.

    ``file:`` locations (``file:./data.db``) map onto the aiosqlite driver;
    anything else must already be a SQLAlchemy URL. An auth token is only
    meaningful for PostgreSQL, where it is sent as the password (e.g. an
    IAM database token).

    Raises:
        ConfigurationAppError: If the URL cannot be parsed, or an auth token
            is given for a URL that cannot carry it.
    """
    if url.startswith("file:"):
        url = "sqlite+aiosqlite:///" + url[len("file:"):]

    try:
        parsed = make_url(url)
    except ArgumentError as exc:
        raise ConfigurationAppError(
            code="invalid_url",
            message=f"Could not parse database URL: {exc}",
        ) from exc

    if auth_token:
        parsed = _apply_auth_token(parsed, auth_token)
    return parsed


def _apply_auth_token(url: URL, auth_token: str) -> URL:
    backend = url.get_backend_name()
    if backend != "postgresql":
        raise ConfigurationAppError(
            code="unsupported_auth_token",
            message=f"An auth token cannot be used with the {backend} dialect",
            details={"hint": "Auth tokens are only supported for postgresql URLs"},
        )
    if url.password:
        raise ConfigurationAppError(
            code="unsupported_auth_token",
            message="Database URL already contains a password; drop it or the auth token",
        )
    return url.set(password=auth_token)


def is_memory_database(url: URL) -> bool:
    """True for SQLite URLs that open a private in-memory database."""
    if url.get_backend_name() != "sqlite":
        return False
    return url.database in (None, "", ":memory:") or url.query.get("mode") == "memory"


def build_counter_table(table_name: str, metadata: MetaData | None = None) -> Table:
    """Describe the counter table: one row per effective key."""
    return Table(
        validate_table_name(table_name),
        metadata or MetaData(),
        Column("key", Text, primary_key=True),
        Column("count", Integer),
        Column("reset_at", BigInteger),
        Column("tokens", Integer),
        Column("last_refill", BigInteger),
    )


def dialect_insert(conn: AsyncConnection, table: Table) -> Any:
    """Return an INSERT construct that supports ``on_conflict_do_update``."""
    if conn.dialect.name == "postgresql":
        return postgresql.insert(table)
    return sqlite.insert(table)


def _install_sqlite_write_locking(engine: AsyncEngine) -> None:
    # pysqlite/aiosqlite issue a deferred BEGIN lazily; take over BEGIN so
    # the write lock is acquired before the first read.
    @event.listens_for(engine.sync_engine, "connect")
    def _disable_driver_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


class CounterStore:
    """Counter table plus the engine used to reach it."""

    def __init__(
        self,
        url: str,
        *,
        auth_token: str | None = None,
        table_name: str = DEFAULT_TABLE_NAME,
        engine_options: dict[str, Any] | None = None,
    ) -> None:
        """Create the engine (connections are opened lazily).

        Args:
            url: SQLAlchemy URL or ``file:`` path of the store.
            auth_token: Optional credential, sent as the PostgreSQL password.
            table_name: Counter table name.
            engine_options: Extra keyword arguments for ``create_async_engine``.

        Raises:
            ConfigurationAppError: For an invalid table name, an unparsable
                URL, an auth token the dialect cannot use, or a dialect without
                upsert support.
        """
        self.table = build_counter_table(table_name)
        sa_url = normalize_url(url, auth_token)

        options = dict(engine_options or {})
        if is_memory_database(sa_url) and "poolclass" not in options:
            # The default StaticPool shares one connection between concurrent
            # transactions; a one-slot queue makes them wait their turn.
            options.update(poolclass=AsyncAdaptedQueuePool, pool_size=1, max_overflow=0)

        try:
            self._engine = create_async_engine(sa_url, **options)
        except (SQLAlchemyError, ImportError) as exc:
            raise ConfigurationAppError(
                code="invalid_url",
                message=f"Could not create database engine: {exc}",
            ) from exc

        dialect = self._engine.dialect.name
        if dialect not in SUPPORTED_DIALECTS:
            raise ConfigurationAppError(
                code="unsupported_dialect",
                message=f"Unsupported database dialect: {dialect}",
                details={"hint": ", ".join(sorted(SUPPORTED_DIALECTS))},
            )
        if dialect == "sqlite":
            _install_sqlite_write_locking(self._engine)

    @property
    def engine(self) -> AsyncEngine:
        return self._engine

    @property
    def table_name(self) -> str:
        return self.table.name

    async def create_schema(self) -> None:
        """Create the counter table if it does not exist.

        Safe to call repeatedly and from several processes; existing rows
        are left alone.

        Raises:
            StoreAppError: If the DDL fails.
        """
        try:
            async with self._engine.begin() as conn:
                await conn.execute(CreateTable(self.table, if_not_exists=True))
        except SQLAlchemyError as exc:
            logger.error(
                "store.schema_failed",
                extra={"table_name": self.table_name, "error_type": type(exc).__name__},
            )
            raise StoreAppError(
                code="store_initialization_failed",
                message=f"Database error: {exc}",
                details={"table_name": self.table_name},
            ) from exc

    @asynccontextmanager
    async def transaction(self, operation: str) -> AsyncIterator[AsyncConnection]:
        """Open a write transaction for one read-modify-write sequence.

        Commits when the block exits normally. On any exception the
        transaction is rolled back and the connection returned to the pool
        before the exception propagates; driver errors are wrapped in
        ``StoreAppError``, application errors pass through unchanged.

        Args:
            operation: Label used in error messages and logs.
        """
        try:
            async with self._engine.connect() as conn:
                async with conn.begin():
                    yield conn
        except SQLAlchemyError as exc:
            logger.error(
                "store.transaction_failed",
                extra={
                    "operation": operation,
                    "table_name": self.table_name,
                    "error_type": type(exc).__name__,
                },
            )
            raise StoreAppError(
                code="store_transaction_failed",
                message=f"Failed to apply {operation}: {exc}",
                details={"table_name": self.table_name},
            ) from exc

    async def dispose(self) -> None:
        """Close every pooled connection."""
        await self._engine.dispose()
