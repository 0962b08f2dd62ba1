"""Rate limiter facade.

``RateLimiter.limit`` validates its arguments, derives the effective key,
builds the window policy for the requested algorithm and runs it inside a
single store transaction.

Example:
    >>> limiter = await create_rate_limiter(RateLimitConfig(url="file:./data.db"))
    >>> result = await limiter.limit("user-42", limit=10, window=1, time_unit="minutes")
    >>> result.success, result.remaining
    (True, 9)
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable

from sql_ratelimiter.adapters.rate_limit.base import (
    Algorithm,
    RateLimitResult,
    TimeUnit,
    WindowPolicy,
    convert_to_seconds,
)
from sql_ratelimiter.adapters.rate_limit.policies import (
    ApproximateSlidingWindowPolicy,
    FixedWindowPolicy,
    TokenBucketPolicy,
)
from sql_ratelimiter.adapters.rate_limit.sql_store import DEFAULT_TABLE_NAME, CounterStore
from sql_ratelimiter.core.config import StoreSettings, settings
from sql_ratelimiter.core.errors import (
    ConfigurationAppError,
    InsufficientTokensError,
    ValidationAppError,
)
from sql_ratelimiter.core.logging import hash_key

logger = logging.getLogger(__name__)

KEY_SEPARATOR = ":"

_OPERATION_LABELS = {
    Algorithm.FIXED: "fixed window",
    Algorithm.SLIDING: "sliding window",
    Algorithm.TOKEN_BUCKET: "token bucket",
}


@dataclass(frozen=True)
class RateLimitConfig:
    """Connection settings for one ``RateLimiter``.

    Attributes:
        url: SQLAlchemy URL or ``file:`` path of the counter store.
        auth_token: Optional credential, sent as the PostgreSQL password.
        table_name: Counter table name.
    """

    url: str | None = None
    auth_token: str | None = None
    table_name: str = DEFAULT_TABLE_NAME

    @classmethod
    def from_settings(cls, store_settings: StoreSettings) -> "RateLimitConfig":
        return cls(
            url=store_settings.url,
            auth_token=store_settings.auth_token,
            table_name=store_settings.table_name,
        )


def effective_key(key: str, prefix: str | None = None) -> str:
    """Namespace ``key`` with ``prefix`` when one is given."""
    return f"{prefix}{KEY_SEPARATOR}{key}" if prefix else key


def resolve_algorithm(algorithm: Algorithm | str | None) -> Algorithm:
    """Map the caller's algorithm name onto ``Algorithm``.

    Unknown names fall back to the fixed window.
    """
    try:
        return Algorithm(algorithm)
    except ValueError:
        return Algorithm.FIXED


def build_policy(
    algorithm: Algorithm,
    *,
    limit: Any,
    window_seconds: float,
    capacity: Any = None,
    refill_rate: Any = None,
    tokens_to_consume: Any = None,
) -> WindowPolicy:
    """Construct (and thereby validate) the policy for one call.

    Raises:
        ValidationAppError: For missing or invalid parameters.
    """
    if algorithm is Algorithm.TOKEN_BUCKET:
        if capacity is None or refill_rate is None or tokens_to_consume is None:
            raise ValidationAppError(
                code="missing_parameter",
                message=(
                    "Token bucket algorithm requires capacity, refill_rate, "
                    "and tokens_to_consume"
                ),
                details={"algorithm": algorithm.value},
            )
        return TokenBucketPolicy(
            capacity=capacity,
            refill_rate=refill_rate,
            tokens_to_consume=tokens_to_consume,
        )
    if algorithm is Algorithm.SLIDING:
        return ApproximateSlidingWindowPolicy(limit=limit, window_seconds=window_seconds)
    return FixedWindowPolicy(limit=limit, window_seconds=window_seconds)


class RateLimiter:
    """Keyed rate limiter over a transactional SQL store.

    Several instances (and processes) may share one store; correctness
    rests on the store's transactions, not on anything held in memory here.
    """

    def __init__(
        self,
        config: RateLimitConfig,
        *,
        clock: Callable[[], float] = time.time,
        engine_options: dict[str, Any] | None = None,
    ) -> None:
        """Validate configuration and create the store engine.

        Args:
            config: Store location, credential and table name.
            clock: Time source returning UNIX time in seconds.
            engine_options: Extra keyword arguments for the SQLAlchemy engine.

        Raises:
            ConfigurationAppError: If the URL is missing or the table name
                is invalid.
        """
        if not config.url:
            raise ConfigurationAppError(
                code="missing_url",
                message=(
                    "Database URL is required. Set LIBSQL_URL environment "
                    "variable or pass it in config."
                ),
            )

        self._store = CounterStore(
            config.url,
            auth_token=config.auth_token,
            table_name=config.table_name or DEFAULT_TABLE_NAME,
            engine_options=engine_options,
        )
        self._clock = clock
        self._initialized = False

    @property
    def store(self) -> CounterStore:
        return self._store

    async def initialize(self) -> None:
        """Create the counter table if needed; no-op once it succeeded."""
        if self._initialized:
            return
        await self._store.create_schema()
        self._initialized = True
        logger.info("rate_limiter.initialized", extra={"table_name": self._store.table_name})

    def is_initialized(self) -> bool:
        return self._initialized

    async def close(self) -> None:
        """Release the store connections."""
        await self._store.dispose()

    async def __aenter__(self) -> "RateLimiter":
        await self.initialize()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    async def limit(
        self,
        key: str,
        limit: float,
        window: float,
        *,
        time_unit: TimeUnit | str = TimeUnit.SECONDS,
        algorithm: Algorithm | str = Algorithm.FIXED,
        capacity: float | None = None,
        refill_rate: float | None = None,
        tokens_to_consume: float | None = None,
        prefix: str | None = None,
    ) -> RateLimitResult:
        """Decide whether the next action for ``key`` is admitted.

        Args:
            key: Identifier being limited (user id, IP, API key).
            limit: Actions allowed per window (fixed and sliding).
            window: Window length in ``time_unit``.
            time_unit: milliseconds, seconds (default), minutes or hours.
            algorithm: ``"fixed"`` (default), ``"sliding"`` or ``"tokenBucket"``.
                Unknown values use the fixed window.
            capacity: Token bucket size.
            refill_rate: Tokens added per second.
            tokens_to_consume: Tokens taken by this call.
            prefix: Optional namespace joined to ``key`` with ``":"``.

        Returns:
            RateLimitResult. Window algorithms report rejection with
            ``success=False``.

        Raises:
            ValidationAppError: Invalid arguments; raised before the store
                is touched.
            InsufficientTokensError: Token bucket cannot cover the request.
            StoreAppError: Schema creation or the transaction failed.
        """
        window_seconds = convert_to_seconds(window, time_unit)
        resolved = resolve_algorithm(algorithm)
        policy = build_policy(
            resolved,
            limit=limit,
            window_seconds=window_seconds,
            capacity=capacity,
            refill_rate=refill_rate,
            tokens_to_consume=tokens_to_consume,
        )
        store_key = effective_key(key, prefix)

        if not self._initialized:
            await self.initialize()

        log_extra = {"algorithm": resolved.value, "key_hash": hash_key(store_key)}
        try:
            async with self._store.transaction(_OPERATION_LABELS[resolved]) as conn:
                result = await policy.apply(conn, self._store.table, store_key, self._now_ms())
        except InsufficientTokensError as exc:
            logger.info(
                "rate_limit.insufficient_tokens",
                extra={**log_extra, **(exc.details or {})},
            )
            raise

        if result.success:
            logger.debug(
                "rate_limit.allowed",
                extra={**log_extra, "limit": result.limit, "remaining": result.remaining},
            )
        else:
            logger.info(
                "rate_limit.exceeded",
                extra={**log_extra, "limit": result.limit, "reset_ms": result.reset},
            )
        return result


async def create_rate_limiter(
    config: RateLimitConfig | None = None,
    **kwargs: Any,
) -> RateLimiter:
    """Build a ``RateLimiter`` and create its table before returning it.

    Args:
        config: Explicit configuration; when omitted it is read from the
            ``LIBSQL_*`` environment settings.
        **kwargs: Forwarded to ``RateLimiter`` (``clock``, ``engine_options``).
    """
    limiter = RateLimiter(config or RateLimitConfig.from_settings(settings.store), **kwargs)
    try:
        await limiter.initialize()
    except Exception:
        await limiter.close()
        raise
    return limiter
