"""Application factory for the example FastAPI app.

Builds an app whose ``/api`` routes are guarded by the minute/day quotas in
``sql_ratelimiter.core.rate_limit``. The limiter is created on startup and
its connections are released on shutdown.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI

from sql_ratelimiter.api.routes import demo_router, health_router
from sql_ratelimiter.core.config import settings
from sql_ratelimiter.core.exception_handlers import setup_exception_handlers
from sql_ratelimiter.core.logging import configure_logging
from sql_ratelimiter.core.middleware import request_id_middleware
from sql_ratelimiter.services.rate_limiter import RateLimitConfig, create_rate_limiter


def create_app(limiter_config: RateLimitConfig | None = None) -> FastAPI:
    """Create and configure the FastAPI application instance.

    Args:
        limiter_config: Store configuration; defaults to the ``LIBSQL_*``
            environment settings.

    Returns:
        Configured FastAPI app with middleware, handlers and routers.
    """
    # Logging first so subsequent init logs are formatted as desired
    configure_logging(settings.log)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        app.state.rate_limiter = await create_rate_limiter(limiter_config)
        try:
            yield
        finally:
            await app.state.rate_limiter.close()

    app = FastAPI(
        title="SQL Rate Limiter",
        description=(
            "Example service applying per-client minute and day quotas backed "
            "by a transactional SQL counter store."
        ),
        version="0.1.0",
        debug=settings.app.debug,
        lifespan=lifespan,
    )

    app.middleware("http")(request_id_middleware)

    setup_exception_handlers(app)

    app.include_router(demo_router)
    app.include_router(health_router)

    return app
