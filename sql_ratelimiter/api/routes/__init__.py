from __future__ import annotations

from sql_ratelimiter.api.routes.demo import router as demo_router
from sql_ratelimiter.api.routes.health import router as health_router

__all__ = ["demo_router", "health_router"]
