"""Rate limiting adapters.

Window policies (fixed, approximate sliding, token bucket) and the
SQLAlchemy counter store they run against.
"""

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
from sql_ratelimiter.adapters.rate_limit.sql_store import CounterStore

__all__ = [
    "Algorithm",
    "ApproximateSlidingWindowPolicy",
    "CounterStore",
    "FixedWindowPolicy",
    "RateLimitResult",
    "TimeUnit",
    "TokenBucketPolicy",
    "WindowPolicy",
    "convert_to_seconds",
]
