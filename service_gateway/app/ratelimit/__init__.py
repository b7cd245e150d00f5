"""
Rate limiting package for the Gateway.

Holds the Redis-backed fixed-window limiter that enforces per-client,
per-route-class request budgets.
"""

from .fixed_window import (
    DEFAULT_CLASSES,
    FixedWindowRateLimiter,
    RateLimitClass,
    RateLimitResult,
    load_rate_limit_classes,
)

__all__ = [
    "DEFAULT_CLASSES",
    "FixedWindowRateLimiter",
    "RateLimitClass",
    "RateLimitResult",
    "load_rate_limit_classes",
]
