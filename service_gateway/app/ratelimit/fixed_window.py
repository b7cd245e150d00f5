"""
Fixed-window rate limiter for the gateway.

Counters live in Redis so every gateway instance shares them. The check and
the increment run as one server-side Lua script: a counter already at the
class maximum is never incremented, so concurrent requests cannot both slip
into the last slot.
"""

import math
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Mapping, Optional

import redis.asyncio as redis
import yaml
from fastapi import Request
from redis.exceptions import RedisError

from shared.errors import RateLimited, RateLimitStoreUnavailable
from shared.logging import get_logger
from shared.metrics import MetricsCollector

from ..domain.context import RequestContext

# KEYS[1] = counter key, ARGV[1] = max requests, ARGV[2] = ttl seconds.
# Returns {count, allowed}.
CHECK_AND_INCREMENT = """
local current = tonumber(redis.call('GET', KEYS[1]) or '0')
if current >= tonumber(ARGV[1]) then
  return {current, 0}
end
current = redis.call('INCR', KEYS[1])
if current == 1 then
  redis.call('EXPIRE', KEYS[1], ARGV[2])
end
return {current, 1}
"""


@dataclass(frozen=True)
class RateLimitClass:
    """Independent window and budget for one class of routes."""

    name: str
    window_seconds: int
    max_requests: int
    message: str = "Too many requests, please try again later."

    def __post_init__(self):
        if self.window_seconds <= 0:
            raise ValueError(f"Rate limit class '{self.name}' needs a positive window")
        if self.max_requests <= 0:
            raise ValueError(f"Rate limit class '{self.name}' needs a positive max_requests")


DEFAULT_CLASSES: Dict[str, RateLimitClass] = {
    "auth": RateLimitClass("auth", 15 * 60, 10, "Too many login attempts."),
    "ai": RateLimitClass("ai", 60, 10, "AI limit reached. Wait 1 min."),
    "general": RateLimitClass("general", 60, 100, "Server busy."),
}


def load_rate_limit_classes(path: Optional[str] = None) -> Dict[str, RateLimitClass]:
    """Return the default classes, overridden by a YAML policy file if given.

    The file maps class names to ``window_seconds``, ``max_requests`` and an
    optional ``message``; unspecified fields keep their default values.
    """
    classes = dict(DEFAULT_CLASSES)
    if not path:
        return classes

    with open(path, "r", encoding="utf-8") as handle:
        document = yaml.safe_load(handle) or {}

    overrides = document.get("rate_limits", document)
    if not isinstance(overrides, dict):
        raise ValueError(f"Rate limit policy in {path} must be a mapping")

    for name, spec in overrides.items():
        if not isinstance(spec, dict):
            raise ValueError(f"Rate limit class '{name}' must be a mapping")
        base = classes.get(name)
        classes[name] = RateLimitClass(
            name=name,
            window_seconds=int(spec.get("window_seconds", base.window_seconds if base else 60)),
            max_requests=int(spec.get("max_requests", base.max_requests if base else 100)),
            message=str(spec.get("message", base.message if base else RateLimitClass.message)),
        )
    return classes


@dataclass(frozen=True)
class RateLimitResult:
    """Outcome of one check-and-increment."""

    allowed: bool
    limit: int
    current_count: int
    reset_in_seconds: int

    @property
    def remaining(self) -> int:
        return max(0, self.limit - self.current_count)

    def headers(self) -> Dict[str, str]:
        return {
            "RateLimit-Limit": str(self.limit),
            "RateLimit-Remaining": str(self.remaining),
            "RateLimit-Reset": str(self.reset_in_seconds),
        }


class FixedWindowRateLimiter:
    """Distributed fixed-window rate limiter using Redis."""

    def __init__(
        self,
        redis_url: str,
        classes: Optional[Mapping[str, RateLimitClass]] = None,
        *,
        redis_client: Optional[Any] = None,
        clock: Callable[[], float] = time.time,
        metrics: Optional[MetricsCollector] = None,
    ):
        self.redis_url = redis_url
        self.classes: Dict[str, RateLimitClass] = dict(classes or DEFAULT_CLASSES)
        self.clock = clock
        self.metrics = metrics
        self.logger = get_logger("gateway.rate_limiter")
        self._redis = redis_client

    async def _get_redis(self):
        """Get Redis connection."""
        if self._redis is None:
            self._redis = redis.from_url(self.redis_url)
        return self._redis

    async def close(self) -> None:
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None

    async def check_health(self) -> str:
        """Return 'ok' if the counter store answers a ping, otherwise 'error'."""
        try:
            redis_client = await self._get_redis()
            await redis_client.ping()
            return "ok"
        except (RedisError, OSError) as exc:
            self.logger.error("Rate limit store health check failed", error=str(exc))
            return "error"

    def get_class(self, route_class: str) -> RateLimitClass:
        try:
            return self.classes[route_class]
        except KeyError:
            raise ValueError(f"Unknown rate limit class '{route_class}'") from None

    def _window(self, limit_class: RateLimitClass) -> tuple:
        """Return (window_start, seconds_until_window_end) for the current time."""
        now = self.clock()
        window_start = int(now // limit_class.window_seconds) * limit_class.window_seconds
        reset_in = max(1, math.ceil(window_start + limit_class.window_seconds - now))
        return window_start, reset_in

    def _make_key(self, route_class: str, client_id: str, window_start: int) -> str:
        """Generate rate limit key."""
        return f"rate_limit:{route_class}:{client_id}:{window_start}"

    async def hit(self, route_class: str, client_id: str) -> RateLimitResult:
        """Atomically count one request for ``client_id`` in ``route_class``."""
        limit_class = self.get_class(route_class)
        window_start, reset_in = self._window(limit_class)
        key = self._make_key(route_class, client_id, window_start)

        try:
            redis_client = await self._get_redis()
            count, allowed = await redis_client.eval(
                CHECK_AND_INCREMENT, 1, key, limit_class.max_requests, reset_in
            )
        except (RedisError, OSError) as exc:
            self.logger.error(
                "Rate limit store unavailable",
                route_class=route_class,
                error=str(exc),
            )
            raise RateLimitStoreUnavailable(details={"error": str(exc)}) from exc

        return RateLimitResult(
            allowed=bool(int(allowed)),
            limit=limit_class.max_requests,
            current_count=int(count),
            reset_in_seconds=reset_in,
        )

    def stage(self, route_class: str, client_id_resolver: Callable[[Request], str]):
        """Build a pipeline stage enforcing ``route_class``."""
        limit_class = self.get_class(route_class)

        async def enforce(request: Request, ctx: RequestContext) -> RequestContext:
            client_id = client_id_resolver(request)
            result = await self.hit(route_class, client_id)
            ctx.rate_limit_key = f"{route_class}:{client_id}"

            if not result.allowed:
                self.logger.warning(
                    "Rate limit exceeded",
                    route_class=route_class,
                    client_id=client_id,
                    limit=result.limit,
                )
                if self.metrics:
                    self.metrics.increment_counter("rate_limit_hits_total", route_class=route_class)
                raise RateLimited(limit_class.message, retry_after=result.reset_in_seconds)

            ctx.rate_limit_headers = result.headers()
            return ctx

        enforce.__name__ = f"rate_limit_{route_class}"
        return enforce
