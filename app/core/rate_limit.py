"""
Fixed-window rate limiting for the wallet web service.

Counters live in process memory by default. With RATE_LIMIT_REDIS_URL set they
are shared across instances through Redis (INCR + EXPIRE); if Redis stops
answering the limiter keeps working on the in-memory store.
"""

import asyncio
import logging
import math
import threading
import time
from dataclasses import dataclass
from typing import Optional

import redis
from fastapi import Request
from starlette.concurrency import run_in_threadpool
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    remaining: int
    retry_after: int


class MemoryRateLimitStore:
    def __init__(self, clock=time.monotonic):
        self._clock = clock
        self._lock = threading.Lock()
        # key -> (count, window_reset_at)
        self._counters: dict[str, tuple[int, float]] = {}

    def hit(self, key: str, window_seconds: int) -> tuple[int, float]:
        """Count a request; returns (count in window, seconds until reset)."""
        now = self._clock()
        with self._lock:
            count, reset_at = self._counters.get(key, (0, 0.0))
            if now >= reset_at:
                count, reset_at = 0, now + window_seconds
            count += 1
            self._counters[key] = (count, reset_at)
        return count, reset_at - now

    def sweep(self) -> int:
        """Drop counters whose window has ended."""
        now = self._clock()
        with self._lock:
            expired = [key for key, (_, reset_at) in self._counters.items() if now >= reset_at]
            for key in expired:
                del self._counters[key]
        return len(expired)

    def __len__(self) -> int:
        return len(self._counters)


class RedisRateLimitStore:
    KEY_PREFIX = "ratelimit:wallet:"

    def __init__(self, client: redis.Redis):
        self._redis = client

    def hit(self, key: str, window_seconds: int) -> tuple[int, float]:
        cache_key = f"{self.KEY_PREFIX}{key}"
        pipe = self._redis.pipeline()
        pipe.incr(cache_key)
        pipe.ttl(cache_key)
        count, ttl = pipe.execute()
        if count == 1 or ttl < 0:
            self._redis.expire(cache_key, window_seconds)
            ttl = window_seconds
        return int(count), float(ttl)

    def sweep(self) -> int:
        # Keys expire on their own
        return 0


class FixedWindowRateLimiter:
    def __init__(
        self,
        max_requests: int,
        window_seconds: int,
        store: MemoryRateLimitStore | RedisRateLimitStore | None = None,
    ):
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.fallback = MemoryRateLimitStore()
        self.store = store or self.fallback

    def check(self, key: str) -> RateLimitDecision:
        try:
            count, reset_in = self.store.hit(key, self.window_seconds)
        except redis.RedisError as e:
            logger.warning(f"Redis rate limit store unavailable, using in-memory counters: {e}")
            count, reset_in = self.fallback.hit(key, self.window_seconds)

        allowed = count <= self.max_requests
        return RateLimitDecision(
            allowed=allowed,
            remaining=max(self.max_requests - count, 0),
            retry_after=0 if allowed else max(math.ceil(reset_in), 1),
        )

    def sweep(self) -> int:
        removed = self.fallback.sweep()
        if self.store is not self.fallback:
            removed += self.store.sweep()
        return removed


def client_address(request: Request) -> str:
    """First X-Forwarded-For hop, else the socket peer."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        first_hop = forwarded.split(",")[0].strip()
        if first_hop:
            return first_hop
    return request.client.host if request.client else "unknown"


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Throttle the wallet protocol endpoints per caller address."""

    def __init__(self, app, limiter: FixedWindowRateLimiter, path_prefix: str = "/wallet/v1/"):
        super().__init__(app)
        self.limiter = limiter
        self.path_prefix = path_prefix

    async def dispatch(self, request: Request, call_next):
        if not request.url.path.startswith(self.path_prefix):
            return await call_next(request)

        address = client_address(request)
        decision = await run_in_threadpool(self.limiter.check, address)
        if not decision.allowed:
            logger.warning(f"Rate limit exceeded for {address} on {request.url.path}")
            return JSONResponse(
                status_code=429,
                content={
                    "error": "Too Many Requests",
                    "message": "Rate limit exceeded, try again later",
                    "retryAfter": decision.retry_after,
                },
                headers={"Retry-After": str(decision.retry_after)},
            )
        return await call_next(request)


async def sweep_periodically(limiter: FixedWindowRateLimiter, interval_seconds: float) -> None:
    """Background task: evict stale counters until cancelled."""
    while True:
        await asyncio.sleep(interval_seconds)
        removed = limiter.sweep()
        if removed:
            logger.debug(f"Swept {removed} stale rate limit counters")


def create_rate_limiter() -> FixedWindowRateLimiter:
    """Factory function to create the limiter from settings."""
    from app.core.config import settings

    store: Optional[RedisRateLimitStore] = None
    if settings.rate_limit_redis_url:
        try:
            client = redis.Redis.from_url(settings.rate_limit_redis_url, socket_timeout=1)
            client.ping()
            store = RedisRateLimitStore(client)
            logger.info("Redis rate limit store connected")
        except redis.RedisError as e:
            logger.warning(f"Redis connection failed: {e}. Using in-memory rate limiting.")

    return FixedWindowRateLimiter(
        max_requests=settings.rate_limit_max_requests,
        window_seconds=settings.rate_limit_window_seconds,
        store=store,
    )
