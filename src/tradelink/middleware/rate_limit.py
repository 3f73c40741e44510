"""
Rate limiting middleware for FastAPI using sliding window algorithm.

Supports both in-memory and Redis-backed rate limiting with per-user
and per-IP tracking.
"""

import os
import time
from collections import defaultdict

import redis.asyncio as aioredis
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse

from tradelink.infrastructure.logging_config import get_logger
from tradelink.models.config import get_settings

logger = get_logger(__name__)


class RateLimitStore:
    """Base class for rate limit storage backends."""

    async def add_request(self, key: str, timestamp: float, window: int) -> int:
        """Add a request timestamp and return current count in window."""
        raise NotImplementedError

    async def get_count(self, key: str, window: int) -> int:
        """Get request count in the current window."""
        raise NotImplementedError


class InMemoryStore(RateLimitStore):
    """In-memory storage for rate limiting using sliding window."""

    def __init__(self):
        self.store: dict[str, list[float]] = defaultdict(list)

    async def add_request(self, key: str, timestamp: float, window: int) -> int:
        cutoff = timestamp - window
        self.store[key] = [ts for ts in self.store[key] if ts > cutoff]
        self.store[key].append(timestamp)
        return len(self.store[key])

    async def get_count(self, key: str, window: int) -> int:
        cutoff = time.time() - window
        self.store[key] = [ts for ts in self.store[key] if ts > cutoff]
        return len(self.store[key])


class RedisStore(RateLimitStore):
    """Redis-backed storage for distributed rate limiting.

    Falls back to an in-memory window when Redis is unreachable.
    """

    def __init__(self, redis_url: str):
        self.fallback = InMemoryStore()
        self.redis = aioredis.from_url(redis_url, decode_responses=False)

    async def add_request(self, key: str, timestamp: float, window: int) -> int:
        """Add a request timestamp using Redis sorted set."""
        try:
            pipe = self.redis.pipeline()
            pipe.zremrangebyscore(key, 0, timestamp - window)
            pipe.zadd(key, {str(timestamp): timestamp})
            pipe.zcard(key)
            pipe.expire(key, int(window) + 60)
            results = await pipe.execute()
            return results[2]
        except aioredis.RedisError as e:
            logger.error("rate_limit_redis_error", error=str(e))
            return await self.fallback.add_request(key, timestamp, window)

    async def get_count(self, key: str, window: int) -> int:
        try:
            pipe = self.redis.pipeline()
            pipe.zremrangebyscore(key, 0, time.time() - window)
            pipe.zcard(key)
            results = await pipe.execute()
            return results[1]
        except aioredis.RedisError as e:
            logger.error("rate_limit_redis_error", error=str(e))
            return await self.fallback.get_count(key, window)


class RateLimitMiddleware(BaseHTTPMiddleware):
    """
    Rate limiting middleware using sliding window algorithm.

    Authenticated callers are tracked by user id; anonymous ones by client IP.
    """

    def __init__(
        self,
        app,
        enabled: bool | None = None,
        per_minute: int | None = None,
        per_hour: int | None = None,
        redis_url: str | None = None,
        store: RateLimitStore | None = None,
    ):
        super().__init__(app)

        self.enabled = (
            enabled
            if enabled is not None
            else (os.getenv("TRADELINK_RATE_LIMIT_ENABLED", "true").lower() == "true")
        )
        self.per_minute = per_minute or int(os.getenv("TRADELINK_RATE_LIMIT_PER_MINUTE", "120"))
        self.per_hour = per_hour or int(os.getenv("TRADELINK_RATE_LIMIT_PER_HOUR", "3000"))

        redis_url = redis_url or get_settings().redis_url
        if store is not None:
            self.store = store
        elif redis_url:
            self.store = RedisStore(redis_url)
        else:
            self.store = InMemoryStore()

        logger.info(
            "rate_limit_configured",
            enabled=self.enabled,
            per_minute=self.per_minute,
            per_hour=self.per_hour,
            backend=type(self.store).__name__,
        )

    def _get_client_identifier(self, request: Request) -> str:
        user_id = getattr(request.state, "user_id", None)
        if user_id is not None and getattr(request.state, "auth_enabled", False):
            return f"user:{user_id}"

        forwarded = request.headers.get("X-Forwarded-For")
        if forwarded:
            ip = forwarded.split(",")[0].strip()
        else:
            ip = request.client.host if request.client else "unknown"
        return f"ip:{ip}"

    async def _check_rate_limit(
        self, identifier: str, timestamp: float
    ) -> tuple[bool, int, int, int]:
        """
        Check if request should be rate limited.

        Returns:
            Tuple of (is_allowed, limit, remaining, reset_time)
        """
        minute_count = await self.store.add_request(f"{identifier}:minute", timestamp, 60)
        if minute_count > self.per_minute:
            return False, self.per_minute, 0, int(timestamp + 60)

        hour_count = await self.store.add_request(f"{identifier}:hour", timestamp, 3600)
        if hour_count > self.per_hour:
            return False, self.per_hour, 0, int(timestamp + 3600)

        remaining = min(self.per_minute - minute_count, self.per_hour - hour_count)
        return True, self.per_minute, max(0, remaining), int(timestamp + 60)

    async def dispatch(self, request: Request, call_next):
        if not self.enabled:
            return await call_next(request)

        identifier = self._get_client_identifier(request)
        timestamp = time.time()

        is_allowed, limit, remaining, reset_time = await self._check_rate_limit(
            identifier, timestamp
        )

        if not is_allowed:
            retry_after = reset_time - int(timestamp)
            logger.warning(
                "rate_limit_exceeded", identifier=identifier, limit=limit, retry_after=retry_after
            )
            return JSONResponse(
                status_code=429,
                content={
                    "error": "RATE_LIMIT_EXCEEDED",
                    "message": "Too many requests. Please try again later.",
                    "retry_after": retry_after,
                },
                headers={
                    "X-RateLimit-Limit": str(limit),
                    "X-RateLimit-Remaining": "0",
                    "X-RateLimit-Reset": str(reset_time),
                    "Retry-After": str(retry_after),
                },
            )

        response = await call_next(request)
        response.headers["X-RateLimit-Limit"] = str(limit)
        response.headers["X-RateLimit-Remaining"] = str(remaining)
        response.headers["X-RateLimit-Reset"] = str(reset_time)
        return response
