"""Per-caller rate limiting middleware using a Redis sliding window."""

import hashlib
import logging
import time
from typing import Callable

import redis.asyncio as redis
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from calsync.config import Settings

logger = logging.getLogger(__name__)


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Sliding window rate limiter for user-facing routes.

    Provider webhooks and machine entrypoints are exempt: throttling them would
    turn into dropped notifications or provider retry storms.
    """

    def __init__(self, app, settings: Settings) -> None:
        super().__init__(app)
        self._max_requests = settings.rate_limit_per_minute
        self._window_seconds = 60
        self._redis: redis.Redis | None = None
        self._redis_url = settings.redis_url
        prefix = settings.api_prefix
        self._exempt_paths = {
            "/health",
            "/health/ready",
            "/metrics",
            f"{prefix}/calendar/webhook",
            f"{prefix}/scheduler/tick",
            f"{prefix}/sync/run",
        }

    async def _get_redis(self) -> redis.Redis:
        if self._redis is None:
            self._redis = redis.from_url(self._redis_url, decode_responses=True)
        return self._redis

    def _extract_identifier(self, request: Request) -> str | None:
        auth = request.headers.get("authorization", "")
        if auth.startswith("Bearer "):
            # Hash of the token, never the token itself
            return hashlib.sha256(auth[7:].encode()).hexdigest()[:16]
        if request.client:
            return f"ip:{request.client.host}"
        return None

    async def _count(self, identifier: str) -> int:
        r = await self._get_redis()
        key = f"ratelimit:{identifier}"
        now = time.time()

        pipe = r.pipeline()
        pipe.zremrangebyscore(key, 0, now - self._window_seconds)
        pipe.zcard(key)
        pipe.zadd(key, {str(now): now})
        pipe.expire(key, self._window_seconds)
        results = await pipe.execute()
        return results[1]

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        if request.url.path in self._exempt_paths:
            return await call_next(request)

        identifier = self._extract_identifier(request)
        if not identifier:
            return await call_next(request)

        try:
            request_count = await self._count(identifier)
        except Exception as e:
            # If Redis is down, allow the request (fail open)
            logger.warning("Rate limit Redis error: %s", e)
            return await call_next(request)

        if request_count >= self._max_requests:
            return JSONResponse(
                status_code=429,
                content={"detail": "Rate limit exceeded. Try again later."},
                headers={
                    "Retry-After": str(self._window_seconds),
                    "X-RateLimit-Limit": str(self._max_requests),
                    "X-RateLimit-Remaining": "0",
                },
            )

        response = await call_next(request)
        response.headers["X-RateLimit-Limit"] = str(self._max_requests)
        response.headers["X-RateLimit-Remaining"] = str(max(0, self._max_requests - request_count - 1))
        return response
