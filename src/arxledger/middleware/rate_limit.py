"""Rate limiting middleware with pluggable counter stores.

Requests are counted per caller (verified JWT subject, else client IP) and per
route class. The in-memory store is best effort: counters live in one process
and reset on restart. The Redis store shares fixed-window counters between
every process.
"""

import math
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Protocol

import structlog
from redis.exceptions import RedisError
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from arxledger.auth.jwt import peek_subject
from arxledger.config import Settings

logger = structlog.get_logger()

# Paths exempt from rate limiting
_EXEMPT_PATHS = frozenset({"/health", "/ready", "/version"})

STANDARD = "standard"
EXPENSIVE = "expensive"
AUTH = "auth"
BATCH = "batch"


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    limit: int
    remaining: int
    reset_at: float  # unix seconds

    def retry_after(self, now: float) -> int:
        return max(1, math.ceil(self.reset_at - now))


class RateLimitStore(Protocol):
    async def hit(self, key: str, limit: int, window_seconds: int, now: float) -> RateLimitResult: ...


class InMemoryRateLimitStore:
    """Per-process counters. Each key's window opens on its first request."""

    def __init__(self, cleanup_interval: float = 60.0) -> None:
        self._entries: dict[str, tuple[int, float]] = {}
        self._cleanup_interval = cleanup_interval
        self._last_cleanup = 0.0

    def _cleanup(self, window_seconds: int, now: float) -> None:
        if now - self._last_cleanup < self._cleanup_interval:
            return
        self._last_cleanup = now
        cutoff = now - window_seconds * 2
        for key in [k for k, (_, start) in self._entries.items() if start < cutoff]:
            del self._entries[key]

    async def hit(self, key: str, limit: int, window_seconds: int, now: float) -> RateLimitResult:
        self._cleanup(window_seconds, now)
        count, start = self._entries.get(key, (0, now))
        if now - start >= window_seconds:
            count, start = 0, now
        reset_at = start + window_seconds
        if count >= limit:
            self._entries[key] = (count, start)
            return RateLimitResult(False, limit, 0, reset_at)
        count += 1
        self._entries[key] = (count, start)
        return RateLimitResult(True, limit, max(0, limit - count), reset_at)


class RedisRateLimitStore:
    """Fixed-window counters in Redis, shared by all processes.

    The client is resolved per call so the store can be built before the pool.
    """

    def __init__(self, get_client: Callable[[], Any], prefix: str = "ratelimit") -> None:
        self._get_client = get_client
        self._prefix = prefix

    async def hit(self, key: str, limit: int, window_seconds: int, now: float) -> RateLimitResult:
        window = int(now) // window_seconds
        rate_key = f"{self._prefix}:{key}:{window}"
        pipe = self._get_client().pipeline()
        pipe.incr(rate_key)
        pipe.expire(rate_key, window_seconds + 1)
        results: list[Any] = await pipe.execute()

        current_count: int = results[0]
        reset_at = float((window + 1) * window_seconds)
        if current_count > limit:
            return RateLimitResult(False, limit, 0, reset_at)
        return RateLimitResult(True, limit, max(0, limit - current_count), reset_at)


def classify_route(method: str, path: str) -> str:
    """Map a request to its rate limit class."""
    if path.startswith("/api/v1/admin/arena/") and path.endswith("/settle"):
        return EXPENSIVE
    if path.startswith("/api/v1/admin/"):
        return BATCH
    if path.startswith("/api/v1/auth/"):
        return AUTH
    if method == "POST" and path.startswith("/api/v1/arena/") and path.endswith("/stake"):
        return EXPENSIVE
    return STANDARD


def limits_from_settings(settings: Settings) -> dict[str, int]:
    return {
        STANDARD: settings.rate_limit_standard,
        EXPENSIVE: settings.rate_limit_expensive,
        AUTH: settings.rate_limit_auth,
        BATCH: settings.rate_limit_batch,
    }


def caller_identity(request: Request) -> str:
    """Verified JWT subject if present, else the client IP."""
    auth = request.headers.get("Authorization", "")
    if auth.lower().startswith("bearer "):
        subject = peek_subject(auth[7:].strip())
        if subject:
            return f"user:{subject}"
    client_ip = request.client.host if request.client else "unknown"
    return f"ip:{client_ip}"


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Rate limit requests per caller and route class."""

    def __init__(
        self,
        app: Any,  # noqa: ANN401
        store: RateLimitStore,
        limits: dict[str, int],
        window_seconds: int = 60,
    ) -> None:
        super().__init__(app)
        self.store = store
        self.limits = limits
        self.window_seconds = window_seconds

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        """Check rate limit, return 429 if exceeded."""
        if request.url.path in _EXEMPT_PATHS or request.method == "OPTIONS":
            return await call_next(request)

        route_class = classify_route(request.method, request.url.path)
        limit = self.limits.get(route_class, self.limits[STANDARD])
        now = time.time()
        try:
            result = await self.store.hit(f"{caller_identity(request)}:{route_class}", limit, self.window_seconds, now)
        except (RuntimeError, RedisError) as exc:
            # Counter store unavailable: let the request through without rate limiting
            logger.warning("rate_limit_store_unavailable", path=request.url.path, error=str(exc))
            return await call_next(request)

        headers = {
            "X-RateLimit-Limit": str(result.limit),
            "X-RateLimit-Remaining": str(result.remaining),
            "X-RateLimit-Reset": str(math.ceil(result.reset_at)),
        }
        if not result.allowed:
            headers["Retry-After"] = str(result.retry_after(now))
            return JSONResponse(
                status_code=429,
                content={"success": False, "detail": "Rate limit exceeded. Try again later."},
                headers=headers,
            )

        response = await call_next(request)
        response.headers.update(headers)
        return response
