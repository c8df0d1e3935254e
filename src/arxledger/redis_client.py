"""Redis client for the shared rate-limit counters.

Redis is optional: without ``ARX_REDIS_URL`` the API counts requests per
process and the readiness check leaves Redis out.
"""

import redis.asyncio as redis
from redis.exceptions import RedisError

_client: redis.Redis | None = None


async def init_redis(url: str, max_connections: int = 20) -> None:
    """Open the client used by the Redis rate-limit store."""
    global _client  # noqa: PLW0603
    _client = redis.from_url(  # type: ignore[no-untyped-call]
        url,
        decode_responses=True,
        max_connections=max_connections,
        socket_timeout=2.0,
    )


async def close_redis() -> None:
    global _client  # noqa: PLW0603
    if _client:
        await _client.aclose()
        _client = None


def get_redis() -> redis.Redis:
    if _client is None:
        msg = "Redis not initialized. Set ARX_REDIS_URL or use the memory rate-limit backend."
        raise RuntimeError(msg)
    return _client


def redis_configured() -> bool:
    return _client is not None


async def redis_status() -> str:
    """``ok`` or the error text, for the readiness check."""
    try:
        await get_redis().ping()
    except RedisError as exc:
        return f"error: {exc}"
    return "ok"
