"""Shared ``redis.asyncio`` client for summary storage.

Socket timeouts are short so that a Redis outage surfaces as an error within
seconds and the summary store can park writes in its overflow queue instead
of stalling a summarization pass.
"""

from __future__ import annotations

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from src.meetbot.config import get_settings

REDIS_SOCKET_TIMEOUT_SECONDS = 5.0
REDIS_HEALTH_CHECK_INTERVAL_SECONDS = 30

_redis_pool: aioredis.Redis | None = None


def get_redis_pool() -> aioredis.Redis:
    """Get or create the shared client (lazily, on first use)."""
    global _redis_pool
    if _redis_pool is None:
        _redis_pool = aioredis.from_url(
            get_settings().REDIS_URL,
            decode_responses=True,
            socket_timeout=REDIS_SOCKET_TIMEOUT_SECONDS,
            socket_connect_timeout=REDIS_SOCKET_TIMEOUT_SECONDS,
            health_check_interval=REDIS_HEALTH_CHECK_INTERVAL_SECONDS,
        )
    return _redis_pool


async def ping_redis() -> str | None:
    """Return None when Redis answers PING, else a short error description."""
    try:
        if await get_redis_pool().ping():
            return None
        return "PING did not return PONG"
    except (RedisError, OSError) as exc:
        return str(exc) or exc.__class__.__name__


async def close_redis() -> None:
    """Close the shared client and its connections."""
    global _redis_pool
    if _redis_pool is not None:
        await _redis_pool.aclose()
        _redis_pool = None
