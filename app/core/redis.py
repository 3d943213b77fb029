"""
Redis connection backing the shared state store when STORE_BACKEND=redis.

Usage:
    from app.core.redis import get_redis, close_redis, ping_redis

Store layout: HSET {prefix}:sync / {prefix}:session → {key: json value},
change events published on {prefix}:changes.
"""

import logging

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from app.core.config import REDIS_TIMEOUT_SECONDS, REDIS_URL

logger = logging.getLogger(__name__)

_redis: aioredis.Redis | None = None


async def get_redis() -> aioredis.Redis:
    """Return the shared Redis connection, creating it on first call."""
    global _redis
    if _redis is None:
        _redis = aioredis.from_url(
            REDIS_URL,
            decode_responses=True,
            socket_connect_timeout=REDIS_TIMEOUT_SECONDS,
            health_check_interval=30,
        )
        logger.info("[redis] Connecting to %s", REDIS_URL.split("@")[-1])
    return _redis


async def ping_redis() -> bool:
    """True when the shared connection answers PING. Used by the health check."""
    try:
        return bool(await (await get_redis()).ping())
    except (RedisError, OSError) as exc:
        logger.warning("[redis] Ping failed: %s", exc)
        return False


async def close_redis() -> None:
    """Close the Redis connection. Called during app shutdown."""
    global _redis
    if _redis is not None:
        await _redis.aclose()
        _redis = None
