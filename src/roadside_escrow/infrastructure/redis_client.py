"""Redis client used as a read-through cache for gateway directory data.

Redis is optional: when it is down at startup the service runs uncached.

Usage:
    from roadside_escrow.infrastructure.redis_client import cached_json

    banks = await cached_json("banks:ghana", ttl=3600, loader=load_banks)
"""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from roadside_escrow.config import get_settings
from roadside_escrow.logging_config import get_logger

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

logger = get_logger(__name__)

_redis_client: aioredis.Redis | None = None


async def init_redis() -> aioredis.Redis:
    """Initialize and return the Redis client. Called during app startup."""
    global _redis_client
    settings = get_settings()
    client = aioredis.from_url(settings.redis_url, decode_responses=True)
    await client.ping()
    _redis_client = client
    logger.info("redis.connected", url=settings.redis_url)
    return _redis_client


def get_redis() -> aioredis.Redis:
    """Return the Redis client singleton. Must call init_redis() first."""
    if _redis_client is None:
        raise RuntimeError("Redis not initialized. Call init_redis() first.")
    return _redis_client


def redis_available() -> bool:
    return _redis_client is not None


async def close_redis() -> None:
    """Close the Redis connection. Called during app shutdown."""
    global _redis_client
    if _redis_client is not None:
        await _redis_client.aclose()
        logger.info("redis.disconnected")
        _redis_client = None


# --- Cache Helpers ---


async def cached_json(
    key: str,
    ttl: int,
    loader: Callable[[], Awaitable[Any]],
) -> Any:
    """Return the cached JSON value for `key`, loading and storing it on a miss.

    Cache errors are logged and fall through to the loader.
    """
    if _redis_client is None:
        return await loader()

    try:
        raw = await _redis_client.get(f"cache:{key}")
    except RedisError as exc:
        logger.warning("redis.cache_read_failed", key=key, error=str(exc))
        raw = None
    if raw is not None:
        logger.debug("redis.cache_hit", key=key)
        return json.loads(raw)

    value = await loader()
    try:
        await _redis_client.set(f"cache:{key}", json.dumps(value), ex=ttl)
    except RedisError as exc:
        logger.warning("redis.cache_write_failed", key=key, error=str(exc))
    return value
