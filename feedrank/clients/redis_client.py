"""
Redis client wrapper.

The API holds a single asyncio Redis connection pool for the process. It
backs the per-user ranked feed cache (see feedrank.algorithm.feed_cache).
"""
import logging
from typing import Optional

import redis.asyncio as aioredis

from feedrank.config import settings

logger = logging.getLogger(__name__)

_redis: Optional[aioredis.Redis] = None


async def init_redis() -> aioredis.Redis:
    global _redis
    _redis = aioredis.Redis(
        host=settings.redis_host,
        port=settings.redis_port,
        decode_responses=True,
    )
    await _redis.ping()
    logger.info("Redis connected at %s:%s", settings.redis_host, settings.redis_port)
    return _redis


async def close_redis() -> None:
    global _redis
    if _redis is not None:
        await _redis.aclose()
        _redis = None
