"""Shared redis.asyncio client for the process."""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

import redis.asyncio as redis
from redis.exceptions import RedisError

from guildflags.core.config import get_settings

logger = logging.getLogger(__name__)

_redis_client: Optional[redis.Redis] = None
_init_lock: Optional[asyncio.Lock] = None


def _get_init_lock() -> asyncio.Lock:
    global _init_lock
    if _init_lock is None:
        _init_lock = asyncio.Lock()
    return _init_lock


async def init_redis(url: Optional[str] = None) -> redis.Redis:
    """Create the shared client once and verify it with a PING.

    Connection errors propagate; callers decide whether to start without Redis.
    """
    global _redis_client
    if _redis_client:
        return _redis_client
    async with _get_init_lock():
        if _redis_client:
            return _redis_client
        settings = get_settings()
        client = redis.from_url(url or settings.REDIS_URL, decode_responses=True)
        await client.ping()
        _redis_client = client
        logger.info("Redis connected")
        return client


def get_client() -> Optional[redis.Redis]:
    return _redis_client


async def redis_healthy() -> bool:
    if not _redis_client:
        return False
    try:
        await _redis_client.ping()
        return True
    except RedisError as e:
        logger.warning(f"Redis ping failed: {e}")
        return False


async def close_redis() -> None:
    global _redis_client, _init_lock
    if _redis_client is None:
        return
    client, _redis_client = _redis_client, None
    _init_lock = None
    await client.aclose()
    logger.info("Redis connection closed")
