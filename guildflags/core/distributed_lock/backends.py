"""Distributed Lock Implementations.

Provides lock implementations:
- In-memory lock (tests, single process)
- Redis-based lock (production, shared across processes)
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Dict, Optional

from redis.exceptions import RedisError

from guildflags.core.distributed_lock.core import (
    DistributedLock,
    FencingTokenGenerator,
    LockInfo,
    LockResult,
    LockStatus,
)

logger = logging.getLogger(__name__)


class InMemoryLock(DistributedLock):
    """Process-local lock with the same semantics as RedisLock."""

    def __init__(self, retry_interval: float = 0.05):
        self._locks: Dict[str, LockInfo] = {}
        self._token_generator = FencingTokenGenerator()
        self._retry_interval = retry_interval
        self._lock: Optional[asyncio.Lock] = None

    def _get_lock(self) -> asyncio.Lock:
        if self._lock is None:
            self._lock = asyncio.Lock()
        return self._lock

    async def acquire(
        self,
        name: str,
        owner: str,
        ttl_seconds: float = 60.0,
        wait_timeout: Optional[float] = None,
    ) -> LockResult:
        start_time = time.time()

        while True:
            async with self._get_lock():
                self._cleanup_expired()

                holder = self._locks.get(name)
                if holder is None:
                    now = time.time()
                    lock_info = LockInfo(
                        name=name,
                        owner=owner,
                        acquired_at=now,
                        expires_at=now + ttl_seconds,
                        fencing_token=self._token_generator.next(),
                    )
                    self._locks[name] = lock_info

                    logger.debug(f"Lock '{name}' acquired by '{owner}'")
                    return LockResult(
                        success=True,
                        lock_info=lock_info,
                        status=LockStatus.ACQUIRED,
                        wait_time_ms=(now - start_time) * 1000,
                    )
                current_owner = holder.owner

            elapsed = time.time() - start_time
            if wait_timeout is None:
                return LockResult(
                    success=False,
                    error=f"Lock '{name}' is held by '{current_owner}'",
                    status=LockStatus.FAILED,
                    wait_time_ms=elapsed * 1000,
                )
            if elapsed >= wait_timeout:
                return LockResult(
                    success=False,
                    error=f"Timeout waiting for lock '{name}'",
                    status=LockStatus.TIMEOUT,
                    wait_time_ms=elapsed * 1000,
                )

            await asyncio.sleep(self._retry_interval)

    async def release(self, name: str, owner: str) -> bool:
        async with self._get_lock():
            lock_info = self._locks.get(name)
            if lock_info is None:
                return False

            if lock_info.owner != owner:
                logger.warning(
                    f"Cannot release lock '{name}': owned by '{lock_info.owner}', "
                    f"not '{owner}'"
                )
                return False

            del self._locks[name]
            logger.debug(f"Lock '{name}' released by '{owner}'")
            return True

    async def get_info(self, name: str) -> Optional[LockInfo]:
        async with self._get_lock():
            self._cleanup_expired()
            return self._locks.get(name)

    def _cleanup_expired(self) -> None:
        """Remove expired locks."""
        now = time.time()
        expired = [
            name for name, info in self._locks.items()
            if info.expires_at < now
        ]
        for name in expired:
            logger.debug(f"Lock '{name}' expired")
            del self._locks[name]


class RedisLock(DistributedLock):
    """Single-instance Redis lock: SET NX PX to acquire, compare-and-delete to release.

    The Redis key is the lock name prefixed with `key_prefix` (empty by
    default, so ``feature_flags_updating:42`` is stored under that exact key).
    """

    # Only the owner may delete the key
    RELEASE_SCRIPT = """
    if redis.call('GET', KEYS[1]) == ARGV[1] then
        return redis.call('DEL', KEYS[1])
    end
    return 0
    """

    def __init__(
        self,
        redis_client: Any,
        key_prefix: str = "",
        retry_interval: float = 0.1,
    ):
        self._redis = redis_client
        self._key_prefix = key_prefix
        self._retry_interval = retry_interval
        self._token_generator = FencingTokenGenerator()

    def _make_key(self, name: str) -> str:
        return f"{self._key_prefix}{name}"

    async def acquire(
        self,
        name: str,
        owner: str,
        ttl_seconds: float = 60.0,
        wait_timeout: Optional[float] = None,
    ) -> LockResult:
        key = self._make_key(name)
        ttl_ms = max(1, int(ttl_seconds * 1000))
        start_time = time.time()

        while True:
            try:
                acquired = await self._redis.set(key, owner, nx=True, px=ttl_ms)
            except RedisError as e:
                logger.error(f"Redis lock acquire error for '{name}': {e}")
                return LockResult(
                    success=False,
                    error=f"{type(e).__name__}: {e}",
                    status=LockStatus.FAILED,
                    wait_time_ms=(time.time() - start_time) * 1000,
                )

            now = time.time()
            if acquired:
                lock_info = LockInfo(
                    name=name,
                    owner=owner,
                    acquired_at=now,
                    expires_at=now + ttl_seconds,
                    fencing_token=self._token_generator.next(),
                )
                logger.debug(f"Lock '{name}' acquired by '{owner}'")
                return LockResult(
                    success=True,
                    lock_info=lock_info,
                    status=LockStatus.ACQUIRED,
                    wait_time_ms=(now - start_time) * 1000,
                )

            elapsed = now - start_time
            if wait_timeout is None:
                return LockResult(
                    success=False,
                    error=f"Lock '{name}' is already held",
                    status=LockStatus.FAILED,
                    wait_time_ms=elapsed * 1000,
                )
            if elapsed >= wait_timeout:
                return LockResult(
                    success=False,
                    error=f"Timeout waiting for lock '{name}'",
                    status=LockStatus.TIMEOUT,
                    wait_time_ms=elapsed * 1000,
                )

            await asyncio.sleep(self._retry_interval)

    async def release(self, name: str, owner: str) -> bool:
        key = self._make_key(name)
        try:
            result = await self._redis.eval(self.RELEASE_SCRIPT, 1, key, owner)
        except RedisError as e:
            # The TTL still bounds how long the key can outlive us
            logger.error(f"Redis lock release error for '{name}': {e}")
            return False

        success = int(result or 0) == 1
        if success:
            logger.debug(f"Lock '{name}' released by '{owner}'")
        return success

    async def get_info(self, name: str) -> Optional[LockInfo]:
        key = self._make_key(name)
        try:
            owner = await self._redis.get(key)
            if owner is None:
                return None
            pttl = await self._redis.pttl(key)
        except RedisError as e:
            logger.error(f"Redis get_info error for '{name}': {e}")
            return None

        if isinstance(owner, bytes):
            owner = owner.decode()
        now = time.time()
        remaining = max(0, int(pttl)) / 1000.0 if pttl is not None else 0.0
        return LockInfo(
            name=name,
            owner=owner,
            acquired_at=now,
            expires_at=now + remaining,
        )
