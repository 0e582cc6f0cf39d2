"""Public entry points for guild feature flags."""

from __future__ import annotations

import logging
from typing import Any, FrozenSet, Optional

from guildflags.core.config import Settings, get_settings
from guildflags.core.distributed_lock import LockManager, RedisLock, generate_owner_id
from guildflags.core.feature_flags.cache import FlagCache
from guildflags.core.feature_flags.reconcile import ReconcileReport, ReconciliationEngine
from guildflags.core.feature_flags.store import RedisFlagStore
from guildflags.core.plugins.registry import PluginRegistry
from guildflags.utils.redis_client import get_client

logger = logging.getLogger(__name__)


class FeatureFlagService:
    """Reads go through the cache, updates through the reconciliation engine.

    With `invalidate_on_update` (the default) the guild's cache entry is
    dropped after every update attempt, successful or not, so this
    process re-reads the store on its next lookup. Other processes keep their
    entries until they restart.
    """

    def __init__(
        self,
        cache: FlagCache,
        engine: ReconciliationEngine,
        invalidate_on_update: bool = True,
    ):
        self.cache = cache
        self.engine = engine
        self.invalidate_on_update = invalidate_on_update

    async def get_guild_flags(self, guild_id: int) -> FrozenSet[str]:
        return await self.cache.get_flags(guild_id)

    async def guild_has_flag(self, guild_id: int, flag: str) -> bool:
        return await self.cache.has_flag(guild_id, flag)

    async def update_guild_flags(self, guild_id: int) -> ReconcileReport:
        """Reconcile the guild's flags; raises the engine's error, if any."""
        try:
            return await self.engine.reconcile(guild_id)
        finally:
            if self.invalidate_on_update:
                await self.cache.invalidate(guild_id)


def create_feature_flag_service(
    redis_client: Optional[Any] = None,
    registry: Optional[PluginRegistry] = None,
    settings: Optional[Settings] = None,
) -> FeatureFlagService:
    """Wire a Redis-backed service from settings.

    Uses the shared client from `init_redis()` when `redis_client` is omitted.
    """
    settings = settings or get_settings()
    client = redis_client if redis_client is not None else get_client()
    if client is None:
        raise RuntimeError("Redis client not initialized; call init_redis() first")

    store = RedisFlagStore(client)
    lock = RedisLock(client, retry_interval=settings.FLAGS_LOCK_RETRY_INTERVAL)
    engine = ReconciliationEngine(
        store,
        registry if registry is not None else PluginRegistry(),
        LockManager(lock, owner=generate_owner_id("guildflags")),
        lock_ttl_seconds=settings.FLAGS_LOCK_TTL_SECONDS,
        lock_wait_seconds=settings.FLAGS_LOCK_WAIT_SECONDS,
    )
    logger.debug("Feature flag service created")
    return FeatureFlagService(
        FlagCache(store),
        engine,
        invalidate_on_update=settings.FLAGS_INVALIDATE_ON_UPDATE,
    )
