"""Read-through cache of guild flag sets.

One FlagCache is created per process and handed to whatever needs guild
flags. Entries never expire on their own; they only disappear through
`invalidate` (see FeatureFlagService).
"""

from __future__ import annotations

import logging
from typing import Dict, FrozenSet, Optional

from guildflags.core.feature_flags.store import FlagStore
from guildflags.core.rwlock import AsyncRWLock
from guildflags.utils.metrics import (
    guild_flags_cache_fills_total,
    guild_flags_cache_requests_total,
)

logger = logging.getLogger(__name__)


class FlagCache:
    """Process-wide guild id -> flag set mapping, filled lazily from a FlagStore.

    Hits only take the shared side of the lock. A miss drops the shared hold,
    takes the exclusive one and looks again before reading the store, so
    concurrent misses for one guild cause a single store read.

    Store failures propagate and leave no entry behind.
    """

    def __init__(self, store: FlagStore):
        self._store = store
        self._entries: Dict[int, FrozenSet[str]] = {}
        self._lock = AsyncRWLock()
        self._hits = 0
        self._misses = 0
        self._fills = 0

    @property
    def store(self) -> FlagStore:
        return self._store

    async def get_flags(self, guild_id: int) -> FrozenSet[str]:
        """Return the guild's flags, reading through to the store on first use."""
        async with self._lock.read():
            flags = self._entries.get(guild_id)
        if flags is not None:
            self._hits += 1
            guild_flags_cache_requests_total.labels(result="hit").inc()
            return flags

        self._misses += 1
        guild_flags_cache_requests_total.labels(result="miss").inc()

        async with self._lock.write():
            # Another task may have filled it while we waited for the write hold
            flags = self._entries.get(guild_id)
            if flags is not None:
                return flags

            try:
                flags = await self._store.members(guild_id)
            except Exception:
                guild_flags_cache_fills_total.labels(result="error").inc()
                logger.warning(
                    "guild flags cache fill failed",
                    extra={"guild_id": guild_id},
                )
                raise

            self._entries[guild_id] = flags
            self._fills += 1
            guild_flags_cache_fills_total.labels(result="ok").inc()
            logger.debug(
                "guild flags cached",
                extra={"guild_id": guild_id, "added": len(flags)},
            )
            return flags

    async def has_flag(self, guild_id: int, flag: str) -> bool:
        flags = await self.get_flags(guild_id)
        return flag in flags

    async def invalidate(self, guild_id: int) -> bool:
        """Drop one guild's entry; returns whether there was one."""
        async with self._lock.write():
            return self._entries.pop(guild_id, None) is not None

    async def peek(self, guild_id: int) -> Optional[FrozenSet[str]]:
        """Cached entry without reading through."""
        async with self._lock.read():
            return self._entries.get(guild_id)

    def stats(self) -> Dict[str, int]:
        return {
            "hits": self._hits,
            "misses": self._misses,
            "fills": self._fills,
            "entries": len(self._entries),
        }
