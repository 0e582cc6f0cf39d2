"""Persistence of guild flag sets.

Each guild's active flags live in one Redis set (``f_flags:<guild_id>``).
The store only knows three operations: read the members, and add then remove
a batch of members.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from typing import Any, Dict, FrozenSet, Iterable, List, Set, Tuple

from redis.exceptions import RedisError

from guildflags.core.errors import FlagStoreError
from guildflags.core.feature_flags.keys import key_guild_flags


class FlagStore(ABC):
    """Abstract guild flag set storage."""

    @abstractmethod
    async def members(self, guild_id: int) -> FrozenSet[str]:
        """Return the stored flag set of a guild (empty if never written)."""

    @abstractmethod
    async def apply_diff(
        self,
        guild_id: int,
        to_add: Iterable[str],
        to_remove: Iterable[str],
    ) -> None:
        """Add `to_add`, then remove `to_remove`, against the guild's set."""


def _decode(value: Any) -> str:
    if isinstance(value, bytes):
        return value.decode()
    return str(value)


class RedisFlagStore(FlagStore):
    """redis.asyncio backed store."""

    def __init__(self, redis_client: Any):
        self._redis = redis_client

    async def members(self, guild_id: int) -> FrozenSet[str]:
        key = key_guild_flags(guild_id)
        try:
            raw = await self._redis.smembers(key)
        except RedisError as e:
            raise FlagStoreError(f"SMEMBERS {key} failed: {e}") from e
        return frozenset(_decode(v) for v in raw or ())

    async def apply_diff(
        self,
        guild_id: int,
        to_add: Iterable[str],
        to_remove: Iterable[str],
    ) -> None:
        key = key_guild_flags(guild_id)
        add = sorted(set(to_add))
        remove = sorted(set(to_remove))
        if not add and not remove:
            return

        # One MULTI/EXEC on one connection; SADD/SREM reject empty member lists
        try:
            async with self._redis.pipeline(transaction=True) as pipe:
                if add:
                    pipe.sadd(key, *add)
                if remove:
                    pipe.srem(key, *remove)
                await pipe.execute()
        except RedisError as e:
            raise FlagStoreError(f"updating {key} failed: {e}") from e


class InMemoryFlagStore(FlagStore):
    """Dict-of-sets store for tests and single-process use.

    `fail_reads` / `fail_writes` make the next operations raise
    FlagStoreError. `commands` records every write as
    ``(command, guild_id, members)`` in the order applied.
    """

    def __init__(self, latency: float = 0.0):
        self._sets: Dict[int, Set[str]] = {}
        self._latency = latency
        self.read_count = 0
        self.write_count = 0
        self.fail_reads = False
        self.fail_writes = False
        self.commands: List[Tuple[str, int, Tuple[str, ...]]] = []

    async def _round_trip(self) -> None:
        # Yield even without latency so concurrent tasks interleave as with a real server
        await asyncio.sleep(self._latency)

    async def members(self, guild_id: int) -> FrozenSet[str]:
        key = key_guild_flags(guild_id)
        self.read_count += 1
        await self._round_trip()
        if self.fail_reads:
            raise FlagStoreError(f"SMEMBERS {key} failed: injected")
        return frozenset(self._sets.get(guild_id, ()))

    async def apply_diff(
        self,
        guild_id: int,
        to_add: Iterable[str],
        to_remove: Iterable[str],
    ) -> None:
        key = key_guild_flags(guild_id)
        add = tuple(sorted(set(to_add)))
        remove = tuple(sorted(set(to_remove)))
        if not add and not remove:
            return

        await self._round_trip()
        if self.fail_writes:
            raise FlagStoreError(f"updating {key} failed: injected")

        self.write_count += 1
        current = self._sets.setdefault(guild_id, set())
        if add:
            current.update(add)
            self.commands.append(("SADD", guild_id, add))
        if remove:
            current.difference_update(remove)
            self.commands.append(("SREM", guild_id, remove))
        if not current:
            # Redis drops empty sets
            del self._sets[guild_id]

    def seed(self, guild_id: int, flags: Iterable[str]) -> None:
        """Overwrite a guild's set directly (test setup)."""
        self._sets[guild_id] = set(flags)
