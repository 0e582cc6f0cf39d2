"""Read-write lock for asyncio tasks.

Allows multiple readers or a single writer. A waiting writer blocks new
readers, so a steady stream of cache hits cannot starve a cache fill.

The lock is not reentrant and has no upgrade operation: a reader that needs
exclusive access must release its read hold, acquire the write hold and
re-validate whatever it observed under the read hold.
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator


class AsyncRWLock:
    """Shared/exclusive lock guarding an in-process structure."""

    def __init__(self) -> None:
        self._cond = asyncio.Condition()
        self._readers = 0
        self._writer = False
        self._writers_waiting = 0

    @property
    def reader_count(self) -> int:
        return self._readers

    @property
    def write_locked(self) -> bool:
        return self._writer

    async def acquire_read(self) -> None:
        """Acquire a shared hold."""
        async with self._cond:
            await self._cond.wait_for(
                lambda: not self._writer and self._writers_waiting == 0
            )
            self._readers += 1

    async def release_read(self) -> None:
        """Release a shared hold."""
        async with self._cond:
            if self._readers <= 0:
                raise RuntimeError("release_read() called without a read hold")
            self._readers -= 1
            if self._readers == 0:
                # Notify waiting writers
                self._cond.notify_all()

    async def acquire_write(self) -> None:
        """Acquire the exclusive hold."""
        async with self._cond:
            self._writers_waiting += 1
            acquired = False
            try:
                await self._cond.wait_for(
                    lambda: not self._writer and self._readers == 0
                )
                self._writer = True
                acquired = True
            finally:
                self._writers_waiting -= 1
                if not acquired:
                    # A cancelled writer may have been the only thing holding readers back
                    self._cond.notify_all()

    async def release_write(self) -> None:
        """Release the exclusive hold."""
        async with self._cond:
            if not self._writer:
                raise RuntimeError("release_write() called without a write hold")
            self._writer = False
            # Notify waiting readers and writers
            self._cond.notify_all()

    @asynccontextmanager
    async def read(self) -> AsyncIterator[None]:
        await self.acquire_read()
        try:
            yield
        finally:
            await self.release_read()

    @asynccontextmanager
    async def write(self) -> AsyncIterator[None]:
        await self.acquire_write()
        try:
            yield
        finally:
            await self.release_write()


__all__ = ["AsyncRWLock"]
