"""Distributed Lock Core.

Provides the locking primitives the reconciler depends on:
- Lock interface
- Fencing tokens
- Scoped acquisition with guaranteed release
"""

from __future__ import annotations

import logging
import secrets
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from guildflags.core.errors import LockAcquireError

logger = logging.getLogger(__name__)


class LockStatus(Enum):
    """Status of a distributed lock."""
    ACQUIRED = "acquired"
    RELEASED = "released"
    TIMEOUT = "timeout"
    FAILED = "failed"


@dataclass
class LockInfo:
    """Information about a held lock."""
    name: str
    owner: str
    acquired_at: float
    expires_at: float
    fencing_token: int = 0

    @property
    def is_expired(self) -> bool:
        return time.time() > self.expires_at

    @property
    def ttl_seconds(self) -> float:
        return max(0.0, self.expires_at - time.time())


@dataclass
class LockResult:
    """Result of a lock operation."""
    success: bool
    lock_info: Optional[LockInfo] = None
    error: Optional[str] = None
    status: LockStatus = LockStatus.FAILED
    wait_time_ms: float = 0.0


class FencingTokenGenerator:
    """Generates monotonically increasing fencing tokens."""

    def __init__(self, initial: int = 0):
        self._counter = initial

    def next(self) -> int:
        self._counter += 1
        return self._counter

    @property
    def current(self) -> int:
        return self._counter


class DistributedLock(ABC):
    """Abstract base class for named, TTL-bound mutual exclusion."""

    @abstractmethod
    async def acquire(
        self,
        name: str,
        owner: str,
        ttl_seconds: float = 60.0,
        wait_timeout: Optional[float] = None,
    ) -> LockResult:
        """Acquire a lock.

        Args:
            name: Name of the lock
            owner: Identifier of the lock owner
            ttl_seconds: Time after which the lock expires even if never released
            wait_timeout: Max time to wait for lock (None = single attempt)

        Returns:
            LockResult with success status and lock info
        """

    @abstractmethod
    async def release(self, name: str, owner: str) -> bool:
        """Release a lock held by `owner`.

        Returns:
            True if released, False if the lock was missing or owned by someone else
        """

    @abstractmethod
    async def get_info(self, name: str) -> Optional[LockInfo]:
        """Return lock information, or None when the lock is free."""

    async def is_locked(self, name: str) -> bool:
        return await self.get_info(name) is not None


class LockManager:
    """Binds a lock backend to a single owner identity."""

    def __init__(self, lock: DistributedLock, owner: Optional[str] = None):
        self._lock = lock
        self._owner = owner or generate_owner_id()

    @property
    def owner(self) -> str:
        return self._owner

    @property
    def backend(self) -> DistributedLock:
        return self._lock

    async def acquire(
        self,
        name: str,
        ttl_seconds: float = 60.0,
        wait_timeout: Optional[float] = None,
        owner: Optional[str] = None,
    ) -> LockResult:
        return await self._lock.acquire(
            name=name,
            owner=owner or self._owner,
            ttl_seconds=ttl_seconds,
            wait_timeout=wait_timeout,
        )

    async def release(self, name: str, owner: Optional[str] = None) -> bool:
        return await self._lock.release(name, owner or self._owner)

    def hold(
        self,
        name: str,
        ttl_seconds: float = 60.0,
        wait_timeout: Optional[float] = None,
    ) -> "LockContext":
        """Shortcut for ``LockContext(self, name, ...)``."""
        return LockContext(self, name, ttl_seconds=ttl_seconds, wait_timeout=wait_timeout)


class LockContext:
    """Async context manager holding a distributed lock for its body.

    Raises LockAcquireError on entry when the lock cannot be taken within
    `wait_timeout`. The lock is released on every exit path.

    Each context holds the lock under its own token (``<manager owner>:<hex>``),
    so a context whose TTL ran out can never release the lock a later context
    of the same manager has since taken.
    """

    def __init__(
        self,
        manager: LockManager,
        name: str,
        ttl_seconds: float = 60.0,
        wait_timeout: Optional[float] = None,
    ):
        self._manager = manager
        self._name = name
        self._ttl_seconds = ttl_seconds
        self._wait_timeout = wait_timeout
        self._owner = f"{manager.owner}:{secrets.token_hex(4)}"
        self._lock_result: Optional[LockResult] = None

    @property
    def name(self) -> str:
        return self._name

    @property
    def owner(self) -> str:
        return self._owner

    @property
    def fencing_token(self) -> Optional[int]:
        if self._lock_result and self._lock_result.lock_info:
            return self._lock_result.lock_info.fencing_token
        return None

    async def __aenter__(self) -> "LockContext":
        self._lock_result = await self._manager.acquire(
            self._name,
            self._ttl_seconds,
            self._wait_timeout,
            owner=self._owner,
        )
        if not self._lock_result.success:
            raise LockAcquireError(self._name, self._lock_result.error)
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        released = await self._manager.release(self._name, self._owner)
        if not released:
            # Expired under us or taken over after TTL
            logger.warning(
                f"Lock '{self._name}' was no longer held by '{self._owner}' on release"
            )


def generate_owner_id(prefix: str = "owner") -> str:
    """Generate unique owner identifier."""
    timestamp = int(time.time() * 1000)
    random_part = secrets.token_hex(4)
    return f"{prefix}_{timestamp}_{random_part}"
