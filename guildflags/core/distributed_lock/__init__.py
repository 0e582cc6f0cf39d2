"""Distributed Lock Module.

Provides distributed locking capabilities:
- Lock primitives with fencing tokens
- In-memory and Redis backends
- Scoped acquisition (LockContext)
"""

from guildflags.core.distributed_lock.core import (
    LockStatus,
    LockInfo,
    LockResult,
    FencingTokenGenerator,
    DistributedLock,
    LockManager,
    LockContext,
    generate_owner_id,
)
from guildflags.core.distributed_lock.backends import (
    InMemoryLock,
    RedisLock,
)

__all__ = [
    # Core
    "LockStatus",
    "LockInfo",
    "LockResult",
    "FencingTokenGenerator",
    "DistributedLock",
    "LockManager",
    "LockContext",
    "generate_owner_id",
    # Backends
    "InMemoryLock",
    "RedisLock",
]
