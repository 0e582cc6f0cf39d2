"""Redis key naming for guild feature flags."""

from __future__ import annotations

GUILD_FLAGS_KEY_PREFIX = "f_flags:"
FLAGS_UPDATING_LOCK_PREFIX = "feature_flags_updating:"


def _guild_id(guild_id: int) -> int:
    # bool is an int subclass but never a valid guild id
    if isinstance(guild_id, bool) or not isinstance(guild_id, int):
        raise TypeError(f"guild_id must be an int, got {type(guild_id).__name__}")
    return guild_id


def key_guild_flags(guild_id: int) -> str:
    """Set of active flag names for the guild."""
    return f"{GUILD_FLAGS_KEY_PREFIX}{_guild_id(guild_id)}"


def key_flags_updating(guild_id: int) -> str:
    """Name of the lock serializing reconciliation of the guild."""
    return f"{FLAGS_UPDATING_LOCK_PREFIX}{_guild_id(guild_id)}"
