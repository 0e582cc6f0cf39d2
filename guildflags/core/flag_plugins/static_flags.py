"""Example flag plugin: flags assigned per guild from a static mapping.

Useful for pinning flags on a handful of guilds (staff servers, beta
testers) and as a reference for writing a FeatureFlagProvider.
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

from guildflags.core.plugins.base import Plugin, PluginInfo
from guildflags.core.plugins.provider import FeatureFlagProvider
from guildflags.core.plugins.registry import PluginRegistry


@dataclass
class StaticFlagsConfig:
    """Universe of flags plus the guilds each one is enabled for."""

    flags: List[str] = field(default_factory=list)
    guilds: Dict[int, List[str]] = field(default_factory=dict)

    @classmethod
    def from_env(cls, var: str = "GUILD_FLAGS_STATIC") -> "StaticFlagsConfig":
        """Parse ``{"flags": [...], "guilds": {"<id>": [...]}}`` from the environment."""
        raw = os.getenv(var, "").strip()
        if not raw:
            return cls()
        data = json.loads(raw)
        return cls(
            flags=list(data.get("flags", [])),
            guilds={int(k): list(v) for k, v in data.get("guilds", {}).items()},
        )


class StaticFlagsPlugin(Plugin, FeatureFlagProvider):
    """Serves guild flags straight from its config."""

    def __init__(self, config: Optional[StaticFlagsConfig] = None, sys_name: str = "static_flags"):
        self.config = config or StaticFlagsConfig()
        self._sys_name = sys_name

    def plugin_info(self) -> PluginInfo:
        return PluginInfo(name="Static flags", sys_name=self._sys_name, category="core")

    def all_feature_flags(self) -> Sequence[str]:
        return list(self.config.flags)

    async def update_feature_flags(self, guild_id: int) -> Sequence[str]:
        return list(self.config.guilds.get(guild_id, []))


def bootstrap(registry: PluginRegistry) -> None:
    """Plugin entrypoint used by `GUILD_FLAGS_PLUGINS=...:bootstrap`."""
    if registry.exists("static_flags"):
        return
    registry.register(StaticFlagsPlugin(StaticFlagsConfig.from_env()))


__all__ = [
    "StaticFlagsConfig",
    "StaticFlagsPlugin",
    "bootstrap",
]
