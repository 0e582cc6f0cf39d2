"""Plugin registry consumed by the feature flag reconciler."""

from guildflags.core.plugins.base import Plugin, PluginInfo
from guildflags.core.plugins.provider import FeatureFlagProvider
from guildflags.core.plugins.registry import PluginRegistry
from guildflags.core.plugins.bootstrap import bootstrap_flag_plugins

__all__ = [
    "Plugin",
    "PluginInfo",
    "FeatureFlagProvider",
    "PluginRegistry",
    "bootstrap_flag_plugins",
]
