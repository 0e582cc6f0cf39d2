"""Registry of loaded plugin instances."""

from __future__ import annotations

from threading import RLock
from typing import Dict, List, Optional

from guildflags.core.plugins.provider import FeatureFlagProvider
from guildflags.core.plugins.base import Plugin


class PluginRegistry:
    """Ordered, thread-safe collection of plugin instances keyed by sys_name."""

    def __init__(self) -> None:
        self._plugins: Dict[str, Plugin] = {}
        self._lock = RLock()

    @staticmethod
    def _normalize_sys_name(value: str) -> str:
        if not isinstance(value, str):
            raise TypeError("sys_name must be a string")
        token = value.strip()
        if not token:
            raise ValueError("sys_name must be a non-empty string")
        return token

    def register(self, plugin: Plugin) -> Plugin:
        if not isinstance(plugin, Plugin):
            raise TypeError(f"Registered plugin must inherit Plugin: {plugin!r}")
        sys_name = self._normalize_sys_name(plugin.plugin_info().sys_name)
        with self._lock:
            if sys_name in self._plugins:
                raise ValueError(f"Plugin already registered: {sys_name}")
            self._plugins[sys_name] = plugin
        return plugin

    def unregister(self, sys_name: str) -> bool:
        with self._lock:
            return self._plugins.pop(self._normalize_sys_name(sys_name), None) is not None

    def get(self, sys_name: str) -> Optional[Plugin]:
        with self._lock:
            return self._plugins.get(self._normalize_sys_name(sys_name))

    def exists(self, sys_name: str) -> bool:
        return self.get(sys_name) is not None

    def list_plugins(self) -> List[Plugin]:
        with self._lock:
            return list(self._plugins.values())

    def feature_flag_providers(self) -> List[Plugin]:
        """Registered plugins that also implement FeatureFlagProvider, in registration order."""
        return [p for p in self.list_plugins() if isinstance(p, FeatureFlagProvider)]

    def clear(self) -> None:
        with self._lock:
            self._plugins.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._plugins)
