import os
from typing import Dict, List, Optional, Sequence

import pytest

from guildflags.core.plugins import FeatureFlagProvider, Plugin, PluginInfo


# List of environment variables that may be modified by tests
_ENV_VARS_TO_ISOLATE = [
    "REDIS_URL",
    "LOG_LEVEL",
    "LOG_JSON",
    "FLAGS_LOCK_TTL_SECONDS",
    "FLAGS_LOCK_WAIT_SECONDS",
    "FLAGS_LOCK_RETRY_INTERVAL",
    "FLAGS_INVALIDATE_ON_UPDATE",
    "GUILD_FLAGS_PLUGINS",
    "GUILD_FLAGS_PLUGINS_STRICT",
    "GUILD_FLAGS_STATIC",
]


@pytest.fixture(autouse=True)
def env_isolation():
    """Isolate environment variables between tests."""
    backup = {k: os.environ.get(k) for k in _ENV_VARS_TO_ISOLATE}
    try:
        yield
    finally:
        for k, v in backup.items():
            if v is None:
                os.environ.pop(k, None)
            else:
                os.environ[k] = v


@pytest.fixture(autouse=True)
def config_cache_isolation():
    """Reset config settings cache between tests."""
    import guildflags.core.config as cfg

    backup_cache = cfg._settings_cache
    cfg._settings_cache = None
    yield
    cfg._settings_cache = backup_cache


class FakeFlagPlugin(Plugin, FeatureFlagProvider):
    """Flag provider with a fixed universe and per-guild active flags.

    `fail_with` makes update_feature_flags raise, `universe_error` makes
    all_feature_flags raise; `calls` records guild ids.
    """

    def __init__(
        self,
        sys_name: str,
        universe: Sequence[str],
        active: Optional[Dict[int, List[str]]] = None,
        default_active: Sequence[str] = (),
        fail_with: Optional[Exception] = None,
        universe_error: Optional[Exception] = None,
    ):
        self._sys_name = sys_name
        self.universe = list(universe)
        self.active = dict(active or {})
        self.default_active = list(default_active)
        self.fail_with = fail_with
        self.universe_error = universe_error
        self.calls: List[int] = []

    def plugin_info(self) -> PluginInfo:
        return PluginInfo(name=self._sys_name.title(), sys_name=self._sys_name)

    def all_feature_flags(self) -> Sequence[str]:
        if self.universe_error is not None:
            raise self.universe_error
        return list(self.universe)

    async def update_feature_flags(self, guild_id: int) -> Sequence[str]:
        self.calls.append(guild_id)
        if self.fail_with is not None:
            raise self.fail_with
        return list(self.active.get(guild_id, self.default_active))


class PlainPlugin(Plugin):
    """Plugin without flags."""

    def __init__(self, sys_name: str = "plain"):
        self._sys_name = sys_name

    def plugin_info(self) -> PluginInfo:
        return PluginInfo(name="Plain", sys_name=self._sys_name)


@pytest.fixture
def make_flag_plugin():
    return FakeFlagPlugin


@pytest.fixture
def make_plain_plugin():
    return PlainPlugin
