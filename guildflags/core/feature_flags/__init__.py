"""Guild feature flags.

Per-guild boolean flags owned by plugins:
- FeatureFlagProvider: the interface plugins implement to own flags
- FlagCache: read-through, process-local cache of each guild's flag set
- ReconciliationEngine: recomputes a guild's flags under a distributed lock
- FeatureFlagService: public get/has/update entry points
"""

from guildflags.core.plugins.provider import FeatureFlagProvider
from guildflags.core.feature_flags.keys import key_flags_updating, key_guild_flags
from guildflags.core.feature_flags.store import (
    FlagStore,
    InMemoryFlagStore,
    RedisFlagStore,
)
from guildflags.core.feature_flags.cache import FlagCache
from guildflags.core.feature_flags.reconcile import (
    PluginOutcome,
    ReconcileReport,
    ReconciliationEngine,
)
from guildflags.core.feature_flags.service import (
    FeatureFlagService,
    create_feature_flag_service,
)

__all__ = [
    "FeatureFlagProvider",
    "key_flags_updating",
    "key_guild_flags",
    "FlagStore",
    "InMemoryFlagStore",
    "RedisFlagStore",
    "FlagCache",
    "PluginOutcome",
    "ReconcileReport",
    "ReconciliationEngine",
    "FeatureFlagService",
    "create_feature_flag_service",
]
