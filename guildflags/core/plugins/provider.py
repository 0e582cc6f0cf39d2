"""Capability interface for plugins that own feature flags."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Sequence


class FeatureFlagProvider(ABC):
    """Opt-in interface for plugins that compute their own guild flags.

    Plugins that do not subclass this never take part in reconciliation.
    """

    @abstractmethod
    def all_feature_flags(self) -> Sequence[str]:
        """Every flag this plugin can ever set; expected to be stable for the process."""

    @abstractmethod
    async def update_feature_flags(self, guild_id: int) -> Sequence[str]:
        """Recompute the flags currently active for `guild_id`.

        May raise; a failure only affects this plugin's flags.
        """
