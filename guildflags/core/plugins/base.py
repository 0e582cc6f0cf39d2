"""Plugin base class."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass(frozen=True)
class PluginInfo:
    """Identity of a loaded plugin."""

    name: str
    sys_name: str
    category: str = "misc"


class Plugin(ABC):
    """Base class for everything registered in a PluginRegistry."""

    @abstractmethod
    def plugin_info(self) -> PluginInfo:
        """Return plugin identity."""

    @property
    def sys_name(self) -> str:
        return self.plugin_info().sys_name
