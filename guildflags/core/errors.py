"""Shared error codes and exceptions for the feature flag core.

Every exception carries an `ErrorCode` so log lines and metrics can be
grouped without string matching. Underlying causes (Redis errors, plugin
exceptions) are chained via ``raise ... from exc``.
"""

from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from guildflags.core.feature_flags.reconcile import ReconcileReport


class ErrorCode(str, Enum):
    STORE_ERROR = "STORE_ERROR"  # Redis connectivity/command failure
    LOCK_TIMEOUT = "LOCK_TIMEOUT"  # Reconciliation lock not acquired in time
    PLUGIN_ERROR = "PLUGIN_ERROR"  # A plugin failed to compute its flags
    PLUGIN_CONTRACT_VIOLATION = "PLUGIN_CONTRACT_VIOLATION"  # Flag outside universe
    RECONCILE_PARTIAL = "RECONCILE_PARTIAL"  # Some plugins failed during a run


class FeatureFlagError(Exception):
    """Base exception for feature flag errors."""

    code: ErrorCode = ErrorCode.STORE_ERROR

    def __init__(self, message: str, code: Optional[ErrorCode] = None):
        super().__init__(message)
        if code is not None:
            self.code = code


class FlagStoreError(FeatureFlagError):
    """Raised when the key-value store rejects or cannot serve a command."""

    code = ErrorCode.STORE_ERROR


class LockAcquireError(FeatureFlagError):
    """Raised when the reconciliation lock cannot be acquired."""

    code = ErrorCode.LOCK_TIMEOUT

    def __init__(self, name: str, reason: Optional[str] = None):
        message = f"Failed to acquire lock '{name}'"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)
        self.name = name
        self.reason = reason


class PluginFlagsError(FeatureFlagError):
    """Raised (and recorded) when a single plugin could not be reconciled."""

    code = ErrorCode.PLUGIN_ERROR

    def __init__(self, plugin: str, guild_id: int, stage: str, message: str):
        super().__init__(f"plugin {plugin} failed to {stage} flags for guild {guild_id}: {message}")
        self.plugin = plugin
        self.guild_id = guild_id
        self.stage = stage


class ReconcileError(FeatureFlagError):
    """Raised when a reconciliation finished but at least one plugin failed.

    Only the most recent failure is the ``__cause__``; the attached report
    lists every plugin outcome of the run.
    """

    code = ErrorCode.RECONCILE_PARTIAL

    def __init__(self, report: "ReconcileReport"):
        last = report.last_error
        super().__init__(
            f"feature flag update for guild {report.guild_id} finished with "
            f"{len(report.errors)} plugin error(s), last: {last}"
        )
        self.report = report
        self.guild_id = report.guild_id


__all__ = [
    "ErrorCode",
    "FeatureFlagError",
    "FlagStoreError",
    "LockAcquireError",
    "PluginFlagsError",
    "ReconcileError",
]
