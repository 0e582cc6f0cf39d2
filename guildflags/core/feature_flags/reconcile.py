"""Recompute a guild's flags from every FeatureFlagProvider plugin.

A run holds the guild's distributed lock (``feature_flags_updating:<id>``)
for its whole duration, so at most one reconciliation per guild is in flight
across all processes. Plugins are handled one after another and in
isolation: a plugin that fails is recorded and skipped, the others are still
applied, and the run raises the most recent failure at the end.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Iterable, List, Optional, Tuple, cast

from guildflags.core.distributed_lock import LockContext, LockManager
from guildflags.core.errors import (
    ErrorCode,
    FeatureFlagError,
    FlagStoreError,
    LockAcquireError,
    PluginFlagsError,
    ReconcileError,
)
from guildflags.core.feature_flags.keys import key_flags_updating
from guildflags.core.feature_flags.store import FlagStore
from guildflags.core.plugins.base import Plugin
from guildflags.core.plugins.provider import FeatureFlagProvider
from guildflags.core.plugins.registry import PluginRegistry
from guildflags.utils.metrics import (
    guild_flags_invalid_flags_total,
    guild_flags_plugin_errors_total,
    guild_flags_reconcile_duration_seconds,
    guild_flags_reconcile_total,
)

logger = logging.getLogger(__name__)


@dataclass
class PluginOutcome:
    """What one plugin contributed to a reconciliation."""

    plugin: str
    added: Tuple[str, ...] = ()
    removed: Tuple[str, ...] = ()
    dropped: Tuple[Any, ...] = ()
    error: Optional[FeatureFlagError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class ReconcileReport:
    guild_id: int
    outcomes: List[PluginOutcome] = field(default_factory=list)
    duration_ms: float = 0.0

    @property
    def errors(self) -> List[FeatureFlagError]:
        return [o.error for o in self.outcomes if o.error is not None]

    @property
    def last_error(self) -> Optional[FeatureFlagError]:
        errors = self.errors
        return errors[-1] if errors else None

    @property
    def ok(self) -> bool:
        return not self.errors


def _split_names(values: Iterable[Any]) -> Tuple[List[str], List[Any]]:
    """Split plugin output into flag names and entries that are not strings."""
    values = list(values)
    names = [v for v in values if isinstance(v, str)]
    others = [v for v in values if not isinstance(v, str)]
    return names, others


class ReconciliationEngine:
    """Applies every provider's view of a guild's flags to the store."""

    def __init__(
        self,
        store: FlagStore,
        registry: PluginRegistry,
        lock_manager: LockManager,
        lock_ttl_seconds: float = 60.0,
        lock_wait_seconds: float = 60.0,
    ):
        self._store = store
        self._registry = registry
        self._locks = lock_manager
        self._lock_ttl_seconds = lock_ttl_seconds
        self._lock_wait_seconds = lock_wait_seconds

    async def reconcile(self, guild_id: int) -> ReconcileReport:
        """Recompute and persist the flags of `guild_id`.

        Raises:
            LockAcquireError: the guild lock was not acquired in time; nothing ran
            ReconcileError: at least one plugin failed; the rest were applied
        """
        started = time.perf_counter()
        report = ReconcileReport(guild_id=guild_id)
        lock = LockContext(
            self._locks,
            key_flags_updating(guild_id),
            ttl_seconds=self._lock_ttl_seconds,
            wait_timeout=self._lock_wait_seconds,
        )

        try:
            async with lock:
                for provider in self._registry.feature_flag_providers():
                    report.outcomes.append(await self._reconcile_plugin(guild_id, provider))
        except LockAcquireError as e:
            guild_flags_reconcile_total.labels(result="lock_error").inc()
            logger.error(
                f"Could not lock guild {guild_id} for flag update: {e}",
                extra={"guild_id": guild_id, "error_code": e.code.value},
            )
            raise
        finally:
            report.duration_ms = (time.perf_counter() - started) * 1000
            guild_flags_reconcile_duration_seconds.observe(report.duration_ms / 1000)

        if not report.ok:
            guild_flags_reconcile_total.labels(result="partial").inc()
            raise ReconcileError(report) from report.last_error

        guild_flags_reconcile_total.labels(result="ok").inc()
        logger.info(
            f"Updated feature flags of guild {guild_id}",
            extra={
                "guild_id": guild_id,
                "added": sum(len(o.added) for o in report.outcomes),
                "removed": sum(len(o.removed) for o in report.outcomes),
                "duration_ms": round(report.duration_ms, 2),
            },
        )
        return report

    async def _reconcile_plugin(self, guild_id: int, plugin: Plugin) -> PluginOutcome:
        name = plugin.plugin_info().sys_name
        provider = cast(FeatureFlagProvider, plugin)
        outcome = PluginOutcome(plugin=name)

        try:
            universe, bad_universe = _split_names(dict.fromkeys(provider.all_feature_flags()))
            active, bad_active = _split_names(
                dict.fromkeys(await provider.update_feature_flags(guild_id))
            )
        except Exception as exc:  # noqa: BLE001 - plugin code is not ours
            return self._record_failure(outcome, guild_id, "compute", exc)

        known = set(universe)
        filtered = [f for f in active if f in known]
        undeclared = [f for f in active if f not in known]
        for flag in undeclared:
            self._contract_violation(
                guild_id, name, flag, f"Flag {flag!r} is not declared by plugin {name}, dropping it"
            )
        for flag in bad_universe + bad_active:
            self._contract_violation(
                guild_id, name, flag, f"Flag {flag!r} from plugin {name} is not a string, dropping it"
            )

        enabled = set(filtered)
        to_remove = [f for f in universe if f not in enabled]

        try:
            # Adds are applied before removes
            await self._store.apply_diff(guild_id, filtered, to_remove)
        except Exception as exc:  # noqa: BLE001
            return self._record_failure(outcome, guild_id, "store", exc)

        outcome.added = tuple(sorted(filtered))
        outcome.removed = tuple(sorted(to_remove))
        outcome.dropped = tuple(sorted(undeclared)) + tuple(bad_universe + bad_active)
        return outcome

    @staticmethod
    def _contract_violation(guild_id: int, plugin: str, flag: Any, message: str) -> None:
        guild_flags_invalid_flags_total.labels(plugin=plugin).inc()
        logger.error(
            message,
            extra={
                "guild_id": guild_id,
                "plugin": plugin,
                "flag": flag,
                "error_code": ErrorCode.PLUGIN_CONTRACT_VIOLATION.value,
            },
        )

    def _record_failure(
        self,
        outcome: PluginOutcome,
        guild_id: int,
        stage: str,
        exc: Exception,
    ) -> PluginOutcome:
        error = PluginFlagsError(outcome.plugin, guild_id, stage, f"{type(exc).__name__}: {exc}")
        if isinstance(exc, FlagStoreError):
            error.code = exc.code
        error.__cause__ = exc
        outcome.error = error

        guild_flags_plugin_errors_total.labels(plugin=outcome.plugin, stage=stage).inc()
        logger.error(
            str(error),
            exc_info=exc,
            extra={
                "guild_id": guild_id,
                "plugin": outcome.plugin,
                "stage": stage,
                "error_code": error.code.value,
            },
        )
        return outcome
