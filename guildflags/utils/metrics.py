"""Prometheus metrics for the guild feature flag cache and reconciler.

All metric objects are defined at import time and registered on the default
registry.
"""

from __future__ import annotations

from prometheus_client import Counter, Histogram

guild_flags_cache_requests_total = Counter(
    "guild_flags_cache_requests_total",
    "Guild flag cache lookups",
    ["result"],  # hit|miss
)
guild_flags_cache_fills_total = Counter(
    "guild_flags_cache_fills_total",
    "Cache fills that read through to the store",
    ["result"],  # ok|error
)

guild_flags_reconcile_total = Counter(
    "guild_flags_reconcile_total",
    "Guild flag reconciliations",
    ["result"],  # ok|partial|lock_error
)
guild_flags_reconcile_duration_seconds = Histogram(
    "guild_flags_reconcile_duration_seconds",
    "Duration of a full guild flag reconciliation, lock wait included",
    buckets=[0.01, 0.05, 0.1, 0.5, 1.0, 5.0, 30.0, 60.0],
)

guild_flags_plugin_errors_total = Counter(
    "guild_flags_plugin_errors_total",
    "Plugin failures during reconciliation",
    ["plugin", "stage"],  # stage: compute|store
)
guild_flags_invalid_flags_total = Counter(
    "guild_flags_invalid_flags_total",
    "Active flags dropped because they were outside the plugin universe",
    ["plugin"],
)
