"""Tests for guildflags/core/feature_flags/reconcile.py."""

from __future__ import annotations

import asyncio

import pytest
from prometheus_client import REGISTRY

from guildflags.core.distributed_lock import InMemoryLock, LockManager
from guildflags.core.errors import (
    ErrorCode,
    FlagStoreError,
    LockAcquireError,
    PluginFlagsError,
    ReconcileError,
)
from guildflags.core.feature_flags.keys import key_flags_updating
from guildflags.core.feature_flags.reconcile import ReconciliationEngine
from guildflags.core.feature_flags.store import InMemoryFlagStore
from guildflags.core.plugins.registry import PluginRegistry


@pytest.fixture
def store():
    return InMemoryFlagStore()


@pytest.fixture
def registry():
    return PluginRegistry()


@pytest.fixture
def lock_backend():
    return InMemoryLock(retry_interval=0.01)


@pytest.fixture
def engine(store, registry, lock_backend):
    return ReconciliationEngine(
        store,
        registry,
        LockManager(lock_backend, owner="test-engine"),
        lock_ttl_seconds=5.0,
        lock_wait_seconds=1.0,
    )


class TestReconcile:
    @pytest.mark.asyncio
    async def test_two_plugins_scenario(self, engine, store, registry, make_flag_plugin):
        """Guild 42: A={x,y} active {x}, B={z} active {z} -> stored {x,z}."""
        registry.register(make_flag_plugin("a", ["x", "y"], {42: ["x"]}))
        registry.register(make_flag_plugin("b", ["z"], {42: ["z"]}))

        report = await engine.reconcile(42)

        assert await store.members(42) == frozenset({"x", "z"})
        assert report.ok
        assert [o.plugin for o in report.outcomes] == ["a", "b"]
        assert report.outcomes[0].added == ("x",)
        assert report.outcomes[0].removed == ("y",)

    @pytest.mark.asyncio
    async def test_removes_flags_no_longer_active(self, engine, store, registry, make_flag_plugin):
        store.seed(42, {"x", "y"})
        registry.register(make_flag_plugin("a", ["x", "y"], {42: ["y"]}))

        await engine.reconcile(42)

        assert await store.members(42) == frozenset({"y"})

    @pytest.mark.asyncio
    async def test_flags_outside_every_universe_are_left_alone(
        self, engine, store, registry, make_flag_plugin
    ):
        """Only flags a plugin declares are added or removed on its behalf."""
        store.seed(42, {"legacy"})
        registry.register(make_flag_plugin("a", ["x"], {42: ["x"]}))

        await engine.reconcile(42)

        assert await store.members(42) == frozenset({"legacy", "x"})

    @pytest.mark.asyncio
    async def test_adds_are_applied_before_removes(self, engine, store, registry, make_flag_plugin):
        store.seed(42, {"y"})
        registry.register(make_flag_plugin("a", ["x", "y"], {42: ["x"]}))

        await engine.reconcile(42)

        assert store.commands == [
            ("SADD", 42, ("x",)),
            ("SREM", 42, ("y",)),
        ]

    @pytest.mark.asyncio
    async def test_invalid_flag_is_dropped(self, engine, store, registry, make_flag_plugin, caplog):
        """A plugin returning a flag outside its universe never gets it persisted."""
        registry.register(make_flag_plugin("a", ["x"], {42: ["x", "w"]}))
        before = REGISTRY.get_sample_value(
            "guild_flags_invalid_flags_total", {"plugin": "a"}
        ) or 0.0

        with caplog.at_level("ERROR"):
            report = await engine.reconcile(42)

        assert await store.members(42) == frozenset({"x"})
        assert report.ok
        assert report.outcomes[0].dropped == ("w",)
        assert any(
            getattr(r, "error_code", None) == ErrorCode.PLUGIN_CONTRACT_VIOLATION.value
            and getattr(r, "flag", None) == "w"
            for r in caplog.records
        )
        after = REGISTRY.get_sample_value("guild_flags_invalid_flags_total", {"plugin": "a"})
        assert after == before + 1

    @pytest.mark.asyncio
    async def test_idempotent(self, engine, store, registry, make_flag_plugin):
        """A second run with unchanged plugin state changes nothing and succeeds."""
        registry.register(make_flag_plugin("a", ["x", "y"], {42: ["x"]}))
        registry.register(make_flag_plugin("b", ["z"], {42: ["z"]}))

        await engine.reconcile(42)
        first = await store.members(42)
        report = await engine.reconcile(42)

        assert report.ok
        assert await store.members(42) == first

    @pytest.mark.asyncio
    async def test_universe_containment(self, engine, store, registry, make_flag_plugin):
        plugins = [
            make_flag_plugin("a", ["a1", "a2"], default_active=["a1", "bogus"]),
            make_flag_plugin("b", ["b1"], default_active=["b1", "a2"]),
        ]
        for p in plugins:
            registry.register(p)

        for guild_id in (1, 2, 3):
            await engine.reconcile(guild_id)
            universe = set().union(*(p.universe for p in plugins))
            assert await store.members(guild_id) <= universe

    @pytest.mark.asyncio
    async def test_non_provider_plugins_are_skipped(
        self, engine, store, registry, make_flag_plugin, make_plain_plugin
    ):
        registry.register(make_plain_plugin())
        registry.register(make_flag_plugin("a", ["x"], {42: ["x"]}))

        report = await engine.reconcile(42)

        assert [o.plugin for o in report.outcomes] == ["a"]

    @pytest.mark.asyncio
    async def test_no_providers_is_a_noop(self, engine, store):
        report = await engine.reconcile(42)
        assert report.ok
        assert report.outcomes == []
        assert store.commands == []


class TestReconcileFailures:
    @pytest.mark.asyncio
    async def test_plugin_failure_is_isolated(self, engine, store, registry, make_flag_plugin):
        """P fails, Q and R are still applied, and the run reports an error."""
        q = make_flag_plugin("q", ["q1"], {42: ["q1"]})
        p = make_flag_plugin("p", ["p1"], {42: ["p1"]}, fail_with=RuntimeError("p is down"))
        r = make_flag_plugin("r", ["r1", "r2"], {42: ["r2"]})
        for plugin in (q, p, r):
            registry.register(plugin)

        with pytest.raises(ReconcileError) as exc_info:
            await engine.reconcile(42)

        assert await store.members(42) == frozenset({"q1", "r2"})
        err = exc_info.value
        assert err.code == ErrorCode.RECONCILE_PARTIAL
        assert isinstance(err.__cause__, PluginFlagsError)
        assert err.__cause__.plugin == "p"
        assert isinstance(err.__cause__.__cause__, RuntimeError)
        assert [o.ok for o in err.report.outcomes] == [True, False, True]
        assert r.calls == [42]

    @pytest.mark.asyncio
    async def test_universe_failure_is_isolated(self, engine, store, registry, make_flag_plugin):
        """A plugin whose all_feature_flags() raises is recorded; later plugins still run."""
        broken = make_flag_plugin("broken", ["b1"], universe_error=RuntimeError("no universe"))
        good = make_flag_plugin("good", ["g1"], {42: ["g1"]})
        registry.register(broken)
        registry.register(good)

        with pytest.raises(ReconcileError) as exc_info:
            await engine.reconcile(42)

        assert await store.members(42) == frozenset({"g1"})
        cause = exc_info.value.__cause__
        assert cause.plugin == "broken"
        assert cause.stage == "compute"
        assert isinstance(cause.__cause__, RuntimeError)
        assert broken.calls == []
        assert good.calls == [42]

    @pytest.mark.asyncio
    async def test_non_string_flags_are_dropped_and_later_plugins_run(
        self, engine, store, registry, make_flag_plugin
    ):
        """Mixed-type flag lists are contract violations, not run-ending errors."""
        mixed = make_flag_plugin("mixed", ["x", "y", 1], {42: ["x", 2]})
        good = make_flag_plugin("good", ["z"], {42: ["z"]})
        registry.register(mixed)
        registry.register(good)
        before = REGISTRY.get_sample_value(
            "guild_flags_invalid_flags_total", {"plugin": "mixed"}
        ) or 0.0

        report = await engine.reconcile(42)

        assert report.ok
        assert await store.members(42) == frozenset({"x", "z"})
        assert report.outcomes[0].added == ("x",)
        assert report.outcomes[0].removed == ("y",)
        assert report.outcomes[0].dropped == (1, 2)
        assert good.calls == [42]
        after = REGISTRY.get_sample_value("guild_flags_invalid_flags_total", {"plugin": "mixed"})
        assert after == before + 2

    @pytest.mark.asyncio
    async def test_unexpected_store_error_is_recorded_per_plugin(
        self, engine, store, registry, make_flag_plugin
    ):
        registry.register(make_flag_plugin("a", ["x"], {42: ["x"]}))
        registry.register(make_flag_plugin("b", ["z"], {42: ["z"]}))
        real_apply = store.apply_diff
        calls = []

        async def apply_diff(guild_id, to_add, to_remove):
            calls.append(guild_id)
            if len(calls) == 1:
                raise TypeError("unorderable members")
            await real_apply(guild_id, to_add, to_remove)

        store.apply_diff = apply_diff

        with pytest.raises(ReconcileError) as exc_info:
            await engine.reconcile(42)

        cause = exc_info.value.__cause__
        assert cause.plugin == "a"
        assert cause.stage == "store"
        assert isinstance(cause.__cause__, TypeError)
        assert await store.members(42) == frozenset({"z"})

    @pytest.mark.asyncio
    async def test_last_error_wins(self, engine, registry, make_flag_plugin):
        registry.register(make_flag_plugin("first", ["a"], fail_with=ValueError("one")))
        registry.register(make_flag_plugin("ok", ["b"]))
        registry.register(make_flag_plugin("second", ["c"], fail_with=ValueError("two")))

        with pytest.raises(ReconcileError) as exc_info:
            await engine.reconcile(42)

        assert exc_info.value.__cause__.plugin == "second"
        assert len(exc_info.value.report.errors) == 2

    @pytest.mark.asyncio
    async def test_store_failure_is_recorded_per_plugin(
        self, engine, store, registry, make_flag_plugin
    ):
        registry.register(make_flag_plugin("a", ["x"], {42: ["x"]}))
        store.fail_writes = True

        with pytest.raises(ReconcileError) as exc_info:
            await engine.reconcile(42)

        cause = exc_info.value.__cause__
        assert cause.stage == "store"
        assert cause.code == ErrorCode.STORE_ERROR
        assert isinstance(cause.__cause__, FlagStoreError)

    @pytest.mark.asyncio
    async def test_lock_released_after_plugin_failure(
        self, engine, registry, lock_backend, make_flag_plugin
    ):
        registry.register(make_flag_plugin("a", ["x"], fail_with=RuntimeError("boom")))

        with pytest.raises(ReconcileError):
            await engine.reconcile(42)

        assert await lock_backend.is_locked(key_flags_updating(42)) is False

    @pytest.mark.asyncio
    async def test_lock_timeout_aborts_before_plugins(
        self, engine, store, registry, lock_backend, make_flag_plugin
    ):
        plugin = make_flag_plugin("a", ["x"], {42: ["x"]})
        registry.register(plugin)
        await lock_backend.acquire(key_flags_updating(42), "other-process", ttl_seconds=30.0)

        with pytest.raises(LockAcquireError) as exc_info:
            await engine.reconcile(42)

        assert exc_info.value.name == "feature_flags_updating:42"
        assert plugin.calls == []
        assert store.commands == []
        # Held lock belongs to the other process and is left alone
        info = await lock_backend.get_info(key_flags_updating(42))
        assert info.owner == "other-process"

    @pytest.mark.asyncio
    async def test_other_guilds_do_not_contend(
        self, engine, store, registry, lock_backend, make_flag_plugin
    ):
        registry.register(make_flag_plugin("a", ["x"], default_active=["x"]))
        await lock_backend.acquire(key_flags_updating(1), "other-process", ttl_seconds=30.0)

        await engine.reconcile(2)

        assert await store.members(2) == frozenset({"x"})


class TestReconcileMutualExclusion:
    @pytest.mark.asyncio
    async def test_same_guild_runs_do_not_interleave(self, store, registry, lock_backend):
        """Two engines (two processes) reconciling one guild are serialized."""
        events = []

        from guildflags.core.plugins import FeatureFlagProvider, Plugin, PluginInfo

        class SlowPlugin(Plugin, FeatureFlagProvider):
            def plugin_info(self):
                return PluginInfo(name="Slow", sys_name="slow")

            def all_feature_flags(self):
                return ["x"]

            async def update_feature_flags(self, guild_id):
                events.append("start")
                await asyncio.sleep(0.05)
                events.append("end")
                return ["x"]

        registry.register(SlowPlugin())
        engines = [
            ReconciliationEngine(
                store, registry, LockManager(lock_backend, owner=f"proc-{i}"),
                lock_ttl_seconds=5.0, lock_wait_seconds=2.0,
            )
            for i in range(2)
        ]

        await asyncio.gather(*(e.reconcile(42) for e in engines))

        assert events == ["start", "end", "start", "end"]
        assert await store.members(42) == frozenset({"x"})

    @pytest.mark.asyncio
    async def test_expired_run_does_not_release_a_later_runs_lock(
        self, store, registry, lock_backend
    ):
        """A run outliving its TTL must not free the lock a newer run of the same process holds."""
        from guildflags.core.plugins import FeatureFlagProvider, Plugin, PluginInfo

        class SlowPlugin(Plugin, FeatureFlagProvider):
            def plugin_info(self):
                return PluginInfo(name="Slow", sys_name="slow")

            def all_feature_flags(self):
                return ["x"]

            async def update_feature_flags(self, guild_id):
                await asyncio.sleep(0.3)
                return ["x"]

        registry.register(SlowPlugin())
        engine = ReconciliationEngine(
            store, registry, LockManager(lock_backend, owner="proc"),
            lock_ttl_seconds=0.2, lock_wait_seconds=1.0,
        )

        first = asyncio.create_task(engine.reconcile(42))
        await asyncio.sleep(0.25)
        second = asyncio.create_task(engine.reconcile(42))
        await asyncio.sleep(0.1)

        # First run has finished and released; the second still runs under its own token
        assert first.done()
        info = await lock_backend.get_info(key_flags_updating(42))
        assert info is not None
        assert info.owner.startswith("proc:")

        await asyncio.gather(first, second)
