"""Tests for SliceRegistry — set/get/remove over a HostStore."""

import logging

import pytest

from dynastore import (
    HostStore,
    InvalidKeyError,
    NotInitializedError,
    Settings,
    SliceRegistry,
    StorageKind,
    UninitializedKeyError,
    create_action,
)


class TestLifecycle:
    def test_operations_before_initialize_raise(self):
        r = SliceRegistry(HostStore())
        with pytest.raises(NotInitializedError):
            r.set("a", 1)
        with pytest.raises(NotInitializedError):
            r.get("a")

    def test_non_string_key(self, registry):
        with pytest.raises(InvalidKeyError):
            registry.set(42, "x")
        with pytest.raises(TypeError):
            registry.get(None)

    def test_declared_keys_from_snapshot(self, registry):
        assert registry.declared_keys == {"config", "count"}

    def test_keys_added_after_initialize_are_not_declared(self, registry, host):
        registry.set("late", 1)
        assert "late" not in registry.declared_keys

    def test_context_manager(self):
        with SliceRegistry(HostStore()) as r:
            assert r.initialized
            r.set("a", 1)
            assert r.current("a") == 1

    def test_initialize_idempotent(self, registry):
        registry.set("a", 1)
        registry.initialize()
        assert registry.current("a") == 1


class TestSet:
    def test_first_value_unwrapped(self, registry):
        registry.set("user", {"name": "Alice"})
        seen = []
        registry.get("user").subscribe(seen.append)
        assert seen == [{"name": "Alice"}]

    def test_declared_key_ignored(self, registry, host, caplog):
        before = host.snapshot()
        with caplog.at_level(logging.WARNING, logger="dynastore.registry"):
            registry.set("count", 5)
        assert host.snapshot() == before
        assert "declared key 'count'" in caplog.text
        assert not registry.has("count")

    def test_declared_key_quiet_without_dev_mode(self, make_registry, caplog):
        r = make_registry(settings=Settings(dev_mode=False, persist_debounce=0))
        with caplog.at_level(logging.WARNING, logger="dynastore.registry"):
            r.set("count", 5)
        assert caplog.text == ""
        assert r.current("count") == 0

    def test_identical_value_notifies_once(self, registry):
        registry.set("k", [1, 2])
        seen = []
        registry.get("k").subscribe(seen.append)
        registry.set("k", [1, 2])
        assert seen == [[1, 2]]
        registry.set("k", [3])
        assert seen == [[1, 2], [3]]

    def test_identical_value_keeps_state(self, registry, host):
        registry.set("k", "v")
        state = host.state.peek()
        registry.set("k", "v")
        assert host.state.peek() is state

    def test_slice_created_once(self, registry, host):
        registry.set("k", 1)
        slice_ = registry._slices["k"]
        registry.set("k", 2)
        assert registry._slices["k"] is slice_
        assert host.has_reducer("k")
        assert registry.keys() == ["k"]

    def test_writes_in_order(self, registry):
        registry.set("k", 0)
        seen = []
        registry.get("k").subscribe(seen.append)
        for i in range(1, 5):
            registry.set("k", i)
        assert seen == [0, 1, 2, 3, 4]

    def test_other_keys_do_not_notify(self, registry):
        registry.set("a", 1)
        registry.set("b", 1)
        seen = []
        registry.get("a").subscribe(seen.append)
        registry.set("b", 2)
        assert seen == [1]


class TestGet:
    def test_unset_dynamic_key_raises(self, registry):
        with pytest.raises(UninitializedKeyError):
            registry.get("nope")

    def test_declared_key_observes_host(self, registry, host):
        seen = []
        registry.get("count").subscribe(seen.append)
        host.dispatch(create_action("[count] Replace")(3))
        assert seen == [0, 3]

    def test_view_get(self, registry):
        registry.set("k", "a")
        view = registry.get("k")
        registry.set("k", "b")
        assert view.get() == "b"

    def test_outside_scope_warns_once_per_key(self, registry, caplog):
        registry.set("k", 1)
        with caplog.at_level(logging.WARNING, logger="dynastore.registry"):
            registry.get("k")
            registry.get("k")
        assert caplog.text.count("outside a scope") == 1

    def test_inside_scope_does_not_warn(self, registry, caplog):
        registry.set("k", 1)
        with caplog.at_level(logging.WARNING, logger="dynastore.registry"):
            with registry.scope():
                registry.get("k")
        assert "outside a scope" not in caplog.text

    def test_scope_releases_subscriptions(self, registry):
        registry.set("k", 1)
        seen = []
        with registry.scope():
            registry.get("k").subscribe(seen.append)
            registry.set("k", 2)
        registry.set("k", 3)
        assert seen == [1, 2]

    def test_unscoped_released_on_close(self, make_registry):
        r = make_registry()
        r.set("k", 1)
        seen = []
        r.get("k").subscribe(seen.append)
        r.close()
        r.set("k", 2)
        assert seen == [1]

    def test_explicit_dispose(self, registry):
        registry.set("k", 1)
        seen = []
        dispose = registry.get("k").subscribe(seen.append)
        dispose()
        registry.set("k", 2)
        assert seen == [1]


class TestRemove:
    def test_get_after_remove_raises(self, registry):
        registry.set("user", {"name": "Alice"})
        registry.remove("user")
        with pytest.raises(UninitializedKeyError):
            registry.get("user")

    def test_unknown_key_is_noop(self, registry, host):
        before = host.snapshot()
        registry.remove("never")
        registry.remove("never")
        assert host.snapshot() == before

    def test_declared_key_refused(self, registry, host):
        registry.remove("count")
        assert host.has_reducer("count")
        assert host.snapshot()["count"] == 0

    def test_uninstalls_reducer(self, registry, host):
        registry.set("k", 1)
        registry.remove("k")
        assert not host.has_reducer("k")
        assert "k" not in host.snapshot()
        assert not registry.has("k")

    def test_set_after_remove_starts_fresh(self, registry):
        registry.set("k", 1)
        registry.remove("k")
        registry.set("k", 2)
        assert registry.current("k") == 2
        assert registry.has("k")

    def test_existing_view_sees_removal(self, registry):
        registry.set("k", 1)
        seen = []
        registry.get("k").subscribe(seen.append)
        registry.remove("k")
        assert seen == [1, None]

    def test_existing_view_ends_after_removal(self, registry):
        registry.set("k", 1)
        seen = []
        view = registry.get("k")
        view.subscribe(seen.append)
        registry.remove("k")
        registry.set("k", 2)
        assert seen == [1, None]
        assert view.get() is None
        assert registry.get("k").get() == 2

    def test_cascades_to_effect_and_persistence(self, registry, timers, backends):
        registry.set("k", 1)
        registry.add_effect("k", lambda: 5, poll_interval=1.0, run_immediately=False)
        registry.enable_persistence("k", StorageKind.SESSION)
        assert backends[StorageKind.SESSION].get_item("k") == "1"

        registry.remove("k")

        assert timers.last.disposed
        assert not registry.effects.has_effect("k")
        assert not registry.persistence.is_persisted("k")
        assert backends[StorageKind.SESSION].get_item("k") is None


class TestProjectionLifetime:
    def test_churned_keys_release_state_observers(self, make_registry, host):
        r = make_registry(host)
        baseline = len(host.state._observers)
        for i in range(50):
            key = f"k{i}"
            r.set(key, i)
            with r.scope():
                view = r.get(key)
                view.subscribe(lambda v: None)
                assert view.get() == i
            r.remove(key)
        assert len(host.state._observers) == baseline

    def test_unsubscribed_dynamic_view_detaches(self, make_registry, host):
        r = make_registry(host)
        r.set("k", 1)
        baseline = len(host.state._observers)
        dispose = r.get("k").subscribe(lambda v: None)
        assert len(host.state._observers) == baseline + 1
        dispose()
        assert len(host.state._observers) == baseline

    def test_declared_gets_share_one_projection(self, make_registry, host):
        r = make_registry(host)
        baseline = len(host.state._observers)
        for _ in range(50):
            r.get("count").subscribe(lambda v: None)()
        assert len(host.state._observers) == baseline
        seen = []
        with r.scope():
            r.get("count").subscribe(seen.append)
            r.get("count").subscribe(seen.append)
            assert len(host.state._observers) == baseline + 1
            host.dispatch(create_action("[count] Replace")(3))
        assert seen == [0, 0, 3, 3]
        assert len(host.state._observers) == baseline


class TestThreshold:
    def _warnings(self, caplog):
        return [r for r in caplog.records if "dynamic keys registered" in r.getMessage()]

    def test_one_warning_past_threshold(self, registry, caplog):
        with caplog.at_level(logging.WARNING, logger="dynastore.registry"):
            for i in range(105):
                registry.set(f"k{i}", i)
        assert len(self._warnings(caplog)) == 1

    def test_no_warning_at_threshold(self, registry, caplog):
        with caplog.at_level(logging.WARNING, logger="dynastore.registry"):
            for i in range(100):
                registry.set(f"k{i}", i)
        assert self._warnings(caplog) == []

    def test_rearms_after_dropping_back(self, make_registry, caplog):
        r = make_registry(settings=Settings(warn_threshold=2, persist_debounce=0))
        with caplog.at_level(logging.WARNING, logger="dynastore.registry"):
            for key in "abc":
                r.set(key, 0)
            r.remove("c")
            r.set("d", 0)
            r.set("e", 0)
        assert len(self._warnings(caplog)) == 2

    def test_never_a_hard_limit(self, make_registry):
        r = make_registry(settings=Settings(warn_threshold=1, persist_debounce=0))
        for i in range(10):
            r.set(f"k{i}", i)
        assert len(r.keys()) == 10
