"""Shared fixtures: deterministic runners and timers for scheduling tests."""

import pytest

from dynastore import HostStore, MemoryBackend, Settings, SliceRegistry, StorageKind
from dynastore.observable import set_scheduler


def run_now(fn):
    """Runner that executes effects inline on the calling thread."""
    fn()


class ManualTimer:
    """Polling timer that only ticks when the test calls fire()."""

    def __init__(self, interval, fn):
        self.interval = interval
        self._fn = fn
        self.disposed = False

    def fire(self):
        if not self.disposed:
            self._fn()

    def dispose(self):
        self.disposed = True


class ManualTimers:
    def __init__(self):
        self.created = []

    def __call__(self, interval, fn):
        timer = ManualTimer(interval, fn)
        self.created.append(timer)
        return timer

    @property
    def last(self):
        return self.created[-1]


DEFAULTS = {"config": {"debug": False}, "count": 0}


@pytest.fixture(autouse=True)
def _no_scheduler():
    yield
    set_scheduler(None)


@pytest.fixture
def timers():
    return ManualTimers()


@pytest.fixture
def backends():
    return {StorageKind.LOCAL: MemoryBackend(), StorageKind.SESSION: MemoryBackend()}


@pytest.fixture
def host():
    return HostStore.from_defaults(DEFAULTS)


@pytest.fixture
def make_registry(backends, timers):
    created = []

    def _make(host=None, **kwargs):
        kwargs.setdefault("backends", backends)
        kwargs.setdefault("runner", run_now)
        kwargs.setdefault("timer_factory", timers)
        kwargs.setdefault("settings", Settings(persist_debounce=0))
        registry = SliceRegistry(host or HostStore.from_defaults(DEFAULTS), **kwargs)
        created.append(registry)
        return registry.initialize()

    yield _make
    for registry in created:
        registry.close()


@pytest.fixture
def registry(make_registry, host):
    return make_registry(host)
