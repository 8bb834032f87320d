"""LazyRegistry — a module-level handle that builds its registry on first use.

    store = LazyRegistry(lambda: SliceRegistry(HostStore.from_defaults(DEFAULTS)))

    store.set("user", {"name": "Alice"})   # registry created and initialized here
"""

from __future__ import annotations

import threading
from typing import Any, Callable

from dynastore.backends import StorageKind
from dynastore.registry import SliceRegistry


class LazyRegistry:
    """Forwards the registry operations to a SliceRegistry created on demand."""

    def __init__(self, factory: Callable[[], SliceRegistry]) -> None:
        self._factory = factory
        self._registry: SliceRegistry | None = None
        self._lock = threading.Lock()

    @property
    def registry(self) -> SliceRegistry:
        """The underlying registry, initialized."""
        if self._registry is None:
            with self._lock:
                if self._registry is None:
                    self._registry = self._factory().initialize()
        return self._registry

    @property
    def created(self) -> bool:
        return self._registry is not None

    def set(self, key: str, value: Any) -> None:
        self.registry.set(key, value)

    def get(self, key: str):
        return self.registry.get(key)

    def remove(self, key: str) -> None:
        self.registry.remove(key)

    def enable_persistence(self, key: str, kind: StorageKind = StorageKind.LOCAL) -> None:
        self.registry.enable_persistence(key, kind)

    def disable_persistence(self, key: str) -> None:
        self.registry.disable_persistence(key)

    def add_effect(self, key: str, producer: Callable, **options):
        return self.registry.add_effect(key, producer, **options)

    def recall_effect(self, key: str, args: tuple | list | None = None) -> None:
        self.registry.recall_effect(key, args)

    def remove_effect(self, key: str) -> None:
        self.registry.remove_effect(key)

    def close(self) -> None:
        """Close the registry if it was ever created; the next call builds a new one."""
        with self._lock:
            registry, self._registry = self._registry, None
        if registry is not None:
            registry.close()
