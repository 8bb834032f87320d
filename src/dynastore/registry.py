"""SliceRegistry — named state slices added to a host store at runtime.

Keys present in the host's state when the registry initializes are
*declared* and read-only through the registry. Any other key becomes a
dynamic slice on its first set(): a reducer answering to its own action type
is installed in the host and a memoized projection is created for reads.
Both are reused until remove(key).

The registry also owns the effect scheduler and persistence synchronizer for
its keys, so removing a key tears down everything attached to it.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Callable

from dynastore.autobind import Resolver
from dynastore.backends import Backend, MemoryBackend, StorageKind
from dynastore.computed import Computed
from dynastore.config import Settings
from dynastore.effects import EffectRegistration, EffectScheduler, Runner, TimerFactory
from dynastore.errors import InvalidKeyError, NotInitializedError, UninitializedKeyError
from dynastore.host import ActionCreator, HostStore, create_action, passthrough
from dynastore.observable import run_on_scheduler
from dynastore.persistence import PersistenceSynchronizer
from dynastore.scope import Scope, active_scope
from dynastore.view import LiveView

logger = logging.getLogger(__name__)


@dataclass(eq=False)
class DynamicSlice:
    key: str
    action: ActionCreator
    reducer: Callable = field(repr=False)
    projection: Computed = field(repr=False)
    removed: bool = False


class SliceRegistry:
    """Runtime-extensible key/value layer over a HostStore.

    Usage:
        with SliceRegistry(host) as registry:
            registry.set("user", {"name": "Alice"})
            with registry.scope():
                registry.get("user").subscribe(print)
    """

    def __init__(
        self,
        host: HostStore,
        *,
        backends: dict[StorageKind, Backend] | None = None,
        settings: Settings | None = None,
        resolver: Resolver | None = None,
        runner: Runner | None = None,
        timer_factory: TimerFactory | None = None,
    ) -> None:
        self._host = host
        self._settings = settings if settings is not None else Settings()
        self._lock = threading.RLock()
        self._initialized = False
        self._declared: frozenset[str] = frozenset()
        self._slices: dict[str, DynamicSlice] = {}
        self._declared_projections: dict[str, Computed] = {}
        self._over_threshold = False
        self._unscoped_warned: set[str] = set()
        # Views obtained outside any scope; released by close().
        self._root_scope = Scope("registry")

        if backends is None:
            backends = {StorageKind.SESSION: MemoryBackend()}
        self._effects = EffectScheduler(
            self._deliver,
            resolver=resolver,
            settings=self._settings,
            runner=runner,
            timer_factory=timer_factory,
        )
        self._persistence = PersistenceSynchronizer(self, backends, self._settings)

    # ─── Lifecycle ───────────────────────────────────────────────────────

    def initialize(self) -> SliceRegistry:
        """Record the declared keys and restore persisted ones. Idempotent."""
        with self._lock:
            if self._initialized:
                return self
            self._declared = frozenset(self._host.snapshot())
            self._initialized = True
            logger.debug("Initialized with %d declared keys", len(self._declared))
            self._persistence.restore()
        return self

    def close(self) -> None:
        """Stop effects, flush persistence, release scope-less views."""
        with self._lock:
            self._effects.close()
            self._persistence.close()
            self._root_scope.close()
            self._root_scope = Scope("registry")

    def __enter__(self) -> SliceRegistry:
        return self.initialize()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    @property
    def initialized(self) -> bool:
        return self._initialized

    @property
    def settings(self) -> Settings:
        return self._settings

    @property
    def declared_keys(self) -> frozenset[str]:
        return self._declared

    @property
    def effects(self) -> EffectScheduler:
        return self._effects

    @property
    def persistence(self) -> PersistenceSynchronizer:
        return self._persistence

    def scope(self, name: str = "scope") -> Scope:
        """A Scope to use with `with`: views obtained inside it are released on exit."""
        return Scope(name)

    # ─── Slices ──────────────────────────────────────────────────────────

    def set(self, key: str, value: Any) -> None:
        """Write value to key, creating the slice on first use.

        Declared keys are never written; the attempt is logged and ignored.
        Called off the scheduler thread, the write is handed to the scheduler
        and the registry lock is taken there.
        """
        self._check(key)
        run_on_scheduler(lambda: self._set(key, value))

    def _set(self, key: str, value: Any) -> None:
        with self._lock:
            if key in self._declared:
                if self._settings.dev_mode:
                    logger.warning("Ignoring set() on declared key %r", key)
                return
            slice_ = self._slices.get(key)
            if slice_ is None:
                slice_ = self._create_slice(key)
            self._host.dispatch(slice_.action(value))

    def get(self, key: str) -> LiveView:
        """Live view of key's current and future values.

        Raises UninitializedKeyError for a dynamic key nobody has set yet.
        Inside `with registry.scope():` the view's subscriptions end with the
        scope; otherwise they last until disposed (or until close()).
        """
        self._check(key)
        scope = active_scope()
        if scope is None:
            if self._settings.dev_mode and key not in self._unscoped_warned:
                self._unscoped_warned.add(key)
                logger.warning(
                    "get(%r) outside a scope: subscriptions must be disposed by the caller", key
                )
            scope = self._root_scope
        return self._view(key, scope)

    def remove(self, key: str) -> None:
        """Drop a dynamic slice with its effect and persistence. No-op for unknown keys."""
        self._check(key)
        run_on_scheduler(lambda: self._remove(key))

    def _remove(self, key: str) -> None:
        with self._lock:
            if key in self._declared:
                if self._settings.dev_mode:
                    logger.warning("Ignoring remove() on declared key %r", key)
                return
            if key not in self._slices:
                logger.debug("remove(%r): no such dynamic key", key)
                return
            self._effects.remove_effect(key)
            self._persistence.disable(key)
            self._host.remove_reducer(key)
            slice_ = self._slices.pop(key)
            slice_.removed = True
            slice_.projection.dispose()
            self._update_threshold()
            logger.debug("Removed slice %r", key)

    def has(self, key: str) -> bool:
        """True if key is a live dynamic slice."""
        return key in self._slices

    def is_declared(self, key: str) -> bool:
        return key in self._declared

    def keys(self) -> list[str]:
        return list(self._slices)

    def current(self, key: str) -> Any:
        """key's value right now, without subscribing."""
        return self._host.snapshot().get(key)

    def _view(self, key: str, scope: Scope | None = None) -> LiveView:
        with self._lock:
            if key in self._declared:
                projection = self._declared_projections.get(key)
                if projection is None:
                    projection = self._host.selector(lambda state: state.get(key))
                    self._declared_projections[key] = projection
                return LiveView(projection.get, key=key, scope=scope)
            slice_ = self._slices.get(key)
            if slice_ is None:
                raise UninitializedKeyError(key)

        def read() -> Any:
            # A removed slice's projection is disposed; reading it would re-attach it.
            if slice_.removed:
                return None
            return slice_.projection.get()

        return LiveView(read, key=key, scope=scope)

    def _create_slice(self, key: str) -> DynamicSlice:
        action = create_action(f"[{key}] Set")
        reducer = passthrough(None, action)
        self._host.add_reducer(key, reducer)
        slice_ = DynamicSlice(
            key=key,
            action=action,
            reducer=reducer,
            projection=self._host.selector(lambda state: state.get(key)),
        )
        self._slices[key] = slice_
        self._update_threshold()
        return slice_

    def _update_threshold(self) -> None:
        over = len(self._slices) > self._settings.warn_threshold
        if over and not self._over_threshold:
            logger.warning(
                "More than %d dynamic keys registered (%d)",
                self._settings.warn_threshold,
                len(self._slices),
            )
        self._over_threshold = over

    def _check(self, key: Any) -> None:
        if not self._initialized:
            raise NotInitializedError("SliceRegistry.initialize() must be called first")
        if not isinstance(key, str):
            raise InvalidKeyError(f"keys must be str, not {type(key).__name__}")

    # ─── Persistence ─────────────────────────────────────────────────────

    def enable_persistence(self, key: str, kind: StorageKind = StorageKind.LOCAL) -> None:
        """Mirror key into the kind backend and restore it on the next start.

        Raises UnknownKeyError if key has no dynamic slice yet.
        """
        self._check(key)
        with self._lock:
            self._persistence.enable(key, kind)

    def disable_persistence(self, key: str) -> None:
        self._check(key)
        with self._lock:
            self._persistence.disable(key)

    # ─── Effects ─────────────────────────────────────────────────────────

    def add_effect(
        self,
        key: str,
        producer: Callable,
        *,
        context: Any = None,
        args: tuple | list = (),
        poll_interval: float | None = None,
        run_immediately: bool = True,
        transform: Callable[[Any], Any] | None = None,
        self_contained: bool = False,
    ) -> EffectRegistration:
        """Feed key from producer: now, every poll_interval seconds, and on recall_effect()."""
        self._check(key)
        return self._effects.add_effect(
            key,
            producer,
            context=context,
            args=args,
            poll_interval=poll_interval,
            run_immediately=run_immediately,
            transform=transform,
            self_contained=self_contained,
        )

    def recall_effect(self, key: str, args: tuple | list | None = None) -> None:
        self._check(key)
        self._effects.recall_effect(key, args)

    def remove_effect(self, key: str) -> None:
        self._check(key)
        self._effects.remove_effect(key)

    def _deliver(self, reg: EffectRegistration, value: Any) -> None:
        # Runs on a worker: never hold the registry lock while the scheduler blocks.
        def _apply() -> None:
            with self._lock:
                if not self._effects.is_current(reg):
                    logger.debug("Dropping late result for %r", reg.key)
                    return
                self._set(reg.key, value)

        run_on_scheduler(_apply)

    def __repr__(self) -> str:
        return f"SliceRegistry({len(self._declared)} declared, {len(self._slices)} dynamic)"
