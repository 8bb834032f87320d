"""Computed values — memoized projections over store state.

A Computed wraps a function. When evaluated it tracks which observables the
function reads and caches the result. When a dependency changes the cache is
invalidated and the next read re-evaluates. Read projections for slices are
Computeds over the host store's state cell.
"""

from __future__ import annotations

from typing import Callable, Generic, TypeVar

from dynastore._tracking import current_derivation, schedule

T = TypeVar("T")

_UNSET = object()


class Computed(Generic[T]):
    """A derived value that auto-tracks dependencies and caches the result."""

    __slots__ = ("_fn", "_dependencies", "_observers", "_dirty", "_cached", "__weakref__")

    def __init__(self, fn: Callable[[], T]) -> None:
        self._fn = fn
        self._dependencies: set = set()
        self._observers: set = set()
        self._dirty = True
        self._cached: object = _UNSET

    def get(self) -> T:
        """Read the computed value. Recomputes if dirty."""
        derivation = current_derivation.get()
        if derivation is not None:
            self._observers.add(derivation)
            derivation._dependencies.add(self)

        if self._dirty:
            self._recompute()

        return self._cached

    def _recompute(self) -> None:
        previous = self._dependencies
        self._dependencies = set()
        token = current_derivation.set(self)
        try:
            self._cached = self._fn()
        finally:
            current_derivation.reset(token)
            for dep in previous - self._dependencies:
                dep._remove_observer(self)

        self._dirty = False

    def _run(self) -> None:
        """Mark dirty and propagate; recomputation waits for the next .get()."""
        if not self._dirty:
            self._dirty = True
            for observer in list(self._observers):
                schedule(observer)

    def _remove_observer(self, observer) -> None:
        self._observers.discard(observer)
        if not self._observers:
            # Last observer gone: detach until the next read.
            self._suspend()

    def _suspend(self) -> None:
        for dep in self._dependencies:
            dep._remove_observer(self)
        self._dependencies.clear()
        self._dirty = True
        self._cached = _UNSET

    def dispose(self) -> None:
        """Disconnect from all dependencies and observers."""
        self._observers.clear()
        self._suspend()

    def __repr__(self) -> str:
        state = "dirty" if self._dirty else f"cached={self._cached!r}"
        name = getattr(self._fn, "__name__", "projection")
        return f"Computed({name}, {state})"
