"""Reactions — side effects triggered by store changes.

reaction(data_fn, effect_fn) tracks whatever data_fn reads and calls
effect_fn with the new result whenever that result changes. Live-view
subscriptions and persistence mirroring are both reactions.
"""

from __future__ import annotations

from typing import Callable, TypeVar

from dynastore._tracking import current_derivation, same_value

T = TypeVar("T")


class Reaction:
    """Tracks data_fn's dependencies; calls effect_fn when its result changes."""

    __slots__ = (
        "_data_fn",
        "_effect_fn",
        "_dependencies",
        "_disposed",
        "_last_value",
        "_initialized",
        "__weakref__",
    )

    def __init__(self, data_fn: Callable, effect_fn: Callable) -> None:
        self._data_fn = data_fn
        self._effect_fn = effect_fn
        self._dependencies: set = set()
        self._disposed = False
        self._last_value = None
        self._initialized = False

    @property
    def disposed(self) -> bool:
        return self._disposed

    def _track(self):
        previous = self._dependencies
        self._dependencies = set()
        token = current_derivation.set(self)
        try:
            return self._data_fn()
        finally:
            current_derivation.reset(token)
            # Dependencies read again keep their link to us.
            for dep in previous - self._dependencies:
                dep._remove_observer(self)

    def _run(self) -> None:
        if self._disposed:
            return

        new_value = self._track()

        if not self._initialized or not same_value(self._last_value, new_value):
            self._last_value = new_value
            self._initialized = True
            self._effect_fn(new_value)

    def dispose(self) -> None:
        """Stop this reaction. Disconnects from all dependencies."""
        self._disposed = True
        for dep in self._dependencies:
            dep._remove_observer(self)
        self._dependencies.clear()

    def __repr__(self) -> str:
        state = "disposed" if self._disposed else "active"
        name = getattr(self._data_fn, "__name__", "data_fn")
        return f"Reaction({name}, {state})"


def reaction(
    data_fn: Callable[[], T],
    effect_fn: Callable[[T], None],
    *,
    fire_immediately: bool = False,
) -> Reaction:
    """Track data_fn's observables; call effect_fn when the result changes.

    Returns the reaction (call .dispose() to stop).

    Usage:
        state = Observable({"user": None})
        seen = []
        r = reaction(lambda: state.get()["user"], seen.append, fire_immediately=True)
        # seen == [None]
        state.set({"user": "Alice"})
        # seen == [None, "Alice"]
        r.dispose()
    """
    r = Reaction(data_fn, effect_fn)
    if fire_immediately:
        r._run()
    else:
        r._last_value = r._track()
        r._initialized = True
    return r
