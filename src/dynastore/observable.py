"""Observable values — the cell a host store keeps its state in.

When an Observable is read inside a projection or view subscription, the
dependency is registered automatically. When it changes, every dependent is
scheduled for re-evaluation.

Thread safety: call set_scheduler() once from the main thread. After that,
any .set() from a background thread (effect runners, polling timers) is
marshaled through the scheduler. Main-thread .set() remains synchronous.
"""

from __future__ import annotations

import threading
from typing import Generic, TypeVar

from dynastore._tracking import current_derivation, same_value, schedule

T = TypeVar("T")

_scheduler = None
_scheduler_thread = None


def set_scheduler(scheduler) -> None:
    """Set the global thread scheduler for cross-thread store writes.

    Call once from the main/UI thread:
        dynastore.set_scheduler(app.call_from_thread)

    Pass None to go back to applying writes on whichever thread issues them.
    """
    global _scheduler, _scheduler_thread
    _scheduler = scheduler
    _scheduler_thread = threading.current_thread() if scheduler is not None else None


def run_on_scheduler(fn) -> None:
    """Call fn now, or hand it to the scheduler when off the scheduler thread."""
    if _scheduler is not None and threading.current_thread() is not _scheduler_thread:
        _scheduler(fn)
    else:
        fn()


class Observable(Generic[T]):
    """A single observable value with automatic dependency tracking."""

    __slots__ = ("_value", "_observers", "__weakref__")

    def __init__(self, value: T) -> None:
        self._value = value
        self._observers: set = set()

    def get(self) -> T:
        """Read the value. If inside a derivation, registers the dependency."""
        derivation = current_derivation.get()
        if derivation is not None:
            self._observers.add(derivation)
            derivation._dependencies.add(self)
        return self._value

    def peek(self) -> T:
        """Read the value without registering a dependency."""
        return self._value

    def set(self, value: T) -> None:
        """Write a new value. Auto-marshals from background threads."""
        run_on_scheduler(lambda v=value: self._set_direct(v))

    def _set_direct(self, value: T) -> None:
        if not same_value(self._value, value):
            self._value = value
            self._notify()

    def _notify(self) -> None:
        for observer in list(self._observers):
            schedule(observer)

    def _remove_observer(self, observer) -> None:
        self._observers.discard(observer)

    def __repr__(self) -> str:
        return f"Observable({self._value!r})"
