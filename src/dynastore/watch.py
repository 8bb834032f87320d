"""Background execution for effects: one-shot runs and polling timers.

Results are written back with registry.set(), which goes through the store's
thread marshal (see set_scheduler), so these helpers only manage thread
lifecycle. Each returns a WatchHandle for cleanup via .dispose().
"""

from __future__ import annotations

import logging
import threading
from typing import Callable

logger = logging.getLogger(__name__)


class WatchHandle:
    """Disposable handle for a managed daemon thread."""

    __slots__ = ("_stop",)

    def __init__(self) -> None:
        self._stop = threading.Event()

    @property
    def disposed(self) -> bool:
        return self._stop.is_set()

    def dispose(self) -> None:
        """Signal the thread to stop; wakes a polling thread mid-wait."""
        self._stop.set()

    def wait(self, seconds: float) -> bool:
        """Sleep up to seconds. True if disposed meanwhile."""
        return self._stop.wait(seconds)


def watch(fn: Callable[[], None]) -> WatchHandle:
    """Run fn once in a daemon thread."""
    handle = WatchHandle()
    threading.Thread(target=fn, daemon=True, name="dynastore-effect").start()
    return handle


def poll(interval: float, fn: Callable[[], None]) -> WatchHandle:
    """Call fn every interval seconds until the handle is disposed.

    Ticks do not wait for each other's work: fn is expected to hand the real
    work off (the scheduler's runner does) and return quickly. An exception
    from fn is logged and the schedule continues.
    """
    handle = WatchHandle()

    def _loop() -> None:
        while not handle.wait(interval):
            try:
                fn()
            except Exception:
                logger.exception("Polling tick failed")

    threading.Thread(target=_loop, daemon=True, name="dynastore-poll").start()
    return handle
