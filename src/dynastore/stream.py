"""Push-based event stream with operator chaining.

Emit values, subscribe to them, and compose with distinct/debounce.
Each operator returns a new stream; dispose() tears down the chain below it.
The persistence mirror is a view -> distinct -> debounce -> backend chain.
"""

from __future__ import annotations

import threading
from typing import Callable, Generic, TypeVar

from dynastore._tracking import same_value

T = TypeVar("T")

Disposer = Callable[[], None]

_NOTHING = object()


class EventStream(Generic[T]):
    """Push-based event stream with operator chaining."""

    def __init__(self) -> None:
        self._subscribers: list[Callable[[T], None]] = []
        self._children: list[EventStream] = []
        self._disposed = False
        self._parent_disposer: Disposer | None = None
        self._on_dispose: list[Disposer] = []

    @property
    def disposed(self) -> bool:
        return self._disposed

    def emit(self, value: T) -> None:
        """Push a value to all subscribers."""
        if self._disposed:
            return
        # Subscribers may dispose the stream while it is emitting.
        for cb in list(self._subscribers):
            cb(value)

    def subscribe(self, callback: Callable[[T], None]) -> Disposer:
        """Register a callback. Returns a function that removes it."""
        self._subscribers.append(callback)

        def _unsubscribe() -> None:
            try:
                self._subscribers.remove(callback)
            except ValueError:
                pass

        return _unsubscribe

    def distinct(self) -> EventStream[T]:
        """Drop values identical or equal to the previous one."""
        child: EventStream[T] = EventStream()
        child._parent_disposer = self._track_child(child)
        last = [_NOTHING]

        def _on_event(value: T) -> None:
            if last[0] is not _NOTHING and same_value(last[0], value):
                return
            last[0] = value
            child.emit(value)

        self.subscribe(_on_event)
        return child

    def debounce(self, seconds: float) -> DebouncedStream[T]:
        """Coalesce rapid events — emit the last one after a quiet period."""
        child: DebouncedStream[T] = DebouncedStream(seconds)
        child._parent_disposer = self._track_child(child)
        self.subscribe(child._on_event)
        return child

    def on_dispose(self, fn: Disposer) -> None:
        """Run fn when this stream is disposed."""
        if self._disposed:
            fn()
        else:
            self._on_dispose.append(fn)

    def dispose(self) -> None:
        """Tear down this stream and all downstream children."""
        if self._disposed:
            return
        self._disposed = True
        self._subscribers.clear()
        for child in list(self._children):
            child.dispose()
        self._children.clear()
        if self._parent_disposer is not None:
            self._parent_disposer()
            self._parent_disposer = None
        callbacks, self._on_dispose = self._on_dispose, []
        for fn in callbacks:
            fn()

    def _track_child(self, child: EventStream) -> Disposer:
        self._children.append(child)

        def _remove() -> None:
            try:
                self._children.remove(child)
            except ValueError:
                pass

        return _remove


class DebouncedStream(EventStream[T]):
    """Stream produced by debounce().

    Uses threading.Timer (daemon=True). Each new event cancels the pending
    timer so only the last event in a burst fires. flush() emits a pending
    value right away; dispose() drops it.
    """

    def __init__(self, seconds: float) -> None:
        super().__init__()
        self._seconds = seconds
        self._lock = threading.Lock()
        self._timer: threading.Timer | None = None
        self._pending: object = _NOTHING

    @property
    def has_pending(self) -> bool:
        return self._pending is not _NOTHING

    def _on_event(self, value: T) -> None:
        if self._seconds <= 0:
            self.emit(value)
            return
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
            self._pending = value
            t = threading.Timer(self._seconds, self.flush)
            t.daemon = True
            self._timer = t
            t.start()

    def flush(self) -> None:
        """Emit the pending value now, if there is one."""
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
            value, self._pending = self._pending, _NOTHING
        if value is not _NOTHING:
            self.emit(value)

    def dispose(self) -> None:
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
            self._pending = _NOTHING
        super().dispose()
