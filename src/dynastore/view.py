"""Live views — push-based subscriptions to a projection of store state."""

from __future__ import annotations

import logging
from typing import Callable, Generic, TypeVar

from dynastore.reaction import Reaction
from dynastore.scope import Scope
from dynastore.stream import EventStream

logger = logging.getLogger(__name__)

T = TypeVar("T")

Disposer = Callable[[], None]


class _Failure:
    __slots__ = ("exc",)

    def __init__(self, exc: BaseException) -> None:
        self.exc = exc


class LiveView(Generic[T]):
    """A value now and on every subsequent change.

    Each subscribe() gets its own reaction over the projection. Subscriptions
    are attached to the scope the view was obtained in; without one they live
    until the returned disposer is called.
    """

    def __init__(
        self,
        read: Callable[[], T],
        *,
        key: str | None = None,
        scope: Scope | None = None,
    ) -> None:
        self._read = read
        self._key = key
        self._scope = scope

    @property
    def key(self) -> str | None:
        return self._key

    def get(self) -> T:
        """Current value of the projection."""
        return self._read()

    def subscribe(
        self,
        on_next: Callable[[T], None],
        on_error: Callable[[BaseException], None] | None = None,
    ) -> Disposer:
        """Deliver the current value, then every distinct subsequent value.

        If the projection raises, the error goes to on_error (or the log) and
        the subscription ends. Exceptions raised by the callbacks themselves
        are logged and never reach whoever wrote to the store.
        """

        def _data():
            try:
                return self._read()
            except Exception as exc:
                return _Failure(exc)

        def _deliver(value) -> None:
            if isinstance(value, _Failure):
                r.dispose()
                if on_error is None:
                    logger.error(
                        "View on %r failed; subscription closed", self._key, exc_info=value.exc
                    )
                else:
                    self._call(on_error, value.exc)
                return
            self._call(on_next, value)

        r = Reaction(_data, _deliver)
        r._run()
        if self._scope is not None:
            return self._scope.add(r.dispose)
        return r.dispose

    def to_stream(self) -> EventStream[T]:
        """Expose the view as a hot stream. Disposing the stream unsubscribes.

        The current value is pushed before anything can subscribe to the
        stream, so stream subscribers only see later changes.
        """
        stream: EventStream[T] = EventStream()
        stream.on_dispose(self.subscribe(stream.emit))
        return stream

    def _call(self, fn, arg) -> None:
        try:
            fn(arg)
        except Exception:
            logger.exception("Subscriber to %r raised", self._key)

    def __repr__(self) -> str:
        return f"LiveView({self._key!r})"
