"""Scopes — explicit lifetimes for view subscriptions.

Views obtained while a Scope is active attach their subscriptions to it, and
the scope releases them when it closes:

    with registry.scope():
        registry.get("user").subscribe(render)
    # render is no longer called after the block exits
"""

from __future__ import annotations

import contextvars
import itertools
import logging
import threading
from typing import Callable

logger = logging.getLogger(__name__)

Disposer = Callable[[], None]

current_scope: contextvars.ContextVar[Scope | None] = contextvars.ContextVar(
    "current_scope", default=None
)


def active_scope() -> Scope | None:
    return current_scope.get()


class Scope:
    """Collects disposers and runs them, newest first, on close()."""

    def __init__(self, name: str = "scope") -> None:
        self.name = name
        self._disposers: dict[int, Disposer] = {}
        self._ids = itertools.count()
        self._lock = threading.Lock()
        self._closed = False
        self._tokens: list[contextvars.Token] = []

    @property
    def closed(self) -> bool:
        return self._closed

    def __len__(self) -> int:
        return len(self._disposers)

    def add(self, disposer: Disposer) -> Disposer:
        """Attach disposer. Returns a release function that also detaches it.

        Adding to a closed scope releases immediately.
        """
        with self._lock:
            if not self._closed:
                ident = next(self._ids)
                self._disposers[ident] = disposer
            else:
                ident = None
        if ident is None:
            disposer()
            return lambda: None

        def _release() -> None:
            with self._lock:
                fn = self._disposers.pop(ident, None)
            if fn is not None:
                fn()

        return _release

    def close(self) -> None:
        """Release everything attached. Idempotent."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            disposers = list(self._disposers.values())
            self._disposers.clear()
        for fn in reversed(disposers):
            try:
                fn()
            except Exception:
                logger.exception("Disposer failed while closing %s", self.name)

    def __enter__(self) -> Scope:
        self._tokens.append(current_scope.set(self))
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        current_scope.reset(self._tokens.pop())
        self.close()

    def __repr__(self) -> str:
        state = "closed" if self._closed else f"{len(self._disposers)} live"
        return f"Scope({self.name!r}, {state})"
