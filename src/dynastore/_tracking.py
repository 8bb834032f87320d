"""Dependency tracking and notification batching.

A contextvar records which derivation (projection or view subscription) is
currently evaluating, so every Observable read inside it becomes a dependency.

Batching: store writes inside `with transaction()` accumulate invalidations
and flush them once the outermost scope exits.
"""

from __future__ import annotations

import contextvars
import threading
from contextlib import contextmanager
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from dynastore.computed import Computed
    from dynastore.reaction import Reaction

    Derivation = Computed | Reaction

current_derivation: contextvars.ContextVar[Derivation | None] = contextvars.ContextVar(
    "current_derivation", default=None
)

# Batch depth is per thread: a timer thread delivering a result must not
# flush (or be deferred by) a batch opened on the caller's thread.
_local = threading.local()


def _state():
    if not hasattr(_local, "depth"):
        _local.depth = 0
        _local.pending = []
    return _local


def same_value(old: object, new: object) -> bool:
    """The no-op rule shared by stores, projections and views."""
    return old is new or old == new


def begin_batch() -> None:
    _state().depth += 1


def end_batch() -> None:
    state = _state()
    state.depth -= 1
    if state.depth == 0:
        _flush_pending(state)


def schedule(derivation: Derivation) -> None:
    """Run a derivation now, or defer it to the end of the current batch."""
    state = _state()
    if state.depth > 0:
        if derivation not in state.pending:
            state.pending.append(derivation)
    else:
        derivation._run()


def _flush_pending(state) -> None:
    # FIFO so writes to one key reach subscribers in issue order.
    while state.pending:
        batch = list(state.pending)
        state.pending.clear()
        for derivation in batch:
            derivation._run()


def get_pending_count() -> int:
    """Number of derivations waiting on the current thread. Useful for testing."""
    return len(_state().pending)


@contextmanager
def transaction():
    """Defer view notifications until the block exits.

    Usage:
        with transaction():
            registry.set("a", 1)
            registry.set("b", 2)
            # subscribers see both values here, not one at a time
    """
    begin_batch()
    try:
        yield
    finally:
        end_batch()
