"""HostStore — an in-memory unidirectional state container.

The registry only needs four things from its host: a snapshot of the whole
state, per-key reducer install/uninstall, dispatch, and selectors. HostStore
provides exactly that on top of one Observable holding the state dict; any
object with the same methods can stand in for it.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Callable

from dynastore._tracking import same_value
from dynastore.computed import Computed
from dynastore.observable import Observable, run_on_scheduler
from dynastore.view import LiveView

logger = logging.getLogger(__name__)

Reducer = Callable[[Any, "Action"], Any]


@dataclass(frozen=True)
class Action:
    type: str
    payload: Any = field(default=None, compare=False)


INIT = Action("@@dynastore/init")


class ActionCreator:
    """Callable factory for one action type: creator(value) -> Action."""

    __slots__ = ("type",)

    def __init__(self, type: str) -> None:
        self.type = type

    def __call__(self, payload: Any = None) -> Action:
        return Action(self.type, payload)

    def matches(self, action: Action) -> bool:
        return action.type == self.type

    def __repr__(self) -> str:
        return f"ActionCreator({self.type!r})"


def create_action(type: str) -> ActionCreator:
    return ActionCreator(type)


def passthrough(default: Any, creator: ActionCreator | None = None) -> Reducer:
    """Reducer that starts at default and takes the payload of creator's actions."""

    def reducer(state, action: Action):
        if state is None and action is INIT:
            return default
        if creator is not None and creator.matches(action):
            return action.payload
        return state

    return reducer


class HostStore:
    """Reducer-driven state container with observable state."""

    def __init__(self, reducers: dict[str, Reducer] | None = None) -> None:
        self._lock = threading.RLock()
        self._reducers: dict[str, Reducer] = dict(reducers or {})
        self._state: Observable[dict] = Observable(
            {key: reducer(None, INIT) for key, reducer in self._reducers.items()}
        )

    @classmethod
    def from_defaults(cls, schema: dict[str, Any]) -> HostStore:
        """Static slices with fixed defaults; each accepts `[key] Replace` actions."""
        return cls(
            {key: passthrough(value, create_action(f"[{key}] Replace")) for key, value in schema.items()}
        )

    @property
    def state(self) -> Observable[dict]:
        return self._state

    def snapshot(self) -> dict:
        return dict(self._state.peek())

    def has_reducer(self, key: str) -> bool:
        return key in self._reducers

    def add_reducer(self, key: str, reducer: Reducer) -> None:
        def apply(state: dict) -> dict:
            self._reducers[key] = reducer
            return {**state, key: reducer(state.get(key), INIT)}

        self._commit(apply)

    def remove_reducer(self, key: str) -> None:
        def apply(state: dict) -> dict:
            if self._reducers.pop(key, None) is None:
                return state
            return {k: v for k, v in state.items() if k != key}

        self._commit(apply)

    def dispatch(self, action: Action) -> None:
        """Run every reducer; replace state only if some slice changed."""

        def apply(state: dict) -> dict:
            changed = {}
            for key, reducer in self._reducers.items():
                old = state.get(key)
                new = reducer(old, action)
                if not same_value(old, new):
                    changed[key] = new
            if not changed:
                logger.debug("Action %s changed nothing", action.type)
                return state
            return {**state, **changed}

        self._commit(apply)

    def _commit(self, apply: Callable[[dict], dict]) -> None:
        # Reducers run on the scheduler thread against the latest state.
        def _run() -> None:
            with self._lock:
                self._state._set_direct(apply(self._state.peek()))

        run_on_scheduler(_run)

    def selector(self, projection: Callable[[dict], Any]) -> Computed:
        """Memoized projection of the whole state."""
        return Computed(lambda: projection(self._state.get()))

    def select(self, projection: Callable[[dict], Any], **view_options) -> LiveView:
        return LiveView(self.selector(projection).get, **view_options)

    def __repr__(self) -> str:
        return f"HostStore({sorted(self._reducers)})"
