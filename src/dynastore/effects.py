"""Effect scheduler — bind external producers to registry keys.

A producer is any callable returning a value, a concurrent.futures.Future or
an awaitable. Each key has at most one effect. An effect runs on add (unless
run_immediately=False), on every polling tick if poll_interval is set, and on
recall_effect(). Non-None results, after the optional transform, are written
to the key.

Producer, transform and delivery failures are logged and swallowed; they
never reach the caller and never stop a polling schedule.
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import inspect
import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Callable

from dynastore.autobind import Resolver
from dynastore.config import Settings
from dynastore.watch import poll, watch

logger = logging.getLogger(__name__)

Runner = Callable[[Callable[[], None]], Any]
TimerFactory = Callable[[float, Callable[[], None]], Any]


def thread_runner(fn: Callable[[], None]) -> None:
    watch(fn)


@dataclass(eq=False)
class EffectRegistration:
    key: str
    producer: Callable
    context: Any = None
    args: tuple = ()
    poll_interval: float | None = None
    run_immediately: bool = True
    transform: Callable[[Any], Any] | None = None
    self_contained: bool = False
    bound: Callable | None = field(default=None, repr=False)
    timer: Any = field(default=None, repr=False)
    in_flight: int = 0


class EffectScheduler:
    """Runs registered producers and hands their results to deliver(registration, value)."""

    def __init__(
        self,
        deliver: Callable[[EffectRegistration, Any], None],
        *,
        resolver: Resolver | None = None,
        settings: Settings | None = None,
        runner: Runner | None = None,
        timer_factory: TimerFactory | None = None,
    ) -> None:
        self._deliver = deliver
        self._resolver = resolver if resolver is not None else Resolver()
        self._settings = settings if settings is not None else Settings()
        self._runner = runner if runner is not None else thread_runner
        self._timer_factory = timer_factory if timer_factory is not None else poll
        self._effects: dict[str, EffectRegistration] = {}
        self._lock = threading.RLock()

    def has_effect(self, key: str) -> bool:
        return key in self._effects

    def registration(self, key: str) -> EffectRegistration | None:
        return self._effects.get(key)

    def keys(self) -> list[str]:
        return list(self._effects)

    def is_current(self, reg: EffectRegistration) -> bool:
        """False once reg has been removed or replaced."""
        return self._effects.get(reg.key) is reg

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
        """Install an effect for key, replacing any existing one.

        The producer's receiver is resolved here, so a ContextResolutionError
        reaches the caller instead of a background thread.
        """
        if poll_interval is not None and poll_interval <= 0:
            raise ValueError(f"poll_interval must be positive, got {poll_interval!r}")
        reg = EffectRegistration(
            key=key,
            producer=producer,
            context=context,
            args=tuple(args),
            poll_interval=poll_interval,
            run_immediately=run_immediately,
            transform=transform,
            self_contained=self_contained,
        )
        reg.bound = producer if self_contained else self._resolver.resolve(producer, context)

        with self._lock:
            self.remove_effect(key)
            self._effects[key] = reg
            if poll_interval is not None:
                reg.timer = self._timer_factory(poll_interval, lambda: self._tick(reg))
        logger.debug("Effect added for %r (poll_interval=%s)", key, poll_interval)

        if run_immediately:
            self._launch(reg)
        return reg

    def recall_effect(self, key: str, args: tuple | list | None = None) -> None:
        """Run key's effect now, optionally with new arguments for this and later runs."""
        with self._lock:
            reg = self._effects.get(key)
            if reg is None:
                logger.warning("recall_effect(%r): no effect registered", key)
                return
            if args is not None:
                reg.args = tuple(args)
        self._launch(reg)

    def remove_effect(self, key: str) -> None:
        """Cancel key's timer and forget its effect. Safe to call for unknown keys."""
        with self._lock:
            reg = self._effects.pop(key, None)
        if reg is None:
            return
        if reg.timer is not None:
            reg.timer.dispose()
            reg.timer = None
        logger.debug("Effect removed for %r", key)

    def close(self) -> None:
        for key in list(self._effects):
            self.remove_effect(key)

    def _tick(self, reg: EffectRegistration) -> None:
        if not self.is_current(reg):
            return
        if self._settings.coalesce_polls and reg.in_flight:
            logger.debug("Skipping tick for %r: previous run still pending", reg.key)
            return
        self._launch(reg)

    def _launch(self, reg: EffectRegistration) -> None:
        with self._lock:
            reg.in_flight += 1
            args = reg.args
        try:
            self._runner(lambda: self._execute(reg, args))
        except BaseException:
            with self._lock:
                reg.in_flight -= 1
            raise

    def _execute(self, reg: EffectRegistration, args: tuple) -> None:
        try:
            result = _settle(reg.bound(*args))
            if result is None:
                return
            if reg.transform is not None:
                result = reg.transform(result)
                if result is None:
                    return
            if not self.is_current(reg):
                logger.debug("Discarding result for %r: effect was removed", reg.key)
                return
            self._deliver(reg, result)
        except Exception:
            logger.exception("Effect for %r failed", reg.key)
        finally:
            with self._lock:
                reg.in_flight -= 1


def _settle(result: Any) -> Any:
    """Wait for a Future or awaitable; plain values pass through."""
    if isinstance(result, concurrent.futures.Future):
        return result.result()
    if inspect.isawaitable(result):
        return asyncio.run(_await(result))
    return result


async def _await(awaitable):
    return await awaitable
