"""Auto-bind — recover the receiver a bare method reference needs.

Producers are often handed over as plain functions taken off a class
(`UserService.fetch`). Before one can run, it has to be bound to an instance.
Resolver.resolve() tries, in order:

1. an explicit context passed by the caller;
2. a method registered with @preserve_receiver: its owning class is resolved
   through the Injector;
3. a wrapper (functools.wraps) around a resolvable callable, which inherits
   the wrapped callable's receiver;
4. the class named in the function's __qualname__, if that class was
   registered with register_type(). Legacy fallback.

Bound methods, static methods and module-level functions need no receiver
and are returned unchanged.
"""

from __future__ import annotations

import functools
import inspect
import logging
import sys
import threading
import types
from typing import Any, Callable

from dynastore.errors import ContextResolutionError

logger = logging.getLogger(__name__)

_NO_RECEIVER = object()


class BindingRegistry:
    """Which class owns which function, and which classes are known by name."""

    def __init__(self) -> None:
        self._owners: dict[Callable, type] = {}
        self._types: dict[str, type] = {}

    def preserve_receiver(self, fn: Callable) -> Callable:
        """Method decorator: remember the owning class when the class is created."""
        return _PreserveReceiver(self, fn)

    def register_owner(self, fn: Callable, owner: type) -> None:
        self._owners[fn] = owner
        self.register_type(owner)

    def register_type(self, cls: type) -> type:
        """Make cls discoverable by name. Usable as a class decorator."""
        self._types[cls.__name__] = cls
        return cls

    def owner_of(self, fn: Callable) -> type | None:
        return self._owners.get(fn)

    def type_named(self, name: str) -> type | None:
        return self._types.get(name)


class _PreserveReceiver:
    # Only lives in the class namespace until __set_name__ swaps the function back in.
    def __init__(self, registry: BindingRegistry, fn: Callable) -> None:
        self._registry = registry
        self._fn = fn

    def __set_name__(self, owner: type, name: str) -> None:
        self._registry.register_owner(self._fn, owner)
        setattr(owner, name, self._fn)


bindings = BindingRegistry()
preserve_receiver = bindings.preserve_receiver
register_type = bindings.register_type


class Injector:
    """Minimal dependency graph: one shared instance per class."""

    def __init__(self) -> None:
        self._providers: dict[type, Callable[[], Any]] = {}
        self._instances: dict[type, Any] = {}
        self._lock = threading.RLock()

    def provide(self, cls: type, instance_or_factory: Any) -> None:
        """Register an instance of cls, or a zero-argument factory for one."""
        with self._lock:
            self._instances.pop(cls, None)
            if isinstance(instance_or_factory, cls):
                self._instances[cls] = instance_or_factory
            else:
                self._providers[cls] = instance_or_factory

    def resolve(self, cls: type) -> Any:
        """The shared instance of cls, created on first use."""
        with self._lock:
            if cls not in self._instances:
                factory = self._providers.get(cls, cls)
                self._instances[cls] = factory()
            return self._instances[cls]


class Resolver:
    """Binds producer callables to their receivers. Results are cached per callable."""

    def __init__(
        self,
        registry: BindingRegistry | None = None,
        injector: Injector | None = None,
    ) -> None:
        self._registry = registry if registry is not None else bindings
        self._injector = injector if injector is not None else Injector()
        self._cache: dict[Callable, Any] = {}
        self._lock = threading.Lock()

    @property
    def injector(self) -> Injector:
        return self._injector

    def resolve(self, fn: Callable, context: Any = None) -> Callable:
        """Return fn bound to its receiver, or fn itself if it needs none.

        Raises ContextResolutionError when fn looks like a method and no
        receiver can be found.
        """
        if context is not None:
            return types.MethodType(getattr(fn, "__func__", fn), context)
        if inspect.ismethod(fn) or isinstance(fn, functools.partial):
            return fn

        receiver = self._receiver_for(fn)
        if receiver is _NO_RECEIVER:
            return fn
        return types.MethodType(fn, receiver)

    def _receiver_for(self, fn: Callable) -> Any:
        with self._lock:
            if fn in self._cache:
                return self._cache[fn]
        receiver = self._find_receiver(fn)
        with self._lock:
            self._cache[fn] = receiver
        return receiver

    def _find_receiver(self, fn: Callable) -> Any:
        owner = self._registry.owner_of(fn)
        if owner is not None:
            return self._injector.resolve(owner)

        wrapped = getattr(fn, "__wrapped__", None)
        if wrapped is not None and wrapped is not fn:
            receiver = self._receiver_for(wrapped)
            if receiver is not _NO_RECEIVER:
                return receiver

        class_name = _class_fragment(fn)
        if class_name is None:
            return _NO_RECEIVER
        cls = self._registry.type_named(class_name)
        if _is_static(fn, cls):
            return _NO_RECEIVER
        if cls is None:
            raise ContextResolutionError(fn)
        logger.warning(
            "Resolved %s by class name; decorate it with @preserve_receiver instead",
            fn.__qualname__,
        )
        return self._injector.resolve(cls)

    def forget(self, fn: Callable) -> None:
        with self._lock:
            self._cache.pop(fn, None)


def _is_static(fn: Callable, cls: type | None) -> bool:
    """True if fn is a @staticmethod read off cls or off the class its qualname names."""
    *path, name = fn.__qualname__.split(".")
    owners = [cls] if cls is not None else []
    owner: Any = sys.modules.get(getattr(fn, "__module__", None) or "")
    for part in path:
        if owner is None or part.startswith("<"):
            owner = None
            break
        owner = getattr(owner, part, None)
    if owner is not None:
        owners.append(owner)
    for owner in owners:
        try:
            attr = inspect.getattr_static(owner, name)
        except AttributeError:
            continue
        if isinstance(attr, staticmethod) and attr.__func__ is fn:
            return True
    return False


def _class_fragment(fn: Callable) -> str | None:
    """'Service' for 'Service.fetch'; None for module-level functions and lambdas."""
    qualname = getattr(fn, "__qualname__", "")
    parts = qualname.split(".")
    if len(parts) < 2:
        return None
    owner = parts[-2]
    if owner.startswith("<"):
        return None
    return owner
