"""Exceptions raised by dynastore.

Contract violations (programmer errors) and context-resolution failures
propagate to the caller. Policy rejections and asynchronous failures never
raise; they are logged where they happen.
"""


class DynastoreError(Exception):
    """Base class for every error raised by this package."""


class NotInitializedError(DynastoreError, RuntimeError):
    """An operation was attempted before the registry was initialized."""


class InvalidKeyError(DynastoreError, TypeError):
    """A slice key was not a string."""


class UninitializedKeyError(DynastoreError, KeyError):
    """get() on a dynamic key that no set() has created yet."""

    def __init__(self, key: str) -> None:
        super().__init__(key)
        self.key = key

    def __str__(self) -> str:
        return f"key {self.key!r} has not been initialized; call set({self.key!r}, ...) first"


class UnknownKeyError(DynastoreError, KeyError):
    """Persistence was requested for a key with no dynamic slice."""

    def __init__(self, key: str) -> None:
        super().__init__(key)
        self.key = key

    def __str__(self) -> str:
        return f"cannot persist {self.key!r}: no value has been set for it"


class ContextResolutionError(DynastoreError, LookupError):
    """A producer's receiver could not be recovered."""

    def __init__(self, fn) -> None:
        name = getattr(fn, "__qualname__", repr(fn))
        super().__init__(
            f"cannot resolve execution context for {name}; pass context=... to "
            f"add_effect() or decorate the method with @preserve_receiver"
        )
        self.fn = fn


class BackendError(DynastoreError, OSError):
    """A persistence backend could not complete a read or write."""


class BackendCapacityError(BackendError):
    """A persistence backend is full."""
