"""dynastore: runtime-registered reactive state slices with effects and persistence."""

from importlib.metadata import version as _version

__version__ = _version("dynastore")

from dynastore._tracking import get_pending_count, transaction
from dynastore.observable import Observable, set_scheduler
from dynastore.computed import Computed
from dynastore.reaction import Reaction, reaction
from dynastore.stream import EventStream
from dynastore.scope import Scope
from dynastore.view import LiveView
from dynastore.host import Action, HostStore, create_action
from dynastore.backends import FileBackend, MemoryBackend, StorageKind
from dynastore.autobind import Injector, Resolver, bindings, preserve_receiver, register_type
from dynastore.config import Settings
from dynastore.effects import EffectRegistration, EffectScheduler
from dynastore.persistence import PersistenceSynchronizer
from dynastore.registry import SliceRegistry
from dynastore.lazy import LazyRegistry
from dynastore.errors import (
    BackendCapacityError,
    BackendError,
    ContextResolutionError,
    DynastoreError,
    InvalidKeyError,
    NotInitializedError,
    UninitializedKeyError,
    UnknownKeyError,
)
# textual NOT auto-imported — opt-in only

__all__ = [
    "Observable",
    "set_scheduler",
    "Computed",
    "Reaction",
    "reaction",
    "transaction",
    "get_pending_count",
    "EventStream",
    "Scope",
    "LiveView",
    "Action",
    "HostStore",
    "create_action",
    "StorageKind",
    "MemoryBackend",
    "FileBackend",
    "Resolver",
    "Injector",
    "bindings",
    "preserve_receiver",
    "register_type",
    "Settings",
    "EffectRegistration",
    "EffectScheduler",
    "PersistenceSynchronizer",
    "SliceRegistry",
    "LazyRegistry",
    "DynastoreError",
    "NotInitializedError",
    "InvalidKeyError",
    "UninitializedKeyError",
    "UnknownKeyError",
    "ContextResolutionError",
    "BackendError",
    "BackendCapacityError",
]
