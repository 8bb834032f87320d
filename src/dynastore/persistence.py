"""Persistence synchronizer — mirror selected keys into storage backends.

Each persisted key gets a binding: its current value is written at once,
then a view -> distinct -> debounce chain writes every later value. A
metadata record per backend lists the persisted keys so they can be restored
on the next start.

Values are stored as JSON text. Backend failures are logged; a full backend
turns persistence off for the key that overflowed it.
"""

from __future__ import annotations

import json
import logging
import threading
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from dynastore._tracking import transaction
from dynastore.backends import Backend, StorageKind
from dynastore.config import Settings
from dynastore.errors import BackendCapacityError, UnknownKeyError
from dynastore.stream import DebouncedStream, EventStream

if TYPE_CHECKING:
    from dynastore.registry import SliceRegistry

logger = logging.getLogger(__name__)


@dataclass(eq=False)
class PersistenceBinding:
    key: str
    kind: StorageKind
    backend: Backend
    last_written: str | None = None
    stream: EventStream | None = field(default=None, repr=False)
    tail: DebouncedStream | None = field(default=None, repr=False)


class PersistenceSynchronizer:
    def __init__(
        self,
        registry: SliceRegistry,
        backends: dict[StorageKind, Backend],
        settings: Settings | None = None,
    ) -> None:
        self._registry = registry
        self._backends = dict(backends)
        self._settings = settings if settings is not None else Settings()
        self._bindings: dict[str, PersistenceBinding] = {}
        self._lock = threading.RLock()

    def is_persisted(self, key: str) -> bool:
        return key in self._bindings

    def kind_of(self, key: str) -> StorageKind | None:
        binding = self._bindings.get(key)
        return binding.kind if binding is not None else None

    def keys(self) -> list[str]:
        return list(self._bindings)

    def backend(self, kind: StorageKind) -> Backend:
        try:
            return self._backends[kind]
        except KeyError:
            raise ValueError(f"no backend configured for {kind}") from None

    def enable(self, key: str, kind: StorageKind) -> None:
        """Start mirroring key into the kind backend.

        Raises UnknownKeyError if key has never been set.
        """
        if not self._registry.has(key):
            raise UnknownKeyError(key)
        backend = self.backend(kind)
        with self._lock:
            existing = self._bindings.get(key)
            if existing is not None:
                if existing.kind is kind:
                    return
                self.disable(key)
            binding = PersistenceBinding(key=key, kind=kind, backend=backend)
            self._bindings[key] = binding
            self._save_meta()

            try:
                stale = backend.get_item(key)
            except Exception:
                logger.exception("Could not read stored value for %r", key)
                stale = None
            self._write(binding, self._registry.current(key), stale=stale)
            if self._bindings.get(key) is binding:
                self._mirror(binding)
        logger.debug("Persistence enabled for %r (%s)", key, kind.value)

    def disable(self, key: str) -> None:
        """Stop mirroring key and delete its stored value. No-op if not persisted."""
        with self._lock:
            binding = self._bindings.pop(key, None)
            if binding is None:
                return
            if binding.stream is not None:
                binding.stream.dispose()
            try:
                binding.backend.remove_item(key)
            except Exception:
                logger.exception("Could not delete stored value for %r", key)
            self._save_meta()
        logger.debug("Persistence disabled for %r", key)

    def restore(self) -> list[str]:
        """Load every key listed in the backends' metadata back into the registry.

        Corrupted values are deleted from their backend and skipped.
        Returns the restored keys.
        """
        found: list[tuple[PersistenceBinding, Any]] = []
        for kind, backend in self._backends.items():
            for key in self._load_meta(kind, backend):
                try:
                    text = backend.get_item(key)
                except Exception:
                    logger.exception("Could not read stored value for %r", key)
                    continue
                if text is None:
                    logger.info("No stored value for persisted key %r; dropping it", key)
                    continue
                try:
                    value = json.loads(text)
                except ValueError:
                    logger.warning("Discarding corrupted stored value for %r", key)
                    try:
                        backend.remove_item(key)
                    except Exception:
                        logger.exception("Could not delete stored value for %r", key)
                    continue
                if self._registry.is_declared(key):
                    logger.warning("Not restoring %r: it is now a declared key", key)
                    continue
                found.append((PersistenceBinding(key, kind, backend, last_written=text), value))

        with self._lock:
            with transaction():
                for binding, value in found:
                    self._registry.set(binding.key, value)
            for binding, _ in found:
                self._bindings[binding.key] = binding
                self._mirror(binding)
            self._save_meta()
        if found:
            logger.info("Restored %d persisted keys", len(found))
        return [binding.key for binding, _ in found]

    def flush(self) -> None:
        """Write any debounced values that are still waiting."""
        for binding in list(self._bindings.values()):
            if binding.tail is not None:
                binding.tail.flush()

    def close(self) -> None:
        """Flush, then stop mirroring. Stored data is left in place."""
        self.flush()
        with self._lock:
            for binding in self._bindings.values():
                if binding.stream is not None:
                    binding.stream.dispose()
            self._bindings.clear()

    def _mirror(self, binding: PersistenceBinding) -> None:
        stream = self._registry._view(binding.key).to_stream()
        tail = stream.distinct().debounce(self._settings.persist_debounce)
        tail.subscribe(lambda value: self._write(binding, value))
        binding.stream = stream
        binding.tail = tail

    def _write(self, binding: PersistenceBinding, value: Any, stale: str | None = None) -> None:
        key = binding.key
        with self._lock:
            if self._bindings.get(key) is not binding:
                return
            try:
                text = json.dumps(value)
            except (TypeError, ValueError):
                logger.exception("Value for %r is not JSON serializable; not persisted", key)
                return
            if text == binding.last_written:
                return
            if stale is not None and stale != text:
                logger.warning("Replacing stale stored value for %r", key)
            try:
                binding.backend.set_item(key, text)
            except BackendCapacityError:
                logger.error("Storage full while persisting %r; disabling its persistence", key)
                self.disable(key)
                return
            except Exception:
                logger.exception("Could not persist %r", key)
                return
            binding.last_written = text

    def _load_meta(self, kind: StorageKind, backend: Backend) -> list[str]:
        try:
            text = backend.get_item(self._settings.persisted_keys_meta)
        except Exception:
            logger.exception("Could not read persisted key list from %s storage", kind.value)
            return []
        if text is None:
            return []
        try:
            data = json.loads(text)
        except ValueError:
            logger.warning("Persisted key list in %s storage is corrupted; ignoring it", kind.value)
            return []
        if not isinstance(data, dict):
            logger.warning("Persisted key list in %s storage is malformed; ignoring it", kind.value)
            return []
        return [key for key in data if isinstance(key, str)]

    def _save_meta(self) -> None:
        for kind, backend in self._backends.items():
            record = {key: True for key, b in self._bindings.items() if b.kind is kind}
            try:
                backend.set_item(self._settings.persisted_keys_meta, json.dumps(record))
            except Exception:
                logger.exception("Could not save persisted key list to %s storage", kind.value)
