"""Persistence backends — synchronous string-keyed stores.

MemoryBackend lives as long as the process (session scope); FileBackend keeps
one JSON document on disk and survives restarts. Both raise
BackendCapacityError when full so the synchronizer can back off.
"""

from __future__ import annotations

import enum
import errno
import json
import logging
import os
import tempfile
import threading
from pathlib import Path
from typing import Protocol

from dynastore.errors import BackendCapacityError, BackendError

logger = logging.getLogger(__name__)

_FULL_ERRNOS = {errno.ENOSPC, getattr(errno, "EDQUOT", errno.ENOSPC)}


class StorageKind(enum.Enum):
    LOCAL = "local"
    SESSION = "session"


class Backend(Protocol):
    def get_item(self, key: str) -> str | None: ...

    def set_item(self, key: str, value: str) -> None: ...

    def remove_item(self, key: str) -> None: ...


class MemoryBackend:
    """Dict-backed store, optionally capped at `quota` characters of keys plus values."""

    def __init__(self, quota: int | None = None) -> None:
        self._items: dict[str, str] = {}
        self._quota = quota
        self._lock = threading.Lock()

    def get_item(self, key: str) -> str | None:
        return self._items.get(key)

    def set_item(self, key: str, value: str) -> None:
        with self._lock:
            if self._quota is not None:
                used = sum(len(k) + len(v) for k, v in self._items.items() if k != key)
                if used + len(key) + len(value) > self._quota:
                    raise BackendCapacityError(f"quota of {self._quota} exceeded writing {key!r}")
            self._items[key] = value

    def remove_item(self, key: str) -> None:
        with self._lock:
            self._items.pop(key, None)

    def keys(self) -> list[str]:
        return list(self._items)

    def clear(self) -> None:
        with self._lock:
            self._items.clear()

    def __len__(self) -> int:
        return len(self._items)


class FileBackend:
    """All items in one JSON object at `path`, rewritten atomically on change."""

    def __init__(self, path: str | os.PathLike) -> None:
        self._path = Path(path).expanduser()
        self._lock = threading.Lock()
        self._items: dict[str, str] | None = None

    @property
    def path(self) -> Path:
        return self._path

    def get_item(self, key: str) -> str | None:
        with self._lock:
            return self._load().get(key)

    def set_item(self, key: str, value: str) -> None:
        with self._lock:
            items = self._load()
            previous = items.get(key)
            items[key] = value
            try:
                self._save(items)
            except BaseException:
                if previous is None:
                    items.pop(key, None)
                else:
                    items[key] = previous
                raise

    def remove_item(self, key: str) -> None:
        with self._lock:
            items = self._load()
            if key in items:
                del items[key]
                self._save(items)

    def keys(self) -> list[str]:
        with self._lock:
            return list(self._load())

    def _load(self) -> dict[str, str]:
        if self._items is None:
            try:
                data = json.loads(self._path.read_text(encoding="utf-8"))
            except FileNotFoundError:
                data = {}
            except (OSError, ValueError):
                logger.warning("Unreadable storage file %s; starting empty", self._path)
                data = {}
            if not isinstance(data, dict):
                logger.warning("Storage file %s is not a JSON object; starting empty", self._path)
                data = {}
            self._items = {k: v for k, v in data.items() if isinstance(v, str)}
        return self._items

    def _save(self, items: dict[str, str]) -> None:
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp = tempfile.mkstemp(dir=self._path.parent, prefix=self._path.name, suffix=".tmp")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    json.dump(items, f)
                os.replace(tmp, self._path)
            except BaseException:
                try:
                    os.unlink(tmp)
                except FileNotFoundError:
                    pass
                raise
        except OSError as exc:
            if exc.errno in _FULL_ERRNOS:
                raise BackendCapacityError(str(exc)) from exc
            raise BackendError(str(exc)) from exc
