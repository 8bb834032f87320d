"""Registry settings, with environment overrides."""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Mapping

DYNAMIC_KEY_WARN_THRESHOLD = 100
PERSISTED_KEYS_META = "__dynastore_persisted_keys__"


@dataclass(frozen=True)
class Settings:
    """Tunables shared by the registry and its components.

    Attributes:
        dev_mode: Log policy rejections (writes to declared keys, views
            obtained outside a scope, ...). Failures are logged regardless.
        warn_threshold: Live dynamic slice count above which a resource
            warning is logged. Advisory only.
        persist_debounce: Seconds a persisted key must stay quiet before its
            value is written to the backend. 0 writes synchronously.
        coalesce_polls: Skip a polling tick while the previous invocation for
            the same key is still pending.
        persisted_keys_meta: Backend key holding the list of persisted keys.
    """

    dev_mode: bool = True
    warn_threshold: int = DYNAMIC_KEY_WARN_THRESHOLD
    persist_debounce: float = 0.05
    coalesce_polls: bool = False
    persisted_keys_meta: str = PERSISTED_KEYS_META

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> Settings:
        """Build settings from DYNASTORE_* environment variables."""
        env = os.environ if environ is None else environ
        defaults = cls()
        return cls(
            dev_mode=_get_bool(env, "DYNASTORE_DEV_MODE", defaults.dev_mode),
            warn_threshold=_get_int(env, "DYNASTORE_WARN_THRESHOLD", defaults.warn_threshold),
            persist_debounce=_get_float(
                env, "DYNASTORE_PERSIST_DEBOUNCE", defaults.persist_debounce
            ),
            coalesce_polls=_get_bool(env, "DYNASTORE_COALESCE_POLLS", defaults.coalesce_polls),
            persisted_keys_meta=env.get("DYNASTORE_META_KEY", defaults.persisted_keys_meta),
        )


def _get_bool(env: Mapping[str, str], key: str, default: bool) -> bool:
    val = env.get(key)
    if val is None:
        return default
    return val.lower() in ("1", "true", "yes", "on")


def _get_int(env: Mapping[str, str], key: str, default: int) -> int:
    val = env.get(key)
    if val is None:
        return default
    try:
        return int(val)
    except ValueError:
        return default


def _get_float(env: Mapping[str, str], key: str, default: float) -> float:
    val = env.get(key)
    if val is None:
        return default
    try:
        return float(val)
    except ValueError:
        return default
