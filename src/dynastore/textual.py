"""Textual integration for dynastore. Opt-in — requires textual.

Effects and debounced writes deliver from background threads, and widgets may
be mid-replacement when a value arrives. bind() guards a widget callback
against both: it is skipped while the app is paused or not running, marshaled
with call_from_thread when needed, and NoMatches from widget queries is
swallowed.
"""

import threading
from contextlib import contextmanager

from textual.css.query import NoMatches

# Keyed by id(app) so several apps can coexist in tests.
_paused_apps: set[int] = set()


@contextmanager
def pause(app):
    """Hold back bound callbacks while widgets are being swapped."""
    ident = id(app)
    _paused_apps.add(ident)
    try:
        yield
    finally:
        _paused_apps.discard(ident)


def is_safe(app) -> bool:
    return app.is_running and id(app) not in _paused_apps


def bind(app, registry, key, effect_fn):
    """Subscribe effect_fn to registry.get(key) on behalf of app's widgets.

    Returns the disposer. Inside `with registry.scope():` the binding also
    ends with the scope.
    """
    main = threading.get_ident()

    def _apply(value):
        try:
            effect_fn(value)
        except NoMatches:
            pass

    def _guarded(value):
        if not is_safe(app):
            return
        if threading.get_ident() != main:
            app.call_from_thread(_apply, value)
        else:
            _apply(value)

    return registry.get(key).subscribe(_guarded)
