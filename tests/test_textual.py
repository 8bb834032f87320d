"""Tests for dynastore.textual — Textual integration layer."""

import threading

from textual.css.query import NoMatches

from dynastore import textual as dtx


class _MockApp:
    """Minimal mock matching the Textual App interface dtx needs."""

    def __init__(self, *, is_running=True):
        self.is_running = is_running
        self._call_from_thread_log = []

    def call_from_thread(self, fn, *args):
        self._call_from_thread_log.append((fn, args))
        fn(*args)


class TestBind:
    def test_fires_when_safe(self, registry):
        app = _MockApp()
        registry.set("status", "idle")
        seen = []
        with registry.scope("panel"):
            dtx.bind(app, registry, "status", seen.append)
            registry.set("status", "busy")
        assert seen == ["idle", "busy"]

    def test_skips_when_not_running(self, registry):
        app = _MockApp(is_running=False)
        registry.set("status", "idle")
        seen = []
        with registry.scope("panel"):
            dtx.bind(app, registry, "status", seen.append)
            registry.set("status", "busy")
        assert seen == []

    def test_skips_during_pause(self, registry):
        app = _MockApp()
        registry.set("status", "idle")
        seen = []
        with registry.scope("panel"):
            dtx.bind(app, registry, "status", seen.append)
            with dtx.pause(app):
                registry.set("status", "busy")
            assert dtx.is_safe(app)
            registry.set("status", "done")
        assert seen == ["idle", "done"]

    def test_catches_nomatch(self, registry):
        """NoMatches from widget queries are silently swallowed."""
        app = _MockApp()
        registry.set("status", "idle")

        def _raise_nomatch(value):
            raise NoMatches("StatusFooter")

        with registry.scope("panel"):
            dtx.bind(app, registry, "status", _raise_nomatch)
            registry.set("status", "busy")
        assert registry.current("status") == "busy"

    def test_marshals_from_background_thread(self, registry):
        app = _MockApp()
        registry.set("status", "idle")
        seen = []
        with registry.scope("panel"):
            dtx.bind(app, registry, "status", seen.append)
            t = threading.Thread(target=registry.set, args=("status", "busy"))
            t.start()
            t.join(timeout=2)
        assert seen == ["idle", "busy"]
        assert len(app._call_from_thread_log) == 1

    def test_ends_with_scope(self, registry):
        app = _MockApp()
        registry.set("status", "idle")
        seen = []
        with registry.scope("panel"):
            dtx.bind(app, registry, "status", seen.append)
        registry.set("status", "busy")
        assert seen == ["idle"]
