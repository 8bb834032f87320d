"""Tests for EventStream — emit/subscribe, distinct, debounce, dispose."""

import threading

from dynastore import EventStream


class TestEmitSubscribe:
    def test_subscribe_receives_emitted_values(self):
        stream = EventStream()
        received = []
        stream.subscribe(received.append)
        stream.emit(1)
        stream.emit(2)
        assert received == [1, 2]

    def test_unsubscribe_idempotent(self):
        stream = EventStream()
        received = []
        unsub = stream.subscribe(received.append)
        unsub()
        unsub()
        stream.emit(1)
        assert received == []

    def test_subscriber_may_dispose_during_emit(self):
        stream = EventStream()
        received = []
        stream.subscribe(lambda v: stream.dispose())
        stream.subscribe(received.append)
        stream.emit(1)
        stream.emit(2)
        assert received == [1]


class TestDistinct:
    def test_drops_repeats(self):
        stream = EventStream()
        received = []
        stream.distinct().subscribe(received.append)
        for v in [1, 1, 2, 2, 1]:
            stream.emit(v)
        assert received == [1, 2, 1]


class TestDebounce:
    def test_coalesces_rapid_events(self):
        stream = EventStream()
        received = []
        done = threading.Event()

        def on_value(v):
            received.append(v)
            done.set()

        stream.debounce(0.05).subscribe(on_value)
        stream.emit(1)
        stream.emit(2)
        stream.emit(3)
        assert done.wait(timeout=1)
        assert received == [3]

    def test_zero_is_synchronous(self):
        stream = EventStream()
        received = []
        stream.debounce(0).subscribe(received.append)
        stream.emit("now")
        assert received == ["now"]

    def test_flush(self):
        stream = EventStream()
        received = []
        debounced = stream.debounce(10)
        debounced.subscribe(received.append)
        stream.emit("a")
        assert debounced.has_pending
        debounced.flush()
        assert received == ["a"]
        assert not debounced.has_pending
        debounced.flush()
        assert received == ["a"]

    def test_dispose_drops_pending(self):
        stream = EventStream()
        received = []
        debounced = stream.debounce(10)
        debounced.subscribe(received.append)
        stream.emit("a")
        debounced.dispose()
        debounced.flush()
        assert received == []


class TestDispose:
    def test_propagates_to_children(self):
        parent = EventStream()
        child = parent.distinct()
        grandchild = child.debounce(1)
        parent.dispose()
        assert child.disposed
        assert grandchild.disposed

    def test_child_dispose_does_not_affect_parent(self):
        parent = EventStream()
        child = parent.distinct()
        received = []
        parent.subscribe(received.append)
        child.dispose()
        parent.emit(1)
        assert received == [1]
        assert not parent.disposed

    def test_on_dispose(self):
        stream = EventStream()
        calls = []
        stream.on_dispose(lambda: calls.append("first"))
        stream.dispose()
        stream.dispose()
        stream.on_dispose(lambda: calls.append("late"))
        assert calls == ["first", "late"]
