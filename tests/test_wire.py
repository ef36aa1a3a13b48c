"""Tests for termwise.session.wire (Wire, WireEvent, EventType)."""

from __future__ import annotations

import asyncio

from termwise.session.wire import EventType, Wire, WireEvent


# ---------------------------------------------------------------------------
# EventType
# ---------------------------------------------------------------------------


class TestEventType:
    def test_all_variants_exist(self) -> None:
        expected = {"CREATED", "DATA", "EXIT", "ERROR", "SUGGESTION"}
        actual = {e.name for e in EventType}
        assert actual == expected

    def test_values_are_lowercase(self) -> None:
        for e in EventType:
            assert e.value == e.name.lower()


# ---------------------------------------------------------------------------
# WireEvent
# ---------------------------------------------------------------------------


class TestWireEvent:
    def test_defaults(self) -> None:
        event = WireEvent(type=EventType.DATA)
        assert event.session_id == ""
        assert event.data == {}

    def test_with_data(self) -> None:
        event = WireEvent(type=EventType.DATA, session_id="s1", data={"chunk": "hello"})
        assert event.session_id == "s1"
        assert event.data["chunk"] == "hello"


# ---------------------------------------------------------------------------
# Wire: basic send/subscribe
# ---------------------------------------------------------------------------


class TestWire:
    def test_send_to_subscriber(self) -> None:
        wire = Wire()
        q = wire.subscribe()
        wire.send(WireEvent(type=EventType.DATA, data={"chunk": "hi"}))
        event = q.get_nowait()
        assert event is not None
        assert event.type == EventType.DATA
        assert event.data["chunk"] == "hi"

    def test_send_to_multiple_subscribers(self) -> None:
        wire = Wire()
        q1 = wire.subscribe()
        q2 = wire.subscribe()
        wire.send_data("s1", "ok")
        e1 = q1.get_nowait()
        e2 = q2.get_nowait()
        assert e1 is not None and e2 is not None
        assert e1.type == e2.type == EventType.DATA

    def test_unsubscribe(self) -> None:
        wire = Wire()
        q = wire.subscribe()
        wire.unsubscribe(q)
        wire.send_data("s1", "x")
        assert q.empty()

    def test_unsubscribe_nonexistent_is_safe(self) -> None:
        wire = Wire()
        q: asyncio.Queue[WireEvent | None] = asyncio.Queue()
        wire.unsubscribe(q)  # Should not raise


# ---------------------------------------------------------------------------
# Wire: closed-state guard
# ---------------------------------------------------------------------------


class TestWireClosedGuard:
    def test_send_after_close_is_dropped(self) -> None:
        wire = Wire()
        q = wire.subscribe()
        wire.close()
        assert q.get_nowait() is None
        wire.send_data("s1", "too late")
        assert q.empty()
        assert wire.closed

    def test_close_sends_sentinel_to_all_subscribers(self) -> None:
        wire = Wire()
        q1 = wire.subscribe()
        q2 = wire.subscribe()
        wire.close()
        assert q1.get_nowait() is None
        assert q2.get_nowait() is None

    def test_convenience_methods_respect_closed(self) -> None:
        wire = Wire()
        q = wire.subscribe()
        wire.close()
        q.get_nowait()  # drain sentinel
        wire.send_created("s1", 42, "demo")
        wire.send_data("s1", "nope")
        wire.send_exit("s1", 0, None)
        wire.send_error("s1", "nope")
        wire.send_suggestion("s1", "npm install x", 0.5)
        assert q.empty()


# ---------------------------------------------------------------------------
# Wire: convenience methods
# ---------------------------------------------------------------------------


class TestWireConvenience:
    def test_send_created(self) -> None:
        wire = Wire()
        q = wire.subscribe()
        wire.send_created("s1", pid=1234, mode="real")
        event = q.get_nowait()
        assert event is not None
        assert event.type == EventType.CREATED
        assert event.session_id == "s1"
        assert event.data == {"pid": 1234, "mode": "real"}

    def test_send_data_is_verbatim(self) -> None:
        wire = Wire()
        q = wire.subscribe()
        chunk = "\x1b[31mred\x1b[0m\r\n"
        wire.send_data("s1", chunk)
        event = q.get_nowait()
        assert event is not None
        assert event.data["chunk"] == chunk

    def test_send_exit(self) -> None:
        wire = Wire()
        q = wire.subscribe()
        wire.send_exit("s1", exit_code=None, signal=9)
        event = q.get_nowait()
        assert event is not None
        assert event.type == EventType.EXIT
        assert event.data == {"exit_code": None, "signal": 9}

    def test_send_error(self) -> None:
        wire = Wire()
        q = wire.subscribe()
        wire.send_error("s1", "Failed to create terminal session", "no pty")
        event = q.get_nowait()
        assert event is not None
        assert event.type == EventType.ERROR
        assert event.data["message"] == "Failed to create terminal session"
        assert event.data["error"] == "no pty"

    def test_send_suggestion(self) -> None:
        wire = Wire()
        q = wire.subscribe()
        wire.send_suggestion("s1", "npm install chalk", 0.27, category="module-not-found")
        event = q.get_nowait()
        assert event is not None
        assert event.type == EventType.SUGGESTION
        assert event.data["fix"] == "npm install chalk"
        assert event.data["confidence"] == 0.27
        assert event.data["category"] == "module-not-found"
