"""Tests for termwise.session.channel.TerminalChannel (message routing)."""

from __future__ import annotations

import asyncio
from pathlib import Path

from termwise.config import TerminalConfig
from termwise.errors import SpawnError
from termwise.pty.backend import SimulatedProcessBackend
from termwise.pty.manager import SessionManager
from termwise.session.channel import TerminalChannel
from termwise.session.wire import EventType


class _FailingBackend(SimulatedProcessBackend):
    async def start(self) -> None:
        raise SpawnError("spawn refused")


def _channel(backend_class: type = SimulatedProcessBackend) -> TerminalChannel:
    manager = SessionManager(TerminalConfig(), backend_class=backend_class)
    return TerminalChannel(manager, "conn-1")


class TestTerminalChannel:
    async def test_create_uses_connection_id(self, tmp_path: Path) -> None:
        channel = _channel()
        queue = channel.wire.subscribe()
        result = await channel.create(90, 20, str(tmp_path))
        assert result is not None
        assert result["mode"] == "demo"
        assert "conn-1" in channel.manager

        event = queue.get_nowait()
        assert event is not None
        assert event.type == EventType.CREATED
        assert event.session_id == "conn-1"
        await channel.manager.cleanup()

    async def test_create_failure_returns_none(self, tmp_path: Path) -> None:
        channel = _channel(_FailingBackend)
        queue = channel.wire.subscribe()
        assert await channel.create(cwd=str(tmp_path)) is None

        event = queue.get_nowait()
        assert event is not None
        assert event.type == EventType.ERROR
        assert len(channel.manager) == 0

    async def test_handle_routes_messages(self, tmp_path: Path) -> None:
        channel = _channel()
        queue = channel.wire.subscribe()
        await channel.handle("create", {"cols": 80, "rows": 24, "cwd": str(tmp_path)})
        await asyncio.sleep(0.2)

        await channel.handle("resize", {"cols": "132", "rows": 50})
        session = channel.manager.get("conn-1")
        assert session is not None
        assert (session.cols, session.rows) == (132, 50)

        await channel.handle("input", {"data": "echo routed\r"})
        await asyncio.sleep(0.15)
        chunks = []
        while not queue.empty():
            event = queue.get_nowait()
            if event is not None and event.type == EventType.DATA:
                chunks.append(event.data["chunk"])
        assert "routed\r\n" in chunks
        await channel.manager.cleanup()

    async def test_disconnect_kills_and_closes(self, tmp_path: Path) -> None:
        channel = _channel()
        queue = channel.wire.subscribe()
        await channel.create(cwd=str(tmp_path))
        await channel.handle("disconnect")

        assert "conn-1" not in channel.manager
        assert channel.wire.closed
        events = []
        while not queue.empty():
            events.append(queue.get_nowait())
        assert events[-1] is None

    async def test_malformed_and_unknown_messages_ignored(self, tmp_path: Path) -> None:
        channel = _channel()
        await channel.create(cwd=str(tmp_path))
        await channel.handle("input", {})
        await channel.handle("resize", {"cols": "wide", "rows": 10})
        await channel.handle("launch-missiles", {"now": True})
        session = channel.manager.get("conn-1")
        assert session is not None and session.alive
        assert (session.cols, session.rows) == (80, 24)
        await channel.manager.cleanup()
