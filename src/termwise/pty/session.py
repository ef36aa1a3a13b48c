"""Terminal session records — the registry entry and its learning context."""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from typing import Any

from termwise.pty.backend import BackendMode, ProcessBackend
from termwise.pty.buffer import CommandRing, OutputWindow
from termwise.session.wire import Wire


@dataclass
class SessionContext:
    """What the error memory needs to know about a session.

    Created alongside the ``TerminalSession`` and dropped with it.
    """

    session_id: str
    working_directory: str
    last_commands: CommandRing = field(default_factory=CommandRing)
    output_window: OutputWindow = field(default_factory=OutputWindow)
    current_error_id: str | None = None
    fix_window_remaining: int = 0
    last_prompt: str | None = None

    def open_error(self, error_id: str, window: int) -> None:
        self.current_error_id = error_id
        self.fix_window_remaining = window

    def close_error(self) -> None:
        self.current_error_id = None
        self.fix_window_remaining = 0

    def snapshot(self) -> dict[str, Any]:
        """Immutable copy handed to the memory, detached from later mutation."""
        return {
            "session_id": self.session_id,
            "working_directory": self.working_directory,
            "last_commands": self.last_commands.recent(),
        }


@dataclass
class TerminalSession:
    """A live terminal: one backend, one wire, one tap worker."""

    id: str
    backend: ProcessBackend
    wire: Wire
    context: SessionContext
    cwd: str
    cols: int = 80
    rows: int = 24
    created_at: float = field(default_factory=time.time)
    last_activity: float = field(default_factory=time.monotonic)
    killed: bool = False

    # Internal state
    tap_queue: asyncio.Queue | None = field(default=None, init=False)
    tap_task: asyncio.Task | None = field(default=None, init=False)

    @property
    def pid(self) -> int:
        return self.backend.pid

    @property
    def mode(self) -> BackendMode:
        return self.backend.mode

    @property
    def alive(self) -> bool:
        return not self.killed and self.backend.alive

    def touch(self) -> None:
        self.last_activity = time.monotonic()

    def describe(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "pid": self.pid,
            "created_at": self.created_at,
            "mode": self.mode.value,
        }
