"""Session manager — the registry of live terminal sessions."""

from __future__ import annotations

import asyncio
import logging
import os
import sys
import time
from typing import Any

from termwise.config import TerminalConfig
from termwise.errors import SpawnError
from termwise.memory.classify import filter_noise, is_prompt_line
from termwise.memory.patterns import ErrorPatternMemory
from termwise.pty.backend import (
    ProcessBackend,
    PtyProcessBackend,
    SimulatedProcessBackend,
    default_shell,
    pty_available,
    select_backend_class,
)
from termwise.pty.buffer import CommandRing, OutputWindow
from termwise.pty.session import SessionContext, TerminalSession
from termwise.session.wire import Wire

logger = logging.getLogger(__name__)

# Chunks this short (after noise filtering) never count against the fix window
TRIVIAL_CHUNK_CHARS = 2
# How long an unterminated output line waits for its newline
PARTIAL_LINE_WAIT = 0.1


class SessionManager:
    """Owns every live terminal session and its learning context.

    The manager ensures:
    - At most one live backend per session id (re-creating an id replaces it)
    - At most ``max_sessions`` sessions (the oldest is evicted)
    - Output is relayed to the session's wire before anything else sees it
    - Error learning runs on a per-session tap worker, off the relay path
    - All sessions are killed on cleanup (no orphan processes)
    """

    def __init__(
        self,
        config: TerminalConfig | None = None,
        memory: ErrorPatternMemory | None = None,
        backend_class: type[ProcessBackend] | None = None,
    ) -> None:
        self.config = config or TerminalConfig()
        self.memory = memory
        self.backend_class = backend_class or select_backend_class(self.config.force_demo)
        self._sessions: dict[str, TerminalSession] = {}

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def create(
        self,
        session_id: str,
        cols: int | None = None,
        rows: int | None = None,
        cwd: str | None = None,
        wire: Wire | None = None,
    ) -> dict[str, Any]:
        """Start a terminal for ``session_id`` and register it.

        Returns:
            ``{"pid": ..., "mode": "real" | "demo"}``.

        Raises:
            SpawnError: the backend could not start. An ``error`` event is
                sent on the wire first and nothing is registered.
        """
        wire = wire or Wire()
        cols = cols if cols and cols > 0 else self.config.default_cols
        rows = rows if rows and rows > 0 else self.config.default_rows
        cwd = os.path.expanduser(cwd) if cwd else os.path.expanduser("~")

        backend = self._make_backend(cols, rows, cwd)
        session = TerminalSession(
            id=session_id,
            backend=backend,
            wire=wire,
            context=SessionContext(
                session_id=session_id,
                working_directory=cwd,
                last_commands=CommandRing(self.config.command_history),
                output_window=OutputWindow(self.config.output_window_chars),
            ),
            cwd=cwd,
            cols=cols,
            rows=rows,
        )
        backend.on_data(lambda chunk: self._on_data(session, chunk))
        backend.on_exit(lambda code, sig: self._on_exit(session, code, sig))

        try:
            await backend.start()
        except SpawnError as e:
            e.session_id = session_id
            logger.error("Failed to create session %s: %s", session_id, e)
            wire.send_error(session_id, "Failed to create terminal session", str(e))
            raise

        # No awaits from here on: registration is atomic w.r.t. other creates
        if session_id in self._sessions:
            logger.info("Replacing live session %s", session_id)
            self.kill(session_id)
        while len(self._sessions) >= self.config.max_sessions:
            oldest = next(iter(self._sessions))
            logger.warning("Max sessions reached, killing oldest: %s", oldest)
            self.kill(oldest)

        self._sessions[session_id] = session
        if self.memory is not None and self.memory.available:
            session.tap_queue = asyncio.Queue(maxsize=self.config.tap_queue_size)
            session.tap_task = asyncio.create_task(
                self._tap_worker(session), name=f"tap-{session_id}"
            )

        wire.send_created(session_id, session.pid, session.mode.value)
        logger.info(
            "Session %s created: pid=%d mode=%s cols=%d rows=%d",
            session_id,
            session.pid,
            session.mode.value,
            cols,
            rows,
        )
        return {"pid": session.pid, "mode": session.mode.value}

    def _make_backend(self, cols: int, rows: int, cwd: str) -> ProcessBackend:
        if issubclass(self.backend_class, PtyProcessBackend):
            return self.backend_class(cols, rows, cwd, shell=self.config.shell)
        if issubclass(self.backend_class, SimulatedProcessBackend):
            return self.backend_class(cols, rows, cwd, session_count=self.__len__)
        return self.backend_class(cols, rows, cwd)

    def write(self, session_id: str, data: str) -> None:
        """Forward input verbatim. Unknown or ended sessions are ignored."""
        session = self._sessions.get(session_id)
        if session is None or not session.alive:
            logger.debug("Write to unknown or ended session %s ignored", session_id)
            return
        session.touch()
        for command in session.context.last_commands.feed(data):
            logger.debug("Session %s command: %s", session_id, command)
        try:
            session.backend.write(data)
        except OSError as e:
            logger.warning("Write to session %s failed: %s", session_id, e)

    def resize(self, session_id: str, cols: int, rows: int) -> None:
        session = self._sessions.get(session_id)
        if session is None or not session.alive:
            return
        if cols <= 0 or rows <= 0:
            logger.debug("Ignoring resize of %s to %dx%d", session_id, cols, rows)
            return
        session.cols, session.rows = cols, rows
        try:
            session.backend.resize(cols, rows)
        except OSError as e:
            logger.warning("Resize of session %s failed: %s", session_id, e)

    def kill(self, session_id: str) -> bool:
        """Kill a session and forget it. Returns whether it existed.

        Synchronous: once this returns no further events are sent for the id.
        """
        session = self._sessions.pop(session_id, None)
        if session is None:
            return False
        self._teardown(session)
        session.backend.kill()
        logger.info("Session %s killed", session_id)
        return True

    def _teardown(self, session: TerminalSession) -> None:
        session.killed = True
        if session.tap_task is not None:
            session.tap_task.cancel()
            session.tap_task = None
        if self.memory is not None:
            self.memory.close_session(session.id)
        session.context.close_error()

    async def cleanup(self) -> None:
        """Kill all sessions. Called on shutdown."""
        for session_id in list(self._sessions.keys()):
            self.kill(session_id)
        if self.memory is not None:
            await self.memory.flush()
        logger.info("All terminal sessions cleaned up")

    def cleanup_idle(self, max_idle: float) -> list[str]:
        """Kill sessions with no input or output for ``max_idle`` seconds."""
        now = time.monotonic()
        idle = [sid for sid, s in self._sessions.items() if now - s.last_activity > max_idle]
        for session_id in idle:
            logger.info("Session %s idle for over %.0fs, killing", session_id, max_idle)
            self.kill(session_id)
        return idle

    # ------------------------------------------------------------------
    # Backend callbacks
    # ------------------------------------------------------------------

    def _on_data(self, session: TerminalSession, chunk: str) -> None:
        if session.killed:
            return
        session.touch()
        session.wire.send_data(session.id, chunk)

        if session.tap_queue is None:
            return
        try:
            session.tap_queue.put_nowait(chunk)
        except asyncio.QueueFull:
            logger.debug("Tap queue full for session %s, chunk not analysed", session.id)

    def _on_exit(self, session: TerminalSession, exit_code: int | None, sig: int | None) -> None:
        if session.killed:
            return
        session.wire.send_exit(session.id, exit_code, sig)
        if self._sessions.get(session.id) is session:
            del self._sessions[session.id]
        self._teardown(session)
        logger.info("Session %s exited (code=%s signal=%s)", session.id, exit_code, sig)

    # ------------------------------------------------------------------
    # Error learning tap
    # ------------------------------------------------------------------

    async def _tap_worker(self, session: TerminalSession) -> None:
        queue = session.tap_queue
        assert queue is not None
        window = session.context.output_window
        while True:
            if window.partial:
                try:
                    chunk = await asyncio.wait_for(queue.get(), PARTIAL_LINE_WAIT)
                except asyncio.TimeoutError:
                    try:
                        await self._learn_partial(session)
                    except Exception:
                        logger.exception("Error learning failed for session %s", session.id)
                    continue
            else:
                chunk = await queue.get()
            try:
                await self._learn(session, chunk)
            except Exception:
                logger.exception("Error learning failed for session %s", session.id)

    async def _learn(self, session: TerminalSession, chunk: str) -> None:
        """Feed a chunk through the output window and analyse its complete lines.

        A trailing partial line waits in the window for the rest of it,
        unless it is a prompt, which is remembered and dropped.
        """
        ctx = session.context
        window = ctx.output_window
        window.append(chunk)
        lines = window.take_lines()
        if window.partial and is_prompt_line(window.partial):
            ctx.last_prompt = filter_noise(window.take_partial())
        if lines:
            await self._analyse(session, lines)

    async def _learn_partial(self, session: TerminalSession) -> None:
        """The shell went quiet on an unterminated line: treat it as the prompt."""
        ctx = session.context
        partial = ctx.output_window.take_partial()
        if not partial.strip():
            return
        ctx.last_prompt = filter_noise(partial)
        await self._analyse(session, partial)

    async def _analyse(self, session: TerminalSession, text: str) -> None:
        memory = self.memory
        if memory is None or not memory.available:
            return
        ctx = session.context
        snapshot = ctx.snapshot()

        result = await memory.capture_error(text, snapshot)
        if session.killed:
            return
        if result.is_error:
            solution = result.solution
            if result.matched and solution is not None:
                session.wire.send_suggestion(
                    session.id,
                    solution.fix_text,
                    result.confidence or 0.0,
                    result.category or "",
                )
                ctx.close_error()
            elif result.error_id is not None:
                ctx.open_error(result.error_id, memory.config.fix_capture_window)
            return

        if ctx.current_error_id is None:
            return
        cleaned = filter_noise(text)
        if len(cleaned) <= TRIVIAL_CHUNK_CHARS or cleaned == ctx.last_prompt:
            return

        ctx.fix_window_remaining -= 1
        fix = await memory.capture_fix(text, ctx.current_error_id, snapshot)
        if fix.captured or ctx.fix_window_remaining <= 0:
            ctx.close_error()

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def get(self, session_id: str) -> TerminalSession | None:
        return self._sessions.get(session_id)

    def list_sessions(self) -> list[dict[str, Any]]:
        """List all live sessions."""
        return [s.describe() for s in self._sessions.values()]

    def probe_capabilities(self) -> dict[str, Any]:
        return {
            "pty_available": pty_available() and not self.config.force_demo,
            "platform": sys.platform,
            "shell": self.config.shell or default_shell(),
            "home": os.path.expanduser("~"),
        }

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)
