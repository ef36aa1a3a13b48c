"""Process backends — one interface over a real PTY or an in-memory simulator.

The session manager picks a backend class once, at construction time
(``select_backend_class``), and only talks to the ``ProcessBackend``
interface afterwards.
"""

from __future__ import annotations

import asyncio
import codecs
import enum
import importlib.util
import logging
import os
import random
import signal
import struct
import subprocess
import sys
from abc import ABC, abstractmethod
from typing import Callable, ClassVar

from termwise.errors import SpawnError

logger = logging.getLogger(__name__)

DataCallback = Callable[[str], None]
ExitCallback = Callable[[int | None, int | None], None]


class BackendMode(str, enum.Enum):
    """How a session's process is backed; reported to clients."""

    REAL = "real"
    DEMO = "demo"


def pty_available() -> bool:
    """Whether this platform can host real pseudo-terminals."""
    if sys.platform == "win32":
        return False
    return all(
        importlib.util.find_spec(name) is not None for name in ("pty", "fcntl", "termios")
    )


def default_shell() -> str:
    if sys.platform == "win32":
        return "powershell.exe"
    return os.environ.get("SHELL") or "bash"


class ProcessBackend(ABC):
    """A process attached to a terminal-like I/O channel.

    Subclasses deliver output through ``_emit_data`` and termination
    through ``_emit_exit``. Once ``kill()`` has been called neither
    callback fires again.
    """

    mode: ClassVar[BackendMode]

    def __init__(self, cols: int = 80, rows: int = 24, cwd: str | None = None) -> None:
        self.cols = cols
        self.rows = rows
        self.cwd = cwd or os.path.expanduser("~")
        self.killed = False
        self._exited = False
        self._data_cb: DataCallback | None = None
        self._exit_cb: ExitCallback | None = None

    def on_data(self, callback: DataCallback) -> None:
        self._data_cb = callback

    def on_exit(self, callback: ExitCallback) -> None:
        self._exit_cb = callback

    @property
    @abstractmethod
    def pid(self) -> int: ...

    @abstractmethod
    async def start(self) -> None:
        """Bring the process up. Raises ``SpawnError`` on failure."""

    @abstractmethod
    def write(self, data: str) -> None: ...

    @abstractmethod
    def resize(self, cols: int, rows: int) -> None: ...

    @abstractmethod
    def kill(self) -> None:
        """Terminate the process. Idempotent; silences all callbacks."""

    @property
    def alive(self) -> bool:
        return not self.killed and not self._exited

    def _emit_data(self, chunk: str) -> None:
        if self.killed or self._data_cb is None or not chunk:
            return
        try:
            self._data_cb(chunk)
        except Exception:
            logger.exception("Data callback failed for pid %d", self.pid)

    def _emit_exit(self, exit_code: int | None, sig: int | None) -> None:
        if self.killed or self._exited:
            return
        self._exited = True
        if self._exit_cb is None:
            return
        try:
            self._exit_cb(exit_code, sig)
        except Exception:
            logger.exception("Exit callback failed for pid %d", self.pid)


# ---------------------------------------------------------------------------
# Real PTY
# ---------------------------------------------------------------------------


class PtyProcessBackend(ProcessBackend):
    """A shell running on a real OS pseudo-terminal.

    - Process group isolation (start_new_session) for safe tree-killing
    - Non-blocking master fd watched by the event loop (no reader threads)
    - Incremental UTF-8 decoding so multi-byte characters never split

    Uses subprocess.Popen (not os.fork) to avoid deadlocks when
    spawned from within an asyncio event loop on macOS.
    """

    mode: ClassVar[BackendMode] = BackendMode.REAL

    def __init__(
        self,
        cols: int = 80,
        rows: int = 24,
        cwd: str | None = None,
        shell: str | None = None,
        env: dict[str, str] | None = None,
    ) -> None:
        super().__init__(cols, rows, cwd)
        self.shell = shell or default_shell()
        self.env = env or {}
        self._master_fd: int = -1
        self._proc: subprocess.Popen | None = None
        self._pgid: int = 0
        self._loop: asyncio.AbstractEventLoop | None = None
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._reap_task: asyncio.Task | None = None

    @property
    def pid(self) -> int:
        return self._proc.pid if self._proc is not None else 0

    async def start(self) -> None:
        import pty

        self._loop = asyncio.get_running_loop()
        try:
            master_fd, slave_fd = pty.openpty()
        except OSError as e:
            raise SpawnError(
                f"Could not allocate a pseudo-terminal: {e}",
                hint="Close some terminal sessions or raise the system PTY limit.",
            ) from e

        _set_winsize(slave_fd, self.cols, self.rows)

        env = {**os.environ, **self.env}
        env["TERM"] = "xterm-256color"
        env["COLORTERM"] = "truecolor"

        try:
            self._proc = subprocess.Popen(
                [self.shell],
                stdin=slave_fd,
                stdout=slave_fd,
                stderr=slave_fd,
                start_new_session=True,
                env=env,
                cwd=self.cwd,
            )
        except OSError as e:
            os.close(master_fd)
            raise SpawnError(
                f"Failed to start {self.shell}: {e}",
                hint="Check that the shell exists and the working directory is valid.",
            ) from e
        finally:
            os.close(slave_fd)

        self._master_fd = master_fd
        self._pgid = os.getpgid(self._proc.pid)
        os.set_blocking(master_fd, False)
        self._loop.add_reader(master_fd, self._on_readable)

        logger.info(
            "PTY started: pid=%d pgid=%d shell=%s cwd=%s",
            self._proc.pid,
            self._pgid,
            self.shell,
            self.cwd,
        )

    def _on_readable(self) -> None:
        try:
            data = os.read(self._master_fd, 4096)
        except BlockingIOError:
            return
        except OSError:
            # EIO once the slave side is closed: the shell is gone
            data = b""

        if not data:
            self._detach_reader()
            if self._loop is not None and not self.killed:
                self._reap_task = self._loop.create_task(self._reap())
            return

        self._emit_data(self._decoder.decode(data))

    async def _reap(self) -> None:
        """Collect the exit status and report it."""
        proc = self._proc
        returncode: int | None = None
        if proc is not None:
            loop = asyncio.get_running_loop()
            try:
                returncode = await loop.run_in_executor(None, lambda: proc.wait(timeout=5))
            except subprocess.TimeoutExpired:
                logger.warning("PTY pid %d closed its terminal but did not exit", proc.pid)
        self._close_master()

        exit_code: int | None = returncode
        sig: int | None = None
        if returncode is not None and returncode < 0:
            exit_code, sig = None, -returncode
        logger.info("PTY pid %d exited (code=%s signal=%s)", self.pid, exit_code, sig)
        self._emit_exit(exit_code, sig)

    def write(self, data: str) -> None:
        if not self.alive or self._master_fd < 0:
            return
        payload = data.encode("utf-8")
        while payload:
            try:
                written = os.write(self._master_fd, payload)
            except BlockingIOError:
                # Terminal input queue is full; drop the rest rather than stall the loop
                logger.warning("PTY pid %d input queue full, dropped %d bytes", self.pid, len(payload))
                return
            payload = payload[written:]

    def resize(self, cols: int, rows: int) -> None:
        if not self.alive or self._master_fd < 0:
            return
        self.cols, self.rows = cols, rows
        _set_winsize(self._master_fd, cols, rows)

    def kill(self) -> None:
        if self.killed:
            return
        self.killed = True
        self._detach_reader()
        if self._reap_task is not None and not self._reap_task.done():
            self._reap_task.cancel()

        if self._pgid:
            try:
                os.killpg(self._pgid, signal.SIGKILL)
                logger.info("Killed PTY pid %d (pgid=%d)", self.pid, self._pgid)
            except ProcessLookupError:
                logger.debug("Process group already gone: %d", self._pgid)
            except OSError as e:
                logger.warning("Error killing PTY pid %d: %s", self.pid, e)

        self._close_master()
        self._schedule_reap_zombie()

    def _schedule_reap_zombie(self) -> None:
        proc = self._proc
        if proc is None or proc.poll() is not None:
            return
        if self._loop is not None and not self._loop.is_closed():
            self._loop.run_in_executor(None, _wait_quietly, proc)
        else:
            _wait_quietly(proc)

    def _detach_reader(self) -> None:
        if self._loop is not None and self._master_fd >= 0 and not self._loop.is_closed():
            self._loop.remove_reader(self._master_fd)

    def _close_master(self) -> None:
        if self._master_fd >= 0:
            try:
                os.close(self._master_fd)
            except OSError:
                pass
            self._master_fd = -1


def _set_winsize(fd: int, cols: int, rows: int) -> None:
    import fcntl
    import termios

    try:
        fcntl.ioctl(fd, termios.TIOCSWINSZ, struct.pack("HHHH", rows, cols, 0, 0))
    except OSError as e:
        logger.debug("Could not set window size on fd %d: %s", fd, e)


def _wait_quietly(proc: subprocess.Popen) -> None:
    try:
        proc.wait(timeout=2)
    except subprocess.TimeoutExpired:
        logger.warning("Process %d did not exit after SIGKILL", proc.pid)


# ---------------------------------------------------------------------------
# Simulated backend
# ---------------------------------------------------------------------------

PROMPT = "$ "
GREETING_DELAY = 0.1
RESPONSE_DELAY = 0.05

DEMO_BANNER = (
    "\x1b[32mDemo Terminal Mode (native PTY not available)\x1b[0m\r\n",
    'Type "help" for available commands\r\n',
)

DEMO_LISTING = "src/  tests/  README.md  pyproject.toml\r\n"

ASSISTANT_HELP = (
    "This is a demo terminal. To use the real assistant CLI:\r\n"
    "1. Run termwise on a platform with PTY support (Linux, macOS)\r\n"
    "2. Or open a native terminal and run: claude\r\n"
)


class SimulatedProcessBackend(ProcessBackend):
    """Deterministic in-memory stand-in for a shell.

    Input is line-buffered; each completed line is answered from a small
    command table after a short delay, followed by a ``$ `` prompt. A
    greeting banner is sent shortly after start.
    """

    mode: ClassVar[BackendMode] = BackendMode.DEMO

    def __init__(
        self,
        cols: int = 80,
        rows: int = 24,
        cwd: str | None = None,
        session_count: Callable[[], int] | None = None,
    ) -> None:
        super().__init__(cols, rows, cwd)
        self.session_count = session_count
        self._pid = random.randint(1000, 9999)
        self._line: list[str] = []
        self._timers: set[asyncio.TimerHandle] = set()
        self._loop: asyncio.AbstractEventLoop | None = None
        self._last_when: float = 0.0

    @property
    def pid(self) -> int:
        return self._pid

    async def start(self) -> None:
        self._loop = asyncio.get_running_loop()
        self._later(GREETING_DELAY, *DEMO_BANNER, PROMPT)
        logger.info("Simulated terminal started: pid=%d cwd=%s", self._pid, self.cwd)

    def write(self, data: str) -> None:
        if not self.alive:
            return
        for ch in data:
            if ch in ("\r", "\n"):
                line = "".join(self._line).strip()
                self._line.clear()
                self._later(RESPONSE_DELAY, self.respond(line), PROMPT)
            elif ch in ("\x7f", "\b"):
                if self._line:
                    self._line.pop()
            else:
                self._line.append(ch)

    def respond(self, command: str) -> str:
        """The table answer for a single command line ("" for a blank line)."""
        if not command:
            return ""
        if command == "help":
            return "Available commands: help, ls, pwd, echo, clear, claude, pty-status\r\n"
        if command == "ls":
            return DEMO_LISTING
        if command == "pwd":
            return f"{self.cwd}\r\n"
        if command == "clear":
            return "\x1b[2J\x1b[H"
        if command == "claude":
            return ASSISTANT_HELP
        if command == "pty-status":
            count = self.session_count() if self.session_count is not None else 1
            return (
                "PTY Status:\r\n"
                "Mode: Demo (native PTY not available)\r\n"
                f"Active sessions: {count}\r\n"
            )
        if command == "echo":
            return "\r\n"
        if command.startswith("echo "):
            return f"{command[5:]}\r\n"
        return f"Command not found: {command}\r\n"

    def resize(self, cols: int, rows: int) -> None:
        if not self.alive:
            return
        self.cols, self.rows = cols, rows

    def kill(self) -> None:
        if self.killed:
            return
        self.killed = True
        for handle in self._timers:
            handle.cancel()
        self._timers.clear()
        logger.info("Simulated terminal %d killed", self._pid)

    def _later(self, delay: float, *chunks: str) -> None:
        if self._loop is None:
            return

        def _fire() -> None:
            self._timers.discard(handle)
            for chunk in chunks:
                self._emit_data(chunk)

        # Strictly increasing deadlines keep replies in input order
        when = max(self._loop.time() + delay, self._last_when + 1e-6)
        self._last_when = when
        handle = self._loop.call_at(when, _fire)
        self._timers.add(handle)


def select_backend_class(force_demo: bool = False) -> type[ProcessBackend]:
    """Pick the backend strategy for this process."""
    if not force_demo and pty_available():
        return PtyProcessBackend
    if not force_demo:
        logger.warning("Native PTY not available, terminals will run in demo mode")
    return SimulatedProcessBackend
