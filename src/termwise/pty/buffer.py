"""Bounded per-session buffers: recent output window and command history."""

from __future__ import annotations

from collections import deque


class OutputWindow:
    """Sliding window over the most recent terminal output.

    Holds at most ``max_chars`` characters; when a chunk pushes the total
    past the cap the oldest characters are dropped first.

    The window also tracks how much of its tail has not been taken yet, so
    a reader can consume output as whole lines: ``take_lines()`` returns the
    new text up to the last newline and leaves a trailing partial line in
    place until the rest of it arrives.
    """

    def __init__(self, max_chars: int = 1000) -> None:
        if max_chars <= 0:
            raise ValueError("max_chars must be positive")
        self._chars: deque[str] = deque(maxlen=max_chars)
        self._total_chars: int = 0
        self._unread: int = 0

    def append(self, chunk: str) -> None:
        if not chunk:
            return
        self._chars.extend(chunk)
        self._total_chars += len(chunk)
        self._unread = min(self._unread + len(chunk), len(self._chars))

    def text(self) -> str:
        """The windowed output as a single string, oldest first."""
        return "".join(self._chars)

    def tail(self, n: int) -> str:
        """The last ``n`` characters of the window."""
        if n <= 0:
            return ""
        text = self.text()
        return text[-n:]

    @property
    def partial(self) -> str:
        """Untaken text after the last newline."""
        unread = self.tail(self._unread)
        return unread[unread.rfind("\n") + 1 :]

    def take_lines(self) -> str:
        """Untaken complete lines, newline included; "" if there are none."""
        unread = self.tail(self._unread)
        end = unread.rfind("\n") + 1
        self._unread -= end
        return unread[:end]

    def take_partial(self) -> str:
        """Take all untaken text as it stands, trailing partial line included."""
        rest = self.tail(self._unread)
        self._unread = 0
        return rest

    @property
    def max_chars(self) -> int:
        return self._chars.maxlen or 0

    @property
    def total_chars(self) -> int:
        """Total characters ever appended."""
        return self._total_chars

    def clear(self) -> None:
        self._chars.clear()
        self._total_chars = 0
        self._unread = 0

    def __len__(self) -> int:
        return len(self._chars)


class CommandRing:
    """FIFO ring of the last commands entered in a session.

    Input arrives as raw keystrokes; ``feed()`` accumulates them until a
    line terminator and records the completed, non-empty line.
    """

    def __init__(self, capacity: int = 10) -> None:
        if capacity <= 0:
            raise ValueError("capacity must be positive")
        self._commands: deque[str] = deque(maxlen=capacity)
        self._pending: list[str] = []
        self._escape = ""

    def feed(self, data: str) -> list[str]:
        """Consume raw input and return the commands it completed."""
        completed: list[str] = []
        for ch in data:
            if self._escape:
                self._escape = _next_escape_state(self._escape, ch)
                continue
            if ch == "\x1b":
                self._escape = "esc"
            elif ch in ("\r", "\n"):
                line = "".join(self._pending).strip()
                self._pending.clear()
                if line:
                    self._commands.append(line)
                    completed.append(line)
            elif ch in ("\x7f", "\b"):
                if self._pending:
                    self._pending.pop()
            elif ch == "\x03":
                # Ctrl-C abandons the line being typed
                self._pending.clear()
            elif ord(ch) < 32:
                continue
            else:
                self._pending.append(ch)
        return completed

    def push(self, command: str) -> None:
        command = command.strip()
        if command:
            self._commands.append(command)

    def recent(self, n: int | None = None) -> list[str]:
        """Recorded commands, oldest first; the last ``n`` if given."""
        commands = list(self._commands)
        if n is None:
            return commands
        return commands[-n:] if n > 0 else []

    @property
    def capacity(self) -> int:
        return self._commands.maxlen or 0

    def __len__(self) -> int:
        return len(self._commands)


def _next_escape_state(state: str, ch: str) -> str:
    """Advance through a key escape sequence; "" once it is complete.

    Handles CSI (``ESC [ ... final``), SS3 (``ESC O x``, cursor keys in
    application mode) and two-byte ``ESC x`` (Alt+key).
    """
    if state == "esc":
        if ch == "[":
            return "csi"
        if ch == "O":
            return "ss3"
        return ""
    if state == "csi":
        return "" if ch.isalpha() or ch == "~" else "csi"
    return ""
