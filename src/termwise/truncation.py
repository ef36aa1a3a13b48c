"""Text hygiene — strip terminal escapes and bound text before it is stored or sent."""

from __future__ import annotations

import re

# CSI sequences (colors, cursor movement) and OSC sequences (window titles).
_ANSI_RE = re.compile(r"\x1b\[[0-9;?]*[a-zA-Z]|\x1b\][^\x07\x1b]*(?:\x07|\x1b\\)|\x1b[()][A-Z0-9]")

STACK_TRACE_LIMIT = 500


def strip_ansi(text: str) -> str:
    """Strip ANSI escape sequences from text."""
    return _ANSI_RE.sub("", text)


def sanitize_binary_output(text: str) -> str:
    """Remove binary garbage from output.

    Keeps printable chars, tabs, newlines, and carriage returns.
    Strips everything else (control chars, undefined code points, format chars).
    """
    cleaned = []
    for ch in text:
        cp = ord(ch)
        if ch in ("\t", "\n", "\r"):
            cleaned.append(ch)
        elif cp >= 32 and cp not in range(0x7F, 0xA0):
            if cp not in range(0xFFF9, 0xFFFC):
                cleaned.append(ch)
    return "".join(cleaned)


def clean_terminal_text(text: str) -> str:
    """ANSI-strip, sanitize and normalize line endings of a terminal chunk."""
    text = sanitize_binary_output(strip_ansi(text))
    return text.replace("\r\n", "\n").replace("\r", "\n")


def truncate_text(text: str, limit: int, marker: str = "") -> str:
    """Cut ``text`` to at most ``limit`` characters, appending ``marker`` if cut.

    The marker counts towards the limit so the result never exceeds it.
    """
    if limit <= 0:
        return ""
    if len(text) <= limit:
        return text
    if len(marker) >= limit:
        return text[:limit]
    return text[: limit - len(marker)] + marker
