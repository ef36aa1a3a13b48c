"""Tests for termwise.truncation."""

from __future__ import annotations

from termwise.truncation import (
    clean_terminal_text,
    sanitize_binary_output,
    strip_ansi,
    truncate_text,
)


# ---------------------------------------------------------------------------
# truncate_text
# ---------------------------------------------------------------------------


class TestTruncateText:
    def test_empty_string(self) -> None:
        assert truncate_text("", 10) == ""

    def test_within_limit(self) -> None:
        assert truncate_text("hello", 10) == "hello"

    def test_exact_limit(self) -> None:
        assert truncate_text("x" * 500, 500) == "x" * 500

    def test_over_limit(self) -> None:
        assert truncate_text("x" * 600, 500) == "x" * 500

    def test_marker_counts_towards_limit(self) -> None:
        result = truncate_text("abcdefghij", 6, marker="...")
        assert result == "abc..."
        assert len(result) == 6

    def test_marker_longer_than_limit(self) -> None:
        assert truncate_text("abcdefghij", 2, marker="...") == "ab"

    def test_non_positive_limit(self) -> None:
        assert truncate_text("abc", 0) == ""


# ---------------------------------------------------------------------------
# strip_ansi
# ---------------------------------------------------------------------------


class TestStripAnsi:
    def test_no_ansi(self) -> None:
        assert strip_ansi("hello world") == "hello world"

    def test_color_codes(self) -> None:
        assert strip_ansi("\x1b[31mred\x1b[0m") == "red"

    def test_multiple_codes(self) -> None:
        text = "\x1b[1;31;40mhello\x1b[0m \x1b[32mworld\x1b[0m"
        assert strip_ansi(text) == "hello world"

    def test_cursor_movement(self) -> None:
        assert strip_ansi("\x1b[2Ahello") == "hello"

    def test_private_mode(self) -> None:
        assert strip_ansi("\x1b[?2004hprompt") == "prompt"

    def test_window_title(self) -> None:
        assert strip_ansi("\x1b]0;user@host: ~\x07$ ") == "$ "

    def test_charset_switch(self) -> None:
        assert strip_ansi("\x1b(Bplain") == "plain"

    def test_empty_string(self) -> None:
        assert strip_ansi("") == ""


# ---------------------------------------------------------------------------
# sanitize_binary_output
# ---------------------------------------------------------------------------


class TestSanitizeBinaryOutput:
    def test_clean_text(self) -> None:
        assert sanitize_binary_output("hello world") == "hello world"

    def test_preserves_whitespace_controls(self) -> None:
        assert sanitize_binary_output("a\tb\nc\rd") == "a\tb\nc\rd"

    def test_strips_null_and_bell(self) -> None:
        assert sanitize_binary_output("a\x00b\x07c") == "abc"

    def test_strips_c1_control(self) -> None:
        assert sanitize_binary_output("a\x7fb") == "ab"
        assert sanitize_binary_output("a\x9fb") == "ab"

    def test_keeps_normal_unicode(self) -> None:
        assert sanitize_binary_output("café 日本語") == "café 日本語"


# ---------------------------------------------------------------------------
# clean_terminal_text
# ---------------------------------------------------------------------------


class TestCleanTerminalText:
    def test_normalizes_line_endings(self) -> None:
        assert clean_terminal_text("a\r\nb\rc\n") == "a\nb\nc\n"

    def test_strips_escapes_and_binary(self) -> None:
        assert clean_terminal_text("\x1b[31mError\x1b[0m\x00: boom\r\n") == "Error: boom\n"
