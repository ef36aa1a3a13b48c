"""Tests for termwise.memory.classify (noise filter, detectors, signatures, similarity)."""

from __future__ import annotations

import pytest

from termwise.memory.classify import (
    CATEGORIES,
    classify,
    detect,
    filter_noise,
    is_prompt_line,
    normalize,
    similarity,
)


# ---------------------------------------------------------------------------
# filter_noise
# ---------------------------------------------------------------------------


class TestFilterNoise:
    @pytest.mark.parametrize(
        "line",
        [
            "Saving session...",
            "✻ Germinating… (esc to interrupt)",
            "Smooshing tokens",
            "Welcome to Claude Code CLI",
            "  50% |██████████          |",
        ],
    )
    def test_drops_chatter(self, line: str) -> None:
        assert filter_noise(line) == ""

    def test_keeps_real_lines(self) -> None:
        text = "Saving session...\nError: Cannot find module 'chalk'\n"
        assert filter_noise(text) == "Error: Cannot find module 'chalk'"

    def test_strips_ansi(self) -> None:
        assert filter_noise("\x1b[31mfatal: not a git repository\x1b[0m\r\n") == (
            "fatal: not a git repository"
        )

    def test_percent_with_words_is_not_progress(self) -> None:
        assert filter_noise("100%   failed to compile") == "100%   failed to compile"


# ---------------------------------------------------------------------------
# is_prompt_line
# ---------------------------------------------------------------------------


class TestPromptLine:
    @pytest.mark.parametrize(
        "line",
        [
            "$ ",
            "# ",
            ">>> ",
            "(venv) user@host:~/app$ ",
            "user@MacBook-Pro ~ % ",
            "➜  app git:(main) ✗ ",
            "~/src ❯",
            "\x1b[1;32muser@box\x1b[0m:\x1b[34m~\x1b[0m$ ",
        ],
    )
    def test_prompts(self, line: str) -> None:
        assert is_prompt_line(line)

    @pytest.mark.parametrize("line", ["added 1 package in 2s", "npm install chalk", ""])
    def test_not_prompts(self, line: str) -> None:
        assert not is_prompt_line(line)


# ---------------------------------------------------------------------------
# classify
# ---------------------------------------------------------------------------


class TestClassify:
    @pytest.mark.parametrize(
        ("text", "category"),
        [
            ("bash: foo: command not found", "command-not-found"),
            ("Error: EACCES: permission denied, open '/etc/hosts'", "permission-denied"),
            ("Error: Cannot find module 'chalk'", "module-not-found"),
            ("ModuleNotFoundError: No module named 'requests'", "module-not-found"),
            ("SyntaxError: Unexpected token '}'", "syntax-error"),
            ("TypeError: Cannot read properties of undefined (reading 'map')", "type-error"),
            ("ReferenceError: foo is not defined", "reference-error"),
            ("cat: notes.txt: No such file or directory", "file-not-found"),
            ("Error: listen EADDRINUSE: address already in use :::3000", "port-in-use"),
            ("npm ERR! Build failed with 2 errors", "generic-failure"),
        ],
    )
    def test_categories(self, text: str, category: str) -> None:
        detection = classify(text)
        assert detection is not None
        assert detection.category == category

    def test_order_is_first_match_wins(self) -> None:
        # Matches both permission-denied and generic-failure ("error:")
        detection = classify("error: permission denied")
        assert detection is not None
        assert detection.category == "permission-denied"

    def test_not_an_error(self) -> None:
        assert classify("added 1 package in 2s") is None
        assert classify("") is None

    def test_line_is_the_matching_line(self) -> None:
        detection = classify("> node app.js\nError: Cannot find module 'chalk'\n  at foo")
        assert detection is not None
        assert detection.line == "Error: Cannot find module 'chalk'"

    def test_categories_listed_in_order(self) -> None:
        assert CATEGORIES[0] == "command-not-found"
        assert CATEGORIES[-1] == "generic-failure"
        assert len(CATEGORIES) == 9

    def test_detect_ignores_noise(self) -> None:
        assert detect("✻ Germinating… (esc to interrupt)") is None


# ---------------------------------------------------------------------------
# normalize
# ---------------------------------------------------------------------------


class TestNormalize:
    def test_lowercases_and_collapses(self) -> None:
        assert normalize("  Error:   BOOM  ") == "error: boom"

    def test_paths_replaced(self) -> None:
        a = normalize("Error: ENOENT: no such file, open '/home/alice/app/config.json'")
        b = normalize("Error: ENOENT: no such file, open '/srv/bob/config.json'")
        assert a == b
        assert "<path>" in a

    def test_numbers_and_times_replaced(self) -> None:
        a = normalize("2024-01-02T10:11:12Z port 3000 in use at 10:11:12")
        b = normalize("2025-06-07T01:02:03Z port 8080 in use at 01:02:03")
        assert a == b

    def test_hex_replaced(self) -> None:
        assert normalize("segfault at 0x7ffd1234") == "segfault at <addr>"

    def test_strips_ansi(self) -> None:
        assert normalize("\x1b[31mError\x1b[0m") == "error"


# ---------------------------------------------------------------------------
# similarity
# ---------------------------------------------------------------------------


class TestSimilarity:
    def test_identical(self) -> None:
        assert similarity("abc def", "x", "abc def", "x") == 1.0

    def test_same_category_disjoint_tokens(self) -> None:
        assert similarity("alpha beta", "c", "gamma delta", "c") == pytest.approx(0.3)

    def test_different_category_disjoint(self) -> None:
        assert similarity("alpha beta", "c", "gamma delta", "d") == 0.0

    def test_substring_containment(self) -> None:
        short = "cannot find module 'chalk'"
        long = "error: cannot find module 'chalk' require stack"
        assert similarity(short, "m", long, "m") == pytest.approx(1.0)

    def test_short_substring_does_not_count(self) -> None:
        score = similarity("error", "g", "error: everything broke", "g")
        assert score < 0.8

    def test_bounded(self) -> None:
        score = similarity("one two three", "a", "one two four", "a")
        assert 0.0 <= score <= 1.0
