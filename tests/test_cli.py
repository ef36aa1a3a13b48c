"""Tests for termwise.cli logging setup."""

from __future__ import annotations

import logging
from collections.abc import Iterator
from pathlib import Path

import pytest

from termwise.cli import _log_path, setup_file_logging
from termwise.config import MemoryConfig, TermwiseConfig


@pytest.fixture
def root_logger() -> Iterator[logging.Logger]:
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield root
    for h in root.handlers[:]:
        root.removeHandler(h)
        h.close()
    for h in handlers:
        root.addHandler(h)
    root.setLevel(level)


class TestShellLogging:
    def test_records_go_to_file_not_stderr(self, tmp_path: Path, root_logger: logging.Logger) -> None:
        log_file = tmp_path / "memory" / "termwise.log"
        setup_file_logging(log_file)

        assert root_logger.level == logging.WARNING
        assert [type(h) for h in root_logger.handlers] == [logging.FileHandler]

        log = logging.getLogger("termwise.pty.manager")
        log.info("Session cli-1 created")
        log.warning("Max sessions reached")
        for h in root_logger.handlers:
            h.flush()

        text = log_file.read_text(encoding="utf-8")
        assert "Max sessions reached" in text
        assert "Session cli-1 created" not in text

    def test_verbose_enables_debug(self, tmp_path: Path, root_logger: logging.Logger) -> None:
        setup_file_logging(tmp_path / "termwise.log", verbose=True)
        assert root_logger.level == logging.DEBUG

    def test_log_file_beside_pattern_store(self, tmp_path: Path) -> None:
        config = TermwiseConfig(
            memory=MemoryConfig(data_path=str(tmp_path / "memory" / "error-patterns.json"))
        )
        assert _log_path(config) == tmp_path / "memory" / "termwise.log"
