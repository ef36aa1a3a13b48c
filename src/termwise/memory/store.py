"""PatternStore — durable JSON file backing the error pattern memory."""

from __future__ import annotations

import json
import logging
import os
import time
from pathlib import Path

import aiofiles

from termwise.errors import PatternStoreUnavailable
from termwise.memory.models import Pattern, pattern_from_dict, pattern_to_dict

logger = logging.getLogger(__name__)

STORE_VERSION = 1


class PatternStore:
    """Reads and atomically rewrites the pattern file.

    The file holds ``{"version": 1, "patterns": [...]}``. A bare list of
    patterns is accepted on load. Writes go to a sibling temp file that is
    then renamed over the original, so a crash never leaves a torn file.
    Callers serialize access; the store itself holds no lock.
    """

    def __init__(self, path: Path | str) -> None:
        self.path = Path(os.path.expanduser(str(path)))

    async def load(self) -> list[Pattern]:
        """Load all patterns. A missing file is an empty store.

        Raises:
            PatternStoreUnavailable: the file exists but cannot be read.
        """
        if not self.path.exists():
            logger.info("No pattern store at %s, starting fresh", self.path)
            return []

        try:
            async with aiofiles.open(self.path, "r", encoding="utf-8") as f:
                raw = await f.read()
        except OSError as e:
            raise PatternStoreUnavailable(
                f"Cannot read pattern store {self.path}: {e}",
                hint="Check file permissions or point TERMWISE_MEMORY_PATH elsewhere.",
            ) from e

        try:
            data = json.loads(raw) if raw.strip() else []
        except json.JSONDecodeError:
            self._quarantine()
            return []

        entries = data.get("patterns", []) if isinstance(data, dict) else data
        patterns: list[Pattern] = []
        for entry in entries:
            try:
                patterns.append(pattern_from_dict(entry))
            except (KeyError, TypeError, ValueError) as e:
                logger.warning("Skipping malformed pattern in %s: %s", self.path, e)
        logger.info("Loaded %d error patterns from %s", len(patterns), self.path)
        return patterns

    async def save(self, patterns: list[Pattern]) -> None:
        """Rewrite the whole store.

        Raises:
            PatternStoreUnavailable: the directory or file cannot be written.
        """
        payload = {
            "version": STORE_VERSION,
            "patterns": [pattern_to_dict(p) for p in patterns],
        }
        tmp_path = self.path.with_name(self.path.name + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            async with aiofiles.open(tmp_path, "w", encoding="utf-8") as f:
                await f.write(json.dumps(payload, ensure_ascii=False, indent=2))
            os.replace(tmp_path, self.path)
        except OSError as e:
            raise PatternStoreUnavailable(
                f"Cannot write pattern store {self.path}: {e}",
                hint="Check disk space and permissions.",
            ) from e

    def _quarantine(self) -> None:
        """Move a corrupt store aside so the next save starts clean."""
        backup = self.path.with_suffix(f".{int(time.time())}.corrupt")
        try:
            self.path.rename(backup)
            logger.warning("Corrupt pattern store moved to %s", backup)
        except OSError as e:
            logger.warning("Corrupt pattern store %s could not be moved: %s", self.path, e)
