"""ErrorPatternMemory — learns error → fix associations from live terminal output.

An error seen for the first time becomes an open ``ErrorRecord``. The
first plausible output that follows it in the same session is taken as
its fix and stored as a ``Solution`` on a ``Pattern``. Later occurrences
of a structurally similar error match that pattern, bump its confidence,
and surface the stored fix.

Matching: an exact signature hit wins outright; otherwise every stored
pattern is scored with ``classify.similarity`` and the best one at or
above ``similarity_threshold`` is used.
"""

from __future__ import annotations

import asyncio
import logging
import os
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from termwise.config import MemoryConfig
from termwise.errors import PatternStoreUnavailable
from termwise.memory.classify import (
    classify,
    detect,
    filter_noise,
    is_prompt_line,
    normalize,
    similarity,
)
from termwise.memory.models import ErrorRecord, Pattern, Solution
from termwise.memory.store import PatternStore
from termwise.truncation import truncate_text

logger = logging.getLogger(__name__)

RAW_TEXT_LIMIT = 2000
FIX_TEXT_LIMIT = 1000
FALLBACK_FIX_WINDOW = 60.0


@dataclass
class CaptureResult:
    """Outcome of ``capture_error``."""

    matched: bool = False
    is_error: bool = False
    category: str | None = None
    pattern: Pattern | None = None
    confidence: float | None = None
    error_id: str | None = None

    @property
    def solution(self) -> Solution | None:
        return self.pattern.best_solution if self.pattern else None

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"matched": self.matched}
        if self.pattern is not None:
            result["pattern"] = {
                "id": self.pattern.id,
                "signature": self.pattern.signature,
                "category": self.pattern.category,
                "solution": self.solution.fix_text if self.solution else None,
            }
        if self.confidence is not None:
            result["confidence"] = self.confidence
        if self.error_id is not None:
            result["errorId"] = self.error_id
        return result


@dataclass
class FixCaptureResult:
    """Outcome of ``capture_fix``."""

    captured: bool = False
    pattern_id: str | None = None
    reason: str = ""


@dataclass
class MemoryMetrics:
    total_errors: int = 0
    total_fixes: int = 0
    matches_found: int = 0
    average_retrieval_ms: float = 0.0

    def record_retrieval(self, elapsed_ms: float) -> None:
        n = self.matches_found
        self.average_retrieval_ms = (self.average_retrieval_ms * (n - 1) + elapsed_ms) / n


@dataclass
class ErrorPatternMemory:
    """Shared, durable store of learned error patterns.

    Safe to call from many sessions at once: every mutation of patterns,
    pending records and metrics happens under one ``asyncio.Lock``, and
    the store file is rewritten inside the same critical section.

    If the store cannot be read or written the memory disables itself:
    every capture then returns an inert result and the terminal carries on.
    """

    config: MemoryConfig = field(default_factory=MemoryConfig)
    store: PatternStore | None = None

    # Internal state
    metrics: MemoryMetrics = field(default_factory=MemoryMetrics, init=False)
    _patterns: dict[str, Pattern] = field(default_factory=dict, init=False)
    _by_signature: dict[str, str] = field(default_factory=dict, init=False)
    _pending: dict[str, ErrorRecord] = field(default_factory=dict, init=False)
    _lock: asyncio.Lock = field(default_factory=asyncio.Lock, init=False)
    _loaded: bool = field(default=False, init=False)
    _available: bool = field(default=True, init=False)

    def __post_init__(self) -> None:
        if self.store is None:
            self.store = PatternStore(Path(os.path.expanduser(self.config.data_path)))
        self._available = self.config.enabled

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def available(self) -> bool:
        return self._available

    async def load(self) -> None:
        """Load stored patterns. Idempotent."""
        async with self._lock:
            await self._ensure_loaded()

    async def _ensure_loaded(self) -> None:
        if self._loaded or not self._available:
            return
        self._loaded = True
        try:
            patterns = await self.store.load()  # type: ignore[union-attr]
        except PatternStoreUnavailable as e:
            self._disable(e)
            return
        for pattern in patterns:
            self._index(pattern)
        logger.info("Error pattern memory ready with %d patterns", len(self._patterns))

    def _disable(self, error: Exception) -> None:
        logger.warning("Error pattern learning disabled: %s", error)
        self._available = False

    async def flush(self) -> None:
        """Write the current patterns to the store."""
        async with self._lock:
            await self._persist()

    async def _persist(self) -> None:
        if not self._available or not self._loaded:
            return
        try:
            await self.store.save(list(self._patterns.values()))  # type: ignore[union-attr]
        except PatternStoreUnavailable as e:
            self._disable(e)

    # ------------------------------------------------------------------
    # Capture
    # ------------------------------------------------------------------

    async def capture_error(self, chunk: str, context: dict[str, Any] | None = None) -> CaptureResult:
        """Classify an output chunk and look it up among learned patterns.

        Returns ``is_error=False`` for chunks that are not errors. A matched
        pattern has its count and confidence bumped; an unmatched error is
        recorded (or its identical open record reused) and its id returned.
        """
        if not self._available:
            return CaptureResult()

        detection = detect(chunk)
        if detection is None:
            return CaptureResult()

        context = context or {}
        signature = normalize(detection.line)
        started = time.perf_counter()

        async with self._lock:
            await self._ensure_loaded()
            if not self._available:
                return CaptureResult(is_error=True, category=detection.category)

            self._expire_pending()
            pattern = self._find_similar(signature, detection.category)
            if pattern is not None:
                confidence = pattern.record_match()
                self.metrics.matches_found += 1
                self.metrics.record_retrieval((time.perf_counter() - started) * 1000)
                await self._persist()
                logger.info(
                    "Matched error pattern %s (%s) confidence=%.2f",
                    pattern.id,
                    pattern.category,
                    confidence,
                )
                return CaptureResult(
                    matched=True,
                    is_error=True,
                    category=pattern.category,
                    pattern=pattern,
                    confidence=confidence,
                )

            record = self._open_record(detection.text, detection.category, signature, context)
            return CaptureResult(
                matched=False,
                is_error=True,
                category=detection.category,
                error_id=record.id,
            )

    def _open_record(
        self, text: str, category: str, signature: str, context: dict[str, Any]
    ) -> ErrorRecord:
        session_id = context.get("session_id", "")
        for record in self._pending.values():
            if record.signature == signature and record.session_id == session_id:
                record.timestamp = time.time()
                return record

        record = ErrorRecord(
            raw_text=truncate_text(text, RAW_TEXT_LIMIT),
            category=category,
            signature=signature,
            context={
                "last_commands": list(context.get("last_commands", [])),
                "cwd": context.get("working_directory", ""),
                "session_id": session_id,
            },
        )
        self._pending[record.id] = record
        self.metrics.total_errors += 1
        logger.debug("Opened error record %s (%s): %s", record.id, category, signature)
        return record

    def is_plausible_fix(self, candidate: str) -> bool:
        """Whether output looks like a fix rather than a prompt, noise or another error."""
        text = filter_noise(candidate)
        if len(text) < self.config.min_fix_length:
            return False
        lines = [ln for ln in text.split("\n") if ln.strip()]
        if all(is_prompt_line(ln) for ln in lines):
            return False
        if len(lines) == 1 and lines[0].lstrip().startswith(("$", ">")):
            return False
        return classify(text) is None

    async def capture_fix(
        self,
        candidate: str,
        error_id: str | None,
        context: dict[str, Any] | None = None,
    ) -> FixCaptureResult:
        """Store ``candidate`` as the fix for an open error, if it is plausible.

        An unknown ``error_id`` falls back to the newest open error of the
        same session seen within the last minute.
        """
        if not self._available:
            return FixCaptureResult(reason="learning disabled")
        if not self.is_plausible_fix(candidate):
            return FixCaptureResult(reason="not a plausible fix")

        context = context or {}
        session_id = context.get("session_id", "")

        async with self._lock:
            await self._ensure_loaded()
            if not self._available:
                return FixCaptureResult(reason="learning disabled")

            self._expire_pending()
            record = self._pending.get(error_id) if error_id else None
            if record is None:
                record = self._recent_record(session_id)
            if record is None:
                return FixCaptureResult(reason="no open error to link the fix to")

            pattern = self._find_similar(record.signature, record.category)
            if pattern is None:
                pattern = Pattern(signature=record.signature, category=record.category)
                self._index(pattern)

            commands = context.get("last_commands") or record.context.get("last_commands") or []
            pattern.add_solution(
                Solution(
                    fix_text=truncate_text(filter_noise(candidate), FIX_TEXT_LIMIT),
                    session_id=session_id or record.session_id,
                    command=commands[-1] if commands else None,
                )
            )
            record.resolved = True
            self._pending.pop(record.id, None)
            self.metrics.total_fixes += 1

            if len(self._patterns) > self.config.max_patterns:
                self._trim()
            await self._persist()

        logger.info("Captured error -> fix pattern %s (%s)", pattern.id, pattern.category)
        return FixCaptureResult(captured=True, pattern_id=pattern.id)

    def _recent_record(self, session_id: str) -> ErrorRecord | None:
        cutoff = time.time() - FALLBACK_FIX_WINDOW
        candidates = [
            r
            for r in self._pending.values()
            if r.timestamp >= cutoff and (not session_id or r.session_id == session_id)
        ]
        if not candidates:
            return None
        return max(candidates, key=lambda r: r.timestamp)

    # ------------------------------------------------------------------
    # Lookup / maintenance
    # ------------------------------------------------------------------

    def _index(self, pattern: Pattern) -> None:
        self._patterns[pattern.id] = pattern
        self._by_signature[pattern.signature] = pattern.id

    def _find_similar(self, signature: str, category: str) -> Pattern | None:
        exact_id = self._by_signature.get(signature)
        if exact_id is not None:
            exact = self._patterns.get(exact_id)
            if exact is not None and exact.category == category:
                return exact

        best: Pattern | None = None
        best_score = 0.0
        for pattern in self._patterns.values():
            score = similarity(signature, category, pattern.signature, pattern.category)
            if score >= self.config.similarity_threshold and score > best_score:
                best, best_score = pattern, score
        return best

    def _expire_pending(self) -> None:
        cutoff = time.time() - self.config.error_timeout
        expired = [rid for rid, r in self._pending.items() if r.timestamp < cutoff]
        for rid in expired:
            del self._pending[rid]
        if expired:
            logger.debug("Expired %d error records without a fix", len(expired))

    def _trim(self) -> None:
        """Drop the least used 10% of patterns (at least one)."""
        ranked = sorted(
            self._patterns.values(),
            key=lambda p: (p.match_count, p.last_matched or p.created_at),
        )
        for pattern in ranked[: max(1, len(ranked) // 10)]:
            del self._patterns[pattern.id]
            if self._by_signature.get(pattern.signature) == pattern.id:
                del self._by_signature[pattern.signature]
        logger.info("Trimmed pattern memory to %d patterns", len(self._patterns))

    def close_session(self, session_id: str) -> int:
        """Forget the open errors of a finished session. Returns how many."""
        closed = [rid for rid, r in self._pending.items() if r.session_id == session_id]
        for rid in closed:
            del self._pending[rid]
        return len(closed)

    def pending(self) -> list[ErrorRecord]:
        return list(self._pending.values())

    def patterns(self) -> list[Pattern]:
        return list(self._patterns.values())

    def get_metrics(self) -> dict[str, Any]:
        lookups = self.metrics.total_errors + self.metrics.matches_found
        hit_rate = self.metrics.matches_found / lookups * 100 if lookups else 0.0
        return {
            "total_errors": self.metrics.total_errors,
            "total_fixes": self.metrics.total_fixes,
            "matches_found": self.metrics.matches_found,
            "average_retrieval_ms": round(self.metrics.average_retrieval_ms, 3),
            "patterns_stored": len(self._patterns),
            "pending_errors": len(self._pending),
            "hit_rate": f"{hit_rate:.2f}%",
            "available": self._available,
        }
