"""ErrorRecord, Pattern, and Solution data types."""

from __future__ import annotations

import math
import time
import uuid
from dataclasses import asdict, dataclass, field
from typing import Any

MIN_CONFIDENCE = 0.1
MAX_CONFIDENCE = 0.99

# Matches needed to cover ~63% of the distance to MAX_CONFIDENCE
CONFIDENCE_SCALE = 5.0

SOLUTION_BASE_CONFIDENCE = 0.5
SOLUTION_REINFORCEMENT = 0.1


def _gen_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex[:12]}"


def clamp_confidence(value: float) -> float:
    return max(MIN_CONFIDENCE, min(MAX_CONFIDENCE, value))


def confidence_for(match_count: int) -> float:
    """Saturating confidence curve: starts at MIN, approaches MAX, never exceeds it."""
    span = MAX_CONFIDENCE - MIN_CONFIDENCE
    return clamp_confidence(
        MIN_CONFIDENCE + span * (1.0 - math.exp(-max(match_count, 0) / CONFIDENCE_SCALE))
    )


@dataclass
class ErrorRecord:
    """One observed error that no stored pattern explained yet.

    Stays open until a plausible fix is captured for it, its capture
    window closes, it expires, or its session ends.
    """

    raw_text: str
    category: str
    signature: str
    id: str = field(default_factory=lambda: _gen_id("error"))
    context: dict[str, Any] = field(default_factory=dict)  # last_commands, cwd, session_id
    timestamp: float = field(default_factory=time.time)
    resolved: bool = False

    @property
    def session_id(self) -> str:
        return self.context.get("session_id", "")


@dataclass
class Solution:
    """A fix observed after an error, linked to exactly one Pattern."""

    fix_text: str
    session_id: str = ""
    command: str | None = None  # last command entered before the fix output
    confidence: float = SOLUTION_BASE_CONFIDENCE
    captured_at: float = field(default_factory=time.time)

    def reinforce(self) -> None:
        self.confidence = clamp_confidence(self.confidence + SOLUTION_REINFORCEMENT)
        self.captured_at = time.time()


@dataclass
class Pattern:
    """Aggregate of structurally similar errors and the fixes seen for them."""

    signature: str
    category: str
    id: str = field(default_factory=lambda: _gen_id("pattern"))
    solutions: list[Solution] = field(default_factory=list)
    match_count: int = 0
    confidence: float = MIN_CONFIDENCE
    created_at: float = field(default_factory=time.time)
    last_matched: float | None = None

    def record_match(self) -> float:
        """Count a successful match and return the new (never lower) confidence."""
        self.match_count += 1
        self.last_matched = time.time()
        self.confidence = clamp_confidence(max(self.confidence, confidence_for(self.match_count)))
        return self.confidence

    def add_solution(self, solution: Solution) -> Solution:
        """Attach a fix; an identical fix text reinforces the existing one."""
        for existing in self.solutions:
            if existing.fix_text == solution.fix_text:
                existing.reinforce()
                return existing
        self.solutions.append(solution)
        return solution

    @property
    def best_solution(self) -> Solution | None:
        if not self.solutions:
            return None
        return max(self.solutions, key=lambda s: (s.confidence, s.captured_at))


def pattern_to_dict(pattern: Pattern) -> dict[str, Any]:
    return asdict(pattern)


def pattern_from_dict(data: dict[str, Any]) -> Pattern:
    solutions = [
        Solution(
            fix_text=s["fix_text"],
            session_id=s.get("session_id", ""),
            command=s.get("command"),
            confidence=clamp_confidence(float(s.get("confidence", SOLUTION_BASE_CONFIDENCE))),
            captured_at=float(s.get("captured_at", time.time())),
        )
        for s in data.get("solutions", [])
    ]
    match_count = int(data.get("match_count", 0))
    return Pattern(
        id=data["id"],
        signature=data["signature"],
        category=data.get("category", "unknown"),
        solutions=solutions,
        match_count=match_count,
        confidence=clamp_confidence(
            max(float(data.get("confidence", MIN_CONFIDENCE)), confidence_for(match_count))
        ),
        created_at=float(data.get("created_at", time.time())),
        last_matched=data.get("last_matched"),
    )
