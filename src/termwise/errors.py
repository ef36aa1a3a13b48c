"""Error taxonomy shared by the terminal, memory and doctor subsystems."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass
class TermwiseError(Exception):
    message: str
    hint: str = ""

    def __str__(self) -> str:
        if self.hint:
            return f"{self.message} Hint: {self.hint}"
        return self.message


@dataclass
class SpawnError(TermwiseError):
    """The process backend could not be created. The session is not registered."""

    session_id: str = ""


class PatternStoreUnavailable(TermwiseError):
    """The durable pattern store cannot be read or written."""


class AIProviderUnavailable(TermwiseError):
    """No AI tier could produce an answer (missing, failed or timed out)."""


class MalformedAIResponse(TermwiseError):
    """An AI response could not be parsed into the structured shape."""


class InvalidFixShape(TermwiseError):
    """A fix passed to apply_fix is neither execute_command nor edit_file."""
