"""Error pattern memory: learns which output fixed which error."""

from termwise.memory.classify import CATEGORIES, Detection, classify, detect, filter_noise, normalize
from termwise.memory.models import ErrorRecord, Pattern, Solution
from termwise.memory.patterns import CaptureResult, ErrorPatternMemory, FixCaptureResult
from termwise.memory.store import PatternStore

__all__ = [
    "CATEGORIES",
    "CaptureResult",
    "Detection",
    "ErrorPatternMemory",
    "ErrorRecord",
    "FixCaptureResult",
    "Pattern",
    "PatternStore",
    "Solution",
    "classify",
    "detect",
    "filter_noise",
    "normalize",
]
