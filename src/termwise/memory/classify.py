"""Error classification vocabulary shared by the pattern memory and the doctor.

Detection runs in three steps:

1. ``filter_noise`` drops benign chatter (assistant status lines, spinners,
   progress bars) so it can never be mistaken for an error.
2. ``classify`` runs the ordered detector battery; the FIRST detector that
   matches decides the category. The order matters because one line can
   trip several detectors ("Error: EACCES: permission denied" is both a
   generic failure and a permission problem).
3. ``normalize`` strips volatile tokens to produce a stable signature.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from termwise.truncation import clean_terminal_text, strip_ansi

NOISE_PHRASES = (
    "saving session",
    "claude code cli",
    "interrupt)",
    "germinating",
    "smooshing",
    "esc to interrupt",
    "auto-accept edits",
    "tokens remaining",
)

_SPINNER_RE = re.compile(r"^\s*[⠋⠙⠹⠸⠼⠴⠦⠧⠇⠏✻✽✶✢·*]\s+\w+(?:…|\.\.\.)")
_PROGRESS_RE = re.compile(r"\d{1,3}%\s*[|\[]?[█▉▊▋▌▍▎▏#=>\-]{3,}|[█▉▊▋▌▍▎▏#=]{5,}\s*[\]|]?\s*\d{1,3}%")
# "$", "user@host:~/app$", "user@MacBook-Pro ~ %", ">>>", "➜  app git:(main) ✗"
_PROMPT_END_RE = re.compile(r"[$#%>❯✗]$")

# Ordered battery: first match wins.
DETECTORS: tuple[tuple[str, re.Pattern[str]], ...] = (
    (
        "command-not-found",
        re.compile(r"command not found|is not recognized as an internal or external command", re.I),
    ),
    (
        "permission-denied",
        re.compile(r"permission denied|\bEACCES\b|\bEPERM\b|operation not permitted", re.I),
    ),
    (
        "module-not-found",
        re.compile(r"cannot find module|module not found|no module named|ModuleNotFoundError", re.I),
    ),
    ("syntax-error", re.compile(r"SyntaxError|syntax error|unexpected token", re.I)),
    ("type-error", re.compile(r"TypeError", re.I)),
    ("reference-error", re.compile(r"ReferenceError|NameError|\bis not defined\b", re.I)),
    (
        "file-not-found",
        re.compile(r"\bENOENT\b|no such file or directory|FileNotFoundError", re.I),
    ),
    (
        "port-in-use",
        re.compile(r"\bEADDRINUSE\b|address already in use|port \d+ (?:is )?already in use", re.I),
    ),
    (
        "generic-failure",
        re.compile(
            r"\berror:|\bfailed\b|\bunable to\b|\bfatal:|Traceback \(most recent call last\)",
            re.I,
        ),
    ),
)

CATEGORIES: tuple[str, ...] = tuple(name for name, _ in DETECTORS)

_ISO_TIME_RE = re.compile(
    r"\d{4}-\d{2}-\d{2}[t ]\d{2}:\d{2}(?::\d{2})?(?:\.\d+)?(?:z|[+-]\d{2}:?\d{2})?"
)
_CLOCK_RE = re.compile(r"\b\d{1,2}:\d{2}:\d{2}(?:\.\d+)?\b")
_HEX_RE = re.compile(r"\b0x[0-9a-f]+\b")
_PATH_RE = re.compile(r"(?:[a-z]:)?(?:~|\.{1,2})?(?:[\\/][\w.@+-]+)+[\\/]?")
_LINE_COL_RE = re.compile(r":\d+(?::\d+)?\b")
_NUMBER_RE = re.compile(r"\d+")
_SPACE_RE = re.compile(r"\s+")
_TOKEN_RE = re.compile(r"[a-z0-9_]+")

SUBSTRING_MIN_LENGTH = 12


@dataclass(frozen=True)
class Detection:
    """The category of a chunk and the line that decided it."""

    category: str
    line: str
    text: str


def is_noise_line(line: str) -> bool:
    lowered = line.lower()
    if any(phrase in lowered for phrase in NOISE_PHRASES):
        return True
    return bool(_SPINNER_RE.search(line) or _PROGRESS_RE.search(line))


def is_prompt_line(line: str) -> bool:
    """Whether a line ends in a shell prompt sigil ("$", "#", "%", ">", "❯", "✗")."""
    return bool(_PROMPT_END_RE.search(strip_ansi(line).rstrip()))


def filter_noise(text: str) -> str:
    """Remove benign chatter lines; returns the remaining text."""
    kept = [line for line in clean_terminal_text(text).split("\n") if not is_noise_line(line)]
    return "\n".join(kept).strip()


def classify(text: str) -> Detection | None:
    """Run the ordered detector battery over already-filtered text."""
    if not text:
        return None
    for category, detector in DETECTORS:
        if detector.search(text):
            line = next(
                (ln.strip() for ln in text.split("\n") if detector.search(ln)),
                text.strip(),
            )
            return Detection(category=category, line=line, text=text)
    return None


def detect(chunk: str) -> Detection | None:
    """Noise-filter then classify a raw terminal chunk."""
    return classify(filter_noise(chunk))


def normalize(text: str) -> str:
    """Stable signature: volatile tokens (paths, times, numbers) replaced."""
    text = strip_ansi(text).lower()
    text = _ISO_TIME_RE.sub("<time>", text)
    text = _CLOCK_RE.sub("<time>", text)
    text = _HEX_RE.sub("<addr>", text)
    text = _PATH_RE.sub("<path>", text)
    text = _LINE_COL_RE.sub(":<line>", text)
    text = _NUMBER_RE.sub("<n>", text)
    return _SPACE_RE.sub(" ", text).strip()


def tokenize(signature: str) -> set[str]:
    return {t for t in _TOKEN_RE.findall(signature) if len(t) > 2}


def similarity(sig_a: str, cat_a: str, sig_b: str, cat_b: str) -> float:
    """Score two signatures in [0, 1].

    Identical signatures score 1.0. Otherwise 0.3 for a shared category
    plus 0.7 times the better of token Jaccard overlap and substring
    containment (containment only counts for non-trivial signatures).
    """
    if sig_a == sig_b and cat_a == cat_b:
        return 1.0

    score = 0.3 if cat_a == cat_b else 0.0

    overlap = 0.0
    tokens_a, tokens_b = tokenize(sig_a), tokenize(sig_b)
    union = tokens_a | tokens_b
    if union:
        overlap = len(tokens_a & tokens_b) / len(union)

    shorter, longer = sorted((sig_a, sig_b), key=len)
    if len(shorter) >= SUBSTRING_MIN_LENGTH and shorter in longer:
        overlap = 1.0

    return score + 0.7 * overlap
