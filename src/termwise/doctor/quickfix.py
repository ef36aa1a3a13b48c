"""Quick fixes — deterministic remedies for common errors, no AI involved.

``QUICK_FIXES`` is an ordered table of (trigger substring, handler)
pairs. The first trigger found in the lowercased error text whose
handler returns a ``Fix`` wins. A handler that cannot extract what it
needs (module name, port, path, ...) returns None and the search
continues down the table.
"""

from __future__ import annotations

import logging
import os
import re
import shlex
from typing import Callable

from termwise.doctor.models import Fix

logger = logging.getLogger(__name__)

Handler = Callable[[str], Fix | None]

_JS_MODULE_RE = re.compile(r"cannot find module ['\"]([^'\"]+)['\"]", re.I)
_WEBPACK_MODULE_RE = re.compile(r"can't resolve ['\"]([^'\"]+)['\"]", re.I)
_PY_MODULE_RE = re.compile(r"no module named ['\"]?([\w.]+)['\"]?", re.I)
_UNEXPECTED_TOKEN_RE = re.compile(r"unexpected token\s*['\"`]?([^'\"`\s]+)?", re.I)
_JS_UNDEFINED_RE = re.compile(r"\b([A-Za-z_$][\w$]*) is not defined", re.I)
_PY_UNDEFINED_RE = re.compile(r"name ['\"](\w+)['\"] is not defined", re.I)
_NULL_ACCESS_RE = re.compile(
    r"cannot read propert(?:y|ies) (?:['\"](\w+)['\"] )?of (undefined|null)"
    r"(?: \(reading ['\"]([^'\"]+)['\"]\))?",
    re.I,
)
_NONETYPE_RE = re.compile(r"'NoneType' object has no attribute '(\w+)'")
_QUOTED_PATH_AFTER_RE = r"[^'\"\n]*['\"]([^'\"\n]+)['\"]"
_PERMISSION_PATH_RES = (
    re.compile(r"(?:EACCES|EPERM)" + _QUOTED_PATH_AFTER_RE),
    re.compile(r"permission denied:\s*['\"]?([^'\"\s]+)", re.I),
    re.compile(r"(?:^|\s)([^\s:]+):\s*permission denied", re.I),
)
_MISSING_PATH_RES = (
    re.compile(r"ENOENT" + _QUOTED_PATH_AFTER_RE),
    re.compile(r"no such file or directory:\s*['\"]([^'\"]+)['\"]", re.I),
    re.compile(r"(?:^|\s)([^\s:]+):\s*no such file or directory", re.I),
)
_PORT_RES = (
    re.compile(r"port (\d{1,5})", re.I),
    re.compile(r"EADDRINUSE[^\n]*?:(\d{1,5})\b"),
    re.compile(r"address already in use[^\n]*?:(\d{1,5})\b", re.I),
)
_COMMAND_RES = (
    re.compile(r"command not found:\s*([\w.+-]+)", re.I),
    re.compile(r"([\w.+-]+):\s*command not found", re.I),
    re.compile(r"'([\w.+-]+)' is not recognized as an internal or external command", re.I),
)

# Words from assistant status chatter that are never real commands
_NOT_COMMANDS = frozenset({"saving", "session", "germinating", "smooshing", "bash", "sh", "zsh"})

INSTALL_HINTS = {
    "node": "Install Node.js from nodejs.org",
    "npm": "Install Node.js (includes npm)",
    "npx": "Install Node.js (includes npx)",
    "yarn": "Install Yarn: npm install -g yarn",
    "git": "Install Git",
    "python": "Install Python",
    "python3": "Install Python 3",
    "pip": "Install Python (includes pip)",
    "docker": "Install Docker Desktop or the Docker engine",
    "claude": "Install the Claude Code CLI: npm install -g @anthropic-ai/claude-code",
}


def _package_root(module: str) -> str:
    """``lodash/fp`` -> ``lodash``; ``@babel/core/lib`` -> ``@babel/core``."""
    parts = module.split("/")
    if module.startswith("@") and len(parts) >= 2:
        return "/".join(parts[:2])
    return parts[0]


def _is_relative(path: str) -> bool:
    return path.startswith(("./", "../", "/", "~"))


def _first_group(patterns: tuple[re.Pattern[str], ...], text: str) -> str | None:
    for pattern in patterns:
        match = pattern.search(text)
        if match:
            return match.group(1)
    return None


# ---------------------------------------------------------------------------
# Handlers
# ---------------------------------------------------------------------------


def handle_module_not_found(text: str) -> Fix | None:
    match = _JS_MODULE_RE.search(text) or _WEBPACK_MODULE_RE.search(text)
    if match:
        module = match.group(1)
        if _is_relative(module):
            return Fix(
                title="Fix file path",
                description=f"Check if the file {module} exists and the path is correct",
                command=f"ls -la {shlex.quote(module)}",
                confidence="medium",
            )
        package = _package_root(module)
        return Fix(
            title="Install missing package",
            description=f"Install the missing package {package}",
            command=f"npm install {shlex.quote(package)}",
            confidence="high",
        )

    match = _PY_MODULE_RE.search(text)
    if match:
        package = match.group(1).split(".")[0]
        return Fix(
            title="Install missing Python package",
            description=f"Install the missing module {package} into the active environment",
            command=f"pip install {shlex.quote(package)}",
            confidence="medium",
        )
    return None


def handle_syntax_error(text: str) -> Fix | None:
    match = _UNEXPECTED_TOKEN_RE.search(text)
    if match:
        token = match.group(1)
        where = f" near '{token}'" if token else ""
        return Fix(
            title="Fix syntax error",
            description=f"Check for missing brackets, quotes, or semicolons{where}",
            confidence="medium",
        )
    if "invalid syntax" in text.lower():
        return Fix(
            title="Fix syntax error",
            description="Check the reported line for a missing colon, bracket or quote",
            confidence="medium",
        )
    return None


def handle_reference_error(text: str) -> Fix | None:
    name = _first_group((_PY_UNDEFINED_RE, _JS_UNDEFINED_RE), text)
    if not name:
        return None
    return Fix(
        title="Define missing variable",
        description=f"The variable '{name}' is not defined. Check spelling or add declaration.",
        confidence="high",
    )


def handle_type_error(text: str) -> Fix | None:
    match = _NULL_ACCESS_RE.search(text)
    if match:
        prop = match.group(1) or match.group(3)
        target = f" '{prop}'" if prop else ""
        return Fix(
            title="Fix null/undefined access",
            description=f"Add a null check before reading{target} from a value that is {match.group(2)}",
            confidence="medium",
        )
    match = _NONETYPE_RE.search(text)
    if match:
        return Fix(
            title="Fix None access",
            description=f"Check for None before accessing '.{match.group(1)}'",
            confidence="medium",
        )
    return None


def handle_permission_error(text: str) -> Fix | None:
    path = _first_group(_PERMISSION_PATH_RES, text)
    if not path:
        return None
    if path.endswith(".sh") or path.startswith("./"):
        command = f"chmod +x {shlex.quote(path)}"
        description = f"Make {path} executable"
    else:
        command = f"chmod u+rw {shlex.quote(path)}"
        description = f"Give your user read/write access to {path}"
    return Fix(title="Fix permissions", description=description, command=command, confidence="medium")


def handle_file_not_found(text: str) -> Fix | None:
    path = _first_group(_MISSING_PATH_RES, text)
    if not path:
        return None
    quoted = shlex.quote(path)
    if path.endswith(("/", "\\")) or not os.path.splitext(path)[1]:
        return Fix(
            title="Create missing directory",
            description=f"Create the missing directory: {path}",
            command=f"mkdir -p {quoted}",
            confidence="medium",
        )
    parent = os.path.dirname(path)
    command = f"mkdir -p {shlex.quote(parent)} && touch {quoted}" if parent else f"touch {quoted}"
    return Fix(
        title="Create missing file",
        description=f"Create the missing file: {path}",
        command=command,
        confidence="medium",
    )


def handle_port_in_use(text: str) -> Fix | None:
    port = _first_group(_PORT_RES, text)
    if not port or not 0 < int(port) < 65536:
        return None
    return Fix(
        title="Kill process using port",
        description=f"Stop the process using port {port}",
        command=f"lsof -ti:{port} | xargs kill -9",
        confidence="high",
    )


def handle_command_not_found(text: str) -> Fix | None:
    command = _first_group(_COMMAND_RES, text)
    if not command or len(command) < 2 or command.lower() in _NOT_COMMANDS:
        return None
    return Fix(
        title=f"Install {command}",
        description=INSTALL_HINTS.get(command, f"Install the {command} command"),
        confidence="high",
    )


QUICK_FIXES: tuple[tuple[str, Handler], ...] = (
    ("cannot find module", handle_module_not_found),
    ("module not found", handle_module_not_found),
    ("no module named", handle_module_not_found),
    ("syntax error", handle_syntax_error),
    ("syntaxerror", handle_syntax_error),
    ("unexpected token", handle_syntax_error),
    ("is not defined", handle_reference_error),
    ("typeerror", handle_type_error),
    ("cannot read propert", handle_type_error),
    ("'nonetype' object", handle_type_error),
    ("permission denied", handle_permission_error),
    ("eacces", handle_permission_error),
    ("enoent", handle_file_not_found),
    ("no such file or directory", handle_file_not_found),
    ("already in use", handle_port_in_use),
    ("eaddrinuse", handle_port_in_use),
    ("command not found", handle_command_not_found),
    ("is not recognized as an internal or external command", handle_command_not_found),
)


def try_quick_fix(text: str) -> Fix | None:
    """Return the first quick fix the table produces for ``text``, if any."""
    lowered = text.lower()
    tried: set[Handler] = set()
    for trigger, handler in QUICK_FIXES:
        if trigger not in lowered or handler in tried:
            continue
        tried.add(handler)
        fix = handler(text)
        if fix is not None:
            logger.debug("Quick fix via %r: %s", trigger, fix.title)
            return fix
    return None
