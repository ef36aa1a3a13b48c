"""Terminal sessions — real pseudo-terminals with a simulated fallback.

Every session runs behind the ``ProcessBackend`` interface, is tracked by
the ``SessionManager`` registry, and keeps a small learning context
(recent commands, recent output) for the error pattern memory.
"""

from termwise.pty.backend import (
    BackendMode,
    ProcessBackend,
    PtyProcessBackend,
    SimulatedProcessBackend,
    pty_available,
    select_backend_class,
)
from termwise.pty.buffer import CommandRing, OutputWindow
from termwise.pty.manager import SessionManager
from termwise.pty.session import SessionContext, TerminalSession

__all__ = [
    "BackendMode",
    "CommandRing",
    "OutputWindow",
    "ProcessBackend",
    "PtyProcessBackend",
    "SessionContext",
    "SessionManager",
    "SimulatedProcessBackend",
    "TerminalSession",
    "pty_available",
    "select_backend_class",
]
