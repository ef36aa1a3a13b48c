"""Terminal control channel — one per client connection.

A client sends ``create``, ``input``, ``resize`` and ``disconnect``
messages; everything the server says back arrives on the channel's
``Wire`` (created, data, exit, error, suggestion events). The channel's
connection id doubles as the session id.
"""

from __future__ import annotations

import logging
from typing import Any

from termwise.errors import SpawnError
from termwise.pty.manager import SessionManager
from termwise.session.wire import Wire

logger = logging.getLogger(__name__)


class TerminalChannel:
    """Routes client control messages for a single connection."""

    def __init__(self, manager: SessionManager, connection_id: str, wire: Wire | None = None) -> None:
        self.manager = manager
        self.connection_id = connection_id
        self.wire = wire or Wire()

    async def create(
        self, cols: int | None = None, rows: int | None = None, cwd: str | None = None
    ) -> dict[str, Any] | None:
        """Start the connection's terminal. Returns None if spawning failed."""
        try:
            return await self.manager.create(
                self.connection_id, cols=cols, rows=rows, cwd=cwd, wire=self.wire
            )
        except SpawnError:
            # Already reported to the client as an error event
            return None

    def input(self, data: str) -> None:
        self.manager.write(self.connection_id, data)

    def resize(self, cols: int, rows: int) -> None:
        self.manager.resize(self.connection_id, cols, rows)

    def disconnect(self) -> None:
        if self.manager.kill(self.connection_id):
            logger.info("Connection %s disconnected, session killed", self.connection_id)
        self.wire.close()

    async def handle(self, event: str, payload: dict[str, Any] | None = None) -> None:
        """Dispatch one named client message.

        Unknown events and malformed payloads are logged and ignored.
        """
        payload = payload or {}
        try:
            if event == "create":
                await self.create(payload.get("cols"), payload.get("rows"), payload.get("cwd"))
            elif event == "input":
                self.input(str(payload["data"]))
            elif event == "resize":
                self.resize(int(payload["cols"]), int(payload["rows"]))
            elif event == "disconnect":
                self.disconnect()
            else:
                logger.warning("Unknown terminal event from %s: %s", self.connection_id, event)
        except (KeyError, TypeError, ValueError) as e:
            logger.warning("Malformed %s message from %s: %s", event, self.connection_id, e)
