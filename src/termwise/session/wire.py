"""Wire protocol — decouples terminal sessions from whatever renders them.

Events flow from the server side (session manager) to clients. A client
subscribes to the wire of its connection and renders events; the same
wire feeds a terminal, a websocket bridge or a test.
"""

from __future__ import annotations

import asyncio
import enum
from dataclasses import dataclass, field
from typing import Any


class EventType(enum.Enum):
    CREATED = "created"
    DATA = "data"
    EXIT = "exit"
    ERROR = "error"
    SUGGESTION = "suggestion"


@dataclass
class WireEvent:
    """An event on the wire."""

    type: EventType
    session_id: str = ""
    data: dict[str, Any] = field(default_factory=dict)


class Wire:
    """Async message bus: server -> client subscribers.

    Single-producer, multi-consumer broadcast.
    """

    def __init__(self) -> None:
        self._subscribers: list[asyncio.Queue[WireEvent | None]] = []
        self._closed: bool = False

    def send(self, event: WireEvent) -> None:
        """Send an event to all subscribers.

        Silently drops events after ``close()`` has been called.
        """
        if self._closed:
            return
        for q in self._subscribers:
            q.put_nowait(event)

    def send_created(self, session_id: str, pid: int, mode: str) -> None:
        self.send(
            WireEvent(
                type=EventType.CREATED,
                session_id=session_id,
                data={"pid": pid, "mode": mode},
            )
        )

    def send_data(self, session_id: str, chunk: str) -> None:
        self.send(WireEvent(type=EventType.DATA, session_id=session_id, data={"chunk": chunk}))

    def send_exit(self, session_id: str, exit_code: int | None, signal: int | None) -> None:
        self.send(
            WireEvent(
                type=EventType.EXIT,
                session_id=session_id,
                data={"exit_code": exit_code, "signal": signal},
            )
        )

    def send_error(self, session_id: str, message: str, error: str = "") -> None:
        self.send(
            WireEvent(
                type=EventType.ERROR,
                session_id=session_id,
                data={"message": message, "error": error},
            )
        )

    def send_suggestion(
        self,
        session_id: str,
        fix: str,
        confidence: float,
        category: str = "",
    ) -> None:
        """Tell the client a learned fix exists for the error it just saw."""
        self.send(
            WireEvent(
                type=EventType.SUGGESTION,
                session_id=session_id,
                data={"fix": fix, "confidence": confidence, "category": category},
            )
        )

    def subscribe(self) -> asyncio.Queue[WireEvent | None]:
        """Subscribe to events. Returns a queue to read from."""
        q: asyncio.Queue[WireEvent | None] = asyncio.Queue()
        self._subscribers.append(q)
        return q

    def unsubscribe(self, q: asyncio.Queue) -> None:
        """Unsubscribe from events."""
        if q in self._subscribers:
            self._subscribers.remove(q)

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        """Signal all subscribers that the wire is closing."""
        self._closed = True
        for q in self._subscribers:
            q.put_nowait(None)
