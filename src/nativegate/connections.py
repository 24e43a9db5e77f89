"""Live client connections and their outbound event sinks."""

from __future__ import annotations

import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field

import anyio

from .authorization import AuthorizationState
from .events import OutboundEvent
from .logging import get_logger

logger = get_logger(__name__)

EventSink = Callable[[OutboundEvent], Awaitable[None]]


@dataclass(slots=True, eq=False)
class Connection:
    id: str
    sink: EventSink
    authorization: AuthorizationState = field(default_factory=AuthorizationState)
    closed: bool = False
    _send_lock: anyio.Lock = field(default_factory=anyio.Lock)

    async def emit(self, event: OutboundEvent) -> bool:
        """Deliver *event*; dropped (and logged) once the channel is gone."""
        if self.closed:
            logger.debug(
                "connection.emit.dropped", connection_id=self.id, event_name=event.event
            )
            return False
        async with self._send_lock:
            try:
                await self.sink(event)
            except (ConnectionError, RuntimeError, anyio.BrokenResourceError) as exc:
                logger.warning(
                    "connection.emit.failed",
                    connection_id=self.id,
                    event_name=event.event,
                    error=str(exc),
                )
                return False
        return True


class ConnectionRegistry:
    """The set of live connections, keyed by connection id."""

    def __init__(self) -> None:
        self._lock = anyio.Lock()
        self._connections: dict[str, Connection] = {}

    async def connect(self, sink: EventSink) -> Connection:
        connection = Connection(id=uuid.uuid4().hex, sink=sink)
        async with self._lock:
            self._connections[connection.id] = connection
        logger.info("connection.opened", connection_id=connection.id)
        return connection

    async def disconnect(self, connection_id: str) -> Connection | None:
        async with self._lock:
            connection = self._connections.pop(connection_id, None)
        if connection is not None:
            connection.closed = True
            logger.info("connection.closed", connection_id=connection_id)
        return connection

    async def get(self, connection_id: str) -> Connection | None:
        async with self._lock:
            return self._connections.get(connection_id)

    def __len__(self) -> int:
        return len(self._connections)
