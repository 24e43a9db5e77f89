"""The single source of truth for running native sessions."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

import anyio
from anyio.abc import Process

from .errors import DuplicateInstance
from .logging import get_logger

logger = get_logger(__name__)

BackendType = Literal["exec", "xpra", "sunshine"]


@dataclass(slots=True, eq=False)
class NativeSession:
    instance_id: str
    app_key: str
    backend: BackendType
    connection_id: str
    process: Process | None = None
    stream_url: str | None = None
    display: str | None = None
    stopping: bool = False

    @property
    def pid(self) -> int | None:
        return self.process.pid if self.process is not None else None


class SessionRegistry:
    """Maps instance ids to sessions. Every access holds one lock.

    Sessions are compared by identity: a cleanup path only removes the entry
    it created, never a later session that reused the instance id.
    """

    def __init__(self) -> None:
        self._lock = anyio.Lock()
        self._sessions: dict[str, NativeSession] = {}

    async def put(self, session: NativeSession) -> None:
        """Register *session*. Raises ``DuplicateInstance`` if its id is active."""
        async with self._lock:
            if session.instance_id in self._sessions:
                raise DuplicateInstance(session.instance_id)
            self._sessions[session.instance_id] = session
        logger.debug(
            "registry.put",
            instance_id=session.instance_id,
            backend=session.backend,
        )

    async def get(self, instance_id: str) -> NativeSession | None:
        async with self._lock:
            return self._sessions.get(instance_id)

    async def remove(self, instance_id: str) -> NativeSession | None:
        async with self._lock:
            session = self._sessions.pop(instance_id, None)
        if session is not None:
            logger.debug("registry.removed", instance_id=instance_id)
        return session

    async def begin_stop(self, instance_id: str) -> NativeSession | None:
        """Flag the session as stopping; None if absent or already stopping.

        A stopping session stays registered until its process is gone but can
        no longer become ready.
        """
        async with self._lock:
            session = self._sessions.get(instance_id)
            if session is None or session.stopping:
                return None
            session.stopping = True
            return session

    async def discard(self, session: NativeSession) -> bool:
        """Remove *session* only if it is still the registered entry."""
        async with self._lock:
            if self._sessions.get(session.instance_id) is not session:
                return False
            del self._sessions[session.instance_id]
        logger.debug("registry.discarded", instance_id=session.instance_id)
        return True

    async def attach(self, session: NativeSession, process: Process) -> bool:
        """Hand *process* to *session*; False if the session was killed meanwhile."""
        async with self._lock:
            if not self._is_live(session):
                return False
            session.process = process
            return True

    async def mark_ready(self, session: NativeSession, url: str) -> bool:
        async with self._lock:
            if not self._is_live(session):
                return False
            session.stream_url = url
            return True

    async def allocate_display(self, session: NativeSession, base: int) -> str:
        """Assign the lowest free ``:N`` (``N >= base``) to *session*."""
        async with self._lock:
            taken = {
                s.display for s in self._sessions.values() if s.display is not None
            }
            slot = base
            while f":{slot}" in taken:
                slot += 1
            session.display = f":{slot}"
            return session.display

    async def sessions(self) -> list[NativeSession]:
        async with self._lock:
            return list(self._sessions.values())

    async def for_connection(self, connection_id: str) -> list[NativeSession]:
        async with self._lock:
            return [
                s for s in self._sessions.values() if s.connection_id == connection_id
            ]

    def __contains__(self, instance_id: object) -> bool:
        return instance_id in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)

    def _is_live(self, session: NativeSession) -> bool:
        current = self._sessions.get(session.instance_id)
        return current is session and not session.stopping
