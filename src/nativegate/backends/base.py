"""Shared launch lifecycle for native application backends."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, ClassVar

import anyio

from ..connections import Connection
from ..errors import DuplicateInstance, LaunchError
from ..events import AppError
from ..logging import get_logger
from ..registry import BackendType, NativeSession, SessionRegistry

logger = get_logger(__name__)


@dataclass(frozen=True, slots=True)
class LaunchRequest:
    app_key: str
    instance_id: str
    command: str
    connection: Connection


class NativeBackend:
    """Turns a launch request into a running, reachable process.

    ``launch`` runs for the whole life of the session: it registers the
    session, spawns and watches the process, and removes the session when
    the process exits for any reason. Subclasses implement ``run``.
    """

    id: ClassVar[BackendType]

    def __init__(self, registry: SessionRegistry) -> None:
        self.registry = registry

    async def launch(self, request: LaunchRequest) -> None:
        session = NativeSession(
            instance_id=request.instance_id,
            app_key=request.app_key,
            backend=self.id,
            connection_id=request.connection.id,
        )
        try:
            await self.registry.put(session)
        except DuplicateInstance as exc:
            logger.warning(
                "native.launch.duplicate",
                instance_id=request.instance_id,
                app_key=request.app_key,
            )
            await self.report_error(request, exc)
            return

        log = logger.bind(
            backend=self.id,
            instance_id=request.instance_id,
            app_key=request.app_key,
        )
        try:
            await self.run(session, request, log)
        except LaunchError as exc:
            if await self.registry.discard(session) and not session.stopping:
                log.error("native.launch.failed", error=str(exc))
                await self.report_error(request, exc)
        finally:
            with anyio.CancelScope(shield=True):
                if await self.registry.discard(session):
                    log.info("native.session.ended")

    async def run(
        self, session: NativeSession, request: LaunchRequest, log: Any
    ) -> None:
        raise NotImplementedError

    async def teardown(self, session: NativeSession) -> None:
        """Release backend resources before the process is signalled."""

    async def is_current(self, session: NativeSession) -> bool:
        """False once the session has been killed or replaced."""
        current = await self.registry.get(session.instance_id)
        return current is session and not session.stopping

    async def report_error(self, request: LaunchRequest, exc: Exception) -> None:
        await request.connection.emit(
            AppError(
                app_key=request.app_key,
                instance_id=request.instance_id,
                error=str(exc),
            )
        )

