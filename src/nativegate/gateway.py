"""Routes client signals to the executor, backends and registry."""

from __future__ import annotations

from pathlib import Path
from typing import Any

from anyio.abc import TaskGroup

from .apps import load_app_descriptor, resolve_launch
from .backends import LaunchRequest, NativeBackend, build_backends
from .connections import Connection, ConnectionRegistry, EventSink
from .errors import UnknownBackend
from .events import (
    NATIVE_KILL,
    NATIVE_LAUNCH,
    UAC_APPROVE,
    UAC_DENY,
    AppError,
    KillSignal,
    LaunchSignal,
)
from .executor import CommandExecutor, ExecStatus
from .logging import get_logger
from .policy import RiskClassifier
from .registry import NativeSession, SessionRegistry
from .settings import GatewaySettings
from .utils.subprocess import terminate

logger = get_logger(__name__)


class Gateway:
    """Per-process hub for connections, commands and native sessions.

    Holds no session state itself: sessions live in the registry, the
    authorization flag lives on each connection. Long-running work (command
    runs, launch supervisors, display teardown) is started on *task_group*.
    """

    def __init__(
        self,
        settings: GatewaySettings,
        *,
        task_group: TaskGroup,
        apps_dir: Path,
        backends: dict[str, NativeBackend] | None = None,
    ) -> None:
        self.settings = settings
        self.task_group = task_group
        self.apps_dir = apps_dir
        self.connections = ConnectionRegistry()
        self.registry = SessionRegistry()
        self.backends = (
            backends
            if backends is not None
            else build_backends(settings.backends, self.registry)
        )
        self.executor = CommandExecutor(
            classifier=RiskClassifier.with_extras(
                extra_blocked=settings.policy.extra_blocked,
                extra_risk_tokens=settings.policy.extra_risk_tokens,
            ),
            task_group=task_group,
            max_output_bytes=settings.exec.max_output_bytes,
        )

    async def open_connection(self, sink: EventSink) -> Connection:
        return await self.connections.connect(sink)

    def release_connection(self, connection: Connection) -> None:
        """Close *connection* from a handler that may already be cancelled.

        Events are dropped from this point on. Removal and session cleanup
        run on the gateway task group, outside the caller's cancel scope.
        """
        connection.closed = True
        self.task_group.start_soon(self.close_connection, connection)

    async def close_connection(self, connection: Connection) -> None:
        await self.connections.disconnect(connection.id)
        owned = await self.registry.for_connection(connection.id)
        if not owned:
            return
        if self.settings.sessions.kill_on_disconnect:
            for session in owned:
                await self.kill(session.instance_id)
            return
        logger.info(
            "connection.sessions_left_running",
            connection_id=connection.id,
            instance_ids=[s.instance_id for s in owned],
        )

    async def handle_signal(
        self, connection: Connection, name: str, payload: Any
    ) -> None:
        if name == NATIVE_LAUNCH and isinstance(payload, LaunchSignal):
            await self.launch(connection, payload)
        elif name == NATIVE_KILL and isinstance(payload, KillSignal):
            await self.kill(payload.instance_id)
        elif name == UAC_APPROVE:
            self.approve(connection)
        elif name == UAC_DENY:
            self.deny(connection)
        else:
            logger.warning("signal.unknown", connection_id=connection.id, signal=name)

    async def exec_command(self, connection: Connection, command: str) -> ExecStatus:
        return await self.executor.execute(connection, command)

    def approve(self, connection: Connection) -> None:
        connection.authorization.approve()
        logger.info("uac.approved", connection_id=connection.id)

    def deny(self, connection: Connection) -> None:
        connection.authorization.deny()
        logger.info("uac.denied", connection_id=connection.id)

    async def launch(self, connection: Connection, signal: LaunchSignal) -> None:
        descriptor = load_app_descriptor(self.apps_dir, signal.app_key)
        command, stream = resolve_launch(
            descriptor, command=signal.command, stream=signal.stream
        )
        logger.info(
            "native.launch",
            connection_id=connection.id,
            app_key=signal.app_key,
            instance_id=signal.instance_id,
            stream=stream,
        )
        backend = self.backends.get(stream) if stream else None
        if backend is None:
            await self._launch_error(connection, signal, str(UnknownBackend(stream)))
            return
        if not command:
            await self._launch_error(
                connection, signal, f"No launch command for {signal.app_key}"
            )
            return
        self.task_group.start_soon(
            backend.launch,
            LaunchRequest(
                app_key=signal.app_key,
                instance_id=signal.instance_id,
                command=command,
                connection=connection,
            ),
        )

    async def kill(self, instance_id: str) -> bool:
        """Stop a native session. Unknown or already stopping ids are ignored.

        The session stays registered, flagged as stopping, until its process
        has exited.
        """
        session = await self.registry.begin_stop(instance_id)
        if session is None:
            return False
        logger.info(
            "native.kill",
            instance_id=instance_id,
            backend=session.backend,
            pid=session.pid,
        )
        self.task_group.start_soon(self._terminate, session)
        return True

    async def _terminate(self, session: NativeSession) -> None:
        backend = self.backends.get(session.backend)
        if backend is not None:
            try:
                await backend.teardown(session)
            except Exception:
                logger.exception(
                    "native.teardown.failed", instance_id=session.instance_id
                )
        if session.process is not None:
            try:
                rc = await terminate(
                    session.process, grace=self.settings.sessions.kill_grace_s
                )
            except OSError as exc:
                logger.error(
                    "native.kill.failed",
                    instance_id=session.instance_id,
                    pid=session.pid,
                    error=str(exc),
                )
            else:
                logger.info(
                    "native.killed", instance_id=session.instance_id, rc=rc
                )
        await self.registry.discard(session)

    async def _launch_error(
        self, connection: Connection, signal: LaunchSignal, error: str
    ) -> None:
        logger.warning(
            "native.launch.rejected",
            app_key=signal.app_key,
            instance_id=signal.instance_id,
            error=error,
        )
        await connection.emit(
            AppError(app_key=signal.app_key, instance_id=signal.instance_id, error=error)
        )
