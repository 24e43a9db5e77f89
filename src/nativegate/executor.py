"""Gatekeeping and execution of ad-hoc shell commands."""

from __future__ import annotations

import subprocess
from dataclasses import dataclass
from typing import Literal

import anyio
from anyio.abc import ByteReceiveStream, TaskGroup

from .connections import Connection
from .errors import CommandBlocked
from .events import ExecResult, UacRequired
from .logging import get_logger
from .policy import RiskClassifier
from .utils.streams import read_capped
from .utils.subprocess import manage_subprocess

logger = get_logger(__name__)

ExecStatus = Literal["pending", "started"]

DEFAULT_MAX_OUTPUT_BYTES = 1_048_576


@dataclass(slots=True)
class CommandExecutor:
    classifier: RiskClassifier
    task_group: TaskGroup
    max_output_bytes: int = DEFAULT_MAX_OUTPUT_BYTES

    async def execute(self, connection: Connection, command: str) -> ExecStatus:
        """Gate *command* and start it in the background.

        Raises ``CommandBlocked`` for blocklisted commands. Returns
        ``"pending"`` after asking the client for approval, ``"started"``
        once the command has been handed to the task group. The outcome is
        delivered later as a single ``exec:result`` event.
        """
        decision = self.classifier.classify(command)
        if decision.blocked:
            logger.warning(
                "exec.blocked",
                connection_id=connection.id,
                command=command,
                pattern=decision.blocked_by,
            )
            raise CommandBlocked(command, decision.blocked_by or "")

        if decision.requires_authorization and not connection.authorization.approved:
            risks = decision.sorted_risks()
            logger.info(
                "exec.authorization_required",
                connection_id=connection.id,
                command=command,
                risks=risks,
            )
            await connection.emit(UacRequired(command=command, risks=risks))
            return "pending"

        approved = connection.authorization.consume()
        logger.info(
            "exec.started",
            connection_id=connection.id,
            command=command,
            approved=approved,
        )
        self.task_group.start_soon(self.run, connection, command)
        return "started"

    async def run(self, connection: Connection, command: str) -> None:
        result = await self.collect(command)
        await connection.emit(result)

    async def collect(self, command: str) -> ExecResult:
        """Run *command* in a shell and capture its output.

        Never raises for spawn errors or non-zero exits; both are reported
        through ``ExecResult.error``.
        """
        captured: dict[str, bytes] = {}

        async def _read(name: str, stream: ByteReceiveStream) -> None:
            data, truncated = await read_capped(stream, self.max_output_bytes)
            if truncated:
                logger.warning("exec.output_truncated", stream=name, command=command)
            captured[name] = data

        try:
            async with manage_subprocess(
                command,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
            ) as proc:
                if proc.stdout is None or proc.stderr is None:
                    raise RuntimeError("exec command has no output pipes")
                async with anyio.create_task_group() as tg:
                    tg.start_soon(_read, "stdout", proc.stdout)
                    tg.start_soon(_read, "stderr", proc.stderr)
                rc = await proc.wait()
        except OSError as exc:
            logger.error("exec.spawn_failed", command=command, error=str(exc))
            return ExecResult(stdout="", stderr="", error=str(exc))

        stdout = captured.get("stdout", b"").decode("utf-8", errors="replace")
        stderr = captured.get("stderr", b"").decode("utf-8", errors="replace")
        error = None
        if rc != 0:
            error = f"Command failed: {command}\n{stderr}"
            logger.warning("exec.failed", command=command, rc=rc)
        else:
            logger.info("exec.completed", command=command, rc=rc)
        return ExecResult(stdout=stdout, stderr=stderr, error=error)
