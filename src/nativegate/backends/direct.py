"""Direct execution: run the launch command and relay its output."""

from __future__ import annotations

import subprocess
from typing import Any

import anyio
from anyio.abc import ByteReceiveStream

from ..errors import SpawnFailure
from ..events import AppOutput
from ..registry import NativeSession
from ..utils.streams import iter_text_chunks
from ..utils.subprocess import manage_subprocess
from .base import LaunchRequest, NativeBackend


class DirectExecBackend(NativeBackend):
    id = "exec"

    async def run(
        self, session: NativeSession, request: LaunchRequest, log: Any
    ) -> None:
        try:
            async with manage_subprocess(
                request.command,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
            ) as proc:
                if not await self.registry.attach(session, proc):
                    return
                log.info("native.exec.spawned", pid=proc.pid)
                if proc.stdout is None or proc.stderr is None:
                    raise RuntimeError(f"{request.app_key} process has no output pipes")
                async with anyio.create_task_group() as tg:
                    tg.start_soon(self._relay, request, proc.stdout, "stdout")
                    tg.start_soon(self._relay, request, proc.stderr, "stderr")
                rc = await proc.wait()
                log.info("native.exec.exited", pid=proc.pid, rc=rc)
        except OSError as exc:
            raise SpawnFailure(f"Failed to launch {request.app_key}: {exc}") from exc

    async def _relay(
        self, request: LaunchRequest, stream: ByteReceiveStream, name: str
    ) -> None:
        async for text in iter_text_chunks(stream):
            await request.connection.emit(
                AppOutput(app_key=request.app_key, **{name: text})
            )
