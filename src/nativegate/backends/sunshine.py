"""Sunshine game-streaming backend.

Sunshine serves on a fixed port and gives no readiness signal, so the stream
is announced after a settling delay if the process is still running. That is
an assumption, not a confirmation. Exiting before the delay, with any
status, fails the launch.
"""

from __future__ import annotations

import subprocess
from typing import Any

import anyio

from ..errors import SpawnFailure
from ..events import AppStream
from ..registry import NativeSession, SessionRegistry
from ..settings import SunshineSettings
from ..utils.streams import drain_stderr
from ..utils.subprocess import manage_subprocess
from .base import LaunchRequest, NativeBackend

LAUNCH_FAILED = "Failed to launch Sunshine. Is Sunshine installed and configured?"


class SunshineBackend(NativeBackend):
    id = "sunshine"

    def __init__(self, registry: SessionRegistry, settings: SunshineSettings) -> None:
        super().__init__(registry)
        self.settings = settings

    async def run(
        self, session: NativeSession, request: LaunchRequest, log: Any
    ) -> None:
        cmd = [self.settings.binary, request.command]
        log.info("sunshine.launching", cmd=cmd)
        tag = f"sunshine:{request.instance_id}"
        failed = False
        try:
            async with manage_subprocess(
                cmd,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
            ) as proc:
                if not await self.registry.attach(session, proc):
                    return
                if proc.stdout is None or proc.stderr is None:
                    raise RuntimeError("sunshine process has no output pipes")
                stderr_lines: list[str] = []
                async with anyio.create_task_group() as tg:
                    tg.start_soon(drain_stderr, proc.stdout, log, tag)
                    tg.start_soon(drain_stderr, proc.stderr, log, tag, stderr_lines)
                    rc: int | None = None
                    with anyio.move_on_after(self.settings.settle_delay_s):
                        rc = await proc.wait()
                    if rc is None:
                        await self._announce(session, request, log)
                        rc = await proc.wait()
                    else:
                        failed = True
                log.info("sunshine.exited", rc=rc, stderr=stderr_lines or None)
        except OSError as exc:
            raise SpawnFailure(LAUNCH_FAILED) from exc
        if failed and await self.is_current(session):
            raise SpawnFailure(LAUNCH_FAILED)

    async def _announce(
        self, session: NativeSession, request: LaunchRequest, log: Any
    ) -> None:
        url = self.settings.url
        if not await self.registry.mark_ready(session, url):
            return
        log.info("sunshine.ready", url=url)
        await request.connection.emit(
            AppStream(
                instance_id=request.instance_id,
                app_key=request.app_key,
                type=self.id,
                url=url,
            )
        )
