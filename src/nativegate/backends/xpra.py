"""Xpra remote display backend.

Xpra binds its HTML5 server to port 0 and reports the port it picked in its
own output, so readiness is known only once that line has been parsed.
"""

from __future__ import annotations

import contextlib
import re
import subprocess
from collections.abc import AsyncIterator
from typing import Any

import anyio
from anyio.abc import Process

from ..errors import ParseFailure, SpawnFailure
from ..events import AppStream
from ..logging import get_logger, log_pipeline
from ..registry import NativeSession, SessionRegistry
from ..settings import XpraSettings
from ..utils.streams import iter_bytes_lines
from ..utils.subprocess import manage_subprocess
from .base import LaunchRequest, NativeBackend

logger = get_logger(__name__)

_PORT_RE = re.compile(r"port (\d+)")

LAUNCH_FAILED = "Failed to launch Xpra. Is Xpra installed?"
PARSE_FAILED = "Failed to parse Xpra port"


def _find_port(output: str) -> int | None:
    match = _PORT_RE.search(output)
    if match is None:
        return None
    port = int(match.group(1))
    if not 0 < port <= 65535:
        return None
    return port


def parse_xpra_port(output: str) -> int:
    """Recover the listening port from xpra output or raise ``ParseFailure``."""
    port = _find_port(output)
    if port is None:
        raise ParseFailure(PARSE_FAILED)
    return port


def build_xpra_command(settings: XpraSettings, display: str, command: str) -> list[str]:
    return [
        settings.binary,
        "start",
        display,
        f"--start-child={command}",
        "--html=on",
        f"--bind-tcp={settings.bind_host}:0",
        "--daemon=no",
    ]


class XpraBackend(NativeBackend):
    id = "xpra"

    def __init__(self, registry: SessionRegistry, settings: XpraSettings) -> None:
        super().__init__(registry)
        self.settings = settings

    def stream_url(self, port: int) -> str:
        return f"http://{self.settings.url_host}:{port}"

    async def run(
        self, session: NativeSession, request: LaunchRequest, log: Any
    ) -> None:
        display = await self.registry.allocate_display(
            session, self.settings.display_base
        )
        cmd = build_xpra_command(self.settings, display, request.command)
        log.info("xpra.launching", display=display, cmd=cmd)
        try:
            async with manage_subprocess(
                cmd,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
            ) as proc:
                if not await self.registry.attach(session, proc):
                    return
                if proc.stdout is None:
                    raise RuntimeError("xpra process has no output pipe")
                async with contextlib.aclosing(iter_bytes_lines(proc.stdout)) as lines:
                    port = await self._wait_for_port(session, proc, lines, log)
                    if port is None:
                        return
                    url = self.stream_url(port)
                    if not await self.registry.mark_ready(session, url):
                        return
                    log.info("xpra.ready", url=url, pid=proc.pid)
                    await request.connection.emit(
                        AppStream(
                            instance_id=request.instance_id,
                            app_key=request.app_key,
                            type=self.id,
                            url=url,
                        )
                    )
                    async for line in lines:
                        log_pipeline(
                            log,
                            "xpra.output",
                            line=line.decode("utf-8", errors="replace"),
                        )
                rc = await proc.wait()
                log.info("xpra.exited", rc=rc)
        except OSError as exc:
            raise SpawnFailure(LAUNCH_FAILED) from exc

    async def _wait_for_port(
        self,
        session: NativeSession,
        proc: Process,
        lines: AsyncIterator[bytes],
        log: Any,
    ) -> int | None:
        """Read output until the port line; None if the session was killed."""
        with anyio.move_on_after(self.settings.ready_timeout_s) as scope:
            async for line in lines:
                text = line.decode("utf-8", errors="replace")
                log_pipeline(log, "xpra.output", line=text)
                try:
                    return parse_xpra_port(text)
                except ParseFailure:
                    continue
        if scope.cancelled_caught:
            if not await self.is_current(session):
                return None
            log.error("xpra.ready_timeout", timeout=self.settings.ready_timeout_s)
            raise ParseFailure(PARSE_FAILED)
        rc = await proc.wait()
        if not await self.is_current(session):
            return None
        if rc != 0:
            log.error("xpra.launch_failed", rc=rc)
            raise SpawnFailure(LAUNCH_FAILED)
        raise ParseFailure(PARSE_FAILED)

    async def teardown(self, session: NativeSession) -> None:
        if session.display is None:
            return
        cmd = [self.settings.binary, "stop", session.display]
        try:
            result = await anyio.run_process(cmd, check=False)
        except OSError as exc:
            logger.error("xpra.stop.failed", display=session.display, error=str(exc))
            return
        if result.returncode != 0:
            logger.error(
                "xpra.stop.failed",
                display=session.display,
                rc=result.returncode,
                stderr=result.stderr.decode("utf-8", errors="replace"),
            )
