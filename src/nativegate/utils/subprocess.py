"""Spawning and terminating supervised child processes."""

from __future__ import annotations

import contextlib
import os
import signal
import subprocess
from collections.abc import AsyncIterator, Sequence
from typing import Any

import anyio
from anyio.abc import Process

from ..logging import get_logger

logger = get_logger(__name__)

TERMINATE_GRACE_S = 5.0


async def spawn(
    command: str | Sequence[str],
    *,
    stdout: int | None = subprocess.PIPE,
    stderr: int | None = subprocess.PIPE,
    **kwargs: Any,
) -> Process:
    """Start *command* in its own process group.

    A string runs through the shell, a sequence is executed directly. Raises
    ``OSError`` when the executable can not be started.
    """
    return await anyio.open_process(
        command,
        stdin=subprocess.DEVNULL,
        stdout=stdout,
        stderr=stderr,
        start_new_session=os.name == "posix",
        **kwargs,
    )


def signal_process(proc: Process, sig: int = signal.SIGTERM) -> bool:
    """Send *sig* to the process group of *proc*.

    Returns False when the process is already gone.
    """
    if proc.returncode is not None:
        return False
    try:
        if os.name == "posix":
            os.killpg(proc.pid, sig)
        else:
            proc.terminate()
    except ProcessLookupError:
        return False
    return True


async def terminate(proc: Process, *, grace: float = TERMINATE_GRACE_S) -> int | None:
    """SIGTERM the group, escalate to SIGKILL after *grace* seconds."""
    if not signal_process(proc, signal.SIGTERM):
        return proc.returncode
    with anyio.move_on_after(grace):
        return await proc.wait()
    logger.warning("subprocess.kill_after_grace", pid=proc.pid, grace=grace)
    signal_process(proc, signal.SIGKILL)
    return await proc.wait()


@contextlib.asynccontextmanager
async def manage_subprocess(
    command: str | Sequence[str], **kwargs: Any
) -> AsyncIterator[Process]:
    """Spawn *command* and make sure it is gone when the block exits.

    Leaving the block early (error, cancellation) terminates the process
    group; the cleanup is shielded so a cancelled caller still reaps it.
    """
    proc = await spawn(command, **kwargs)
    try:
        yield proc
    finally:
        with anyio.CancelScope(shield=True):
            if proc.returncode is None:
                await terminate(proc)
            await proc.aclose()
