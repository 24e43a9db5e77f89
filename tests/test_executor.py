"""Tests for command gating and execution."""

from __future__ import annotations

import contextlib

import anyio
import pytest

from nativegate import executor as executor_module
from nativegate.errors import CommandBlocked
from nativegate.events import ExecResult, UacRequired
from nativegate.executor import CommandExecutor
from nativegate.policy import RiskClassifier
from tests.factories import FakeTaskGroup, make_connection


def _executor(task_group=None, **kwargs) -> tuple[CommandExecutor, FakeTaskGroup]:
    tg = task_group or FakeTaskGroup()
    return CommandExecutor(classifier=RiskClassifier(), task_group=tg, **kwargs), tg


class TestGate:
    @pytest.mark.anyio
    async def test_blocked_command_refused_without_spawn(self):
        executor, tg = _executor()
        connection, capture = make_connection()

        with pytest.raises(CommandBlocked) as excinfo:
            await executor.execute(connection, "rm -rf /")

        assert excinfo.value.pattern == "rm -rf /"
        assert str(excinfo.value) == "Command permanently blocked"
        assert tg.tasks == []
        assert capture.events == []

    @pytest.mark.anyio
    async def test_blocked_even_when_approved(self):
        executor, tg = _executor()
        connection, _ = make_connection()
        connection.authorization.approve()

        with pytest.raises(CommandBlocked):
            await executor.execute(connection, "dd if=/dev/zero of=/dev/sda")

        assert tg.tasks == []
        # The grant is left for the next legitimate command.
        assert connection.authorization.approved is True

    @pytest.mark.anyio
    async def test_risky_command_requires_authorization(self):
        executor, tg = _executor()
        connection, capture = make_connection()

        status = await executor.execute(connection, "sudo apt install htop")

        assert status == "pending"
        assert tg.tasks == []
        assert capture.events == [
            UacRequired(command="sudo apt install htop", risks=["sudo", "apt"])
        ]

    @pytest.mark.anyio
    async def test_approved_resubmission_spawns_once_and_resets(self):
        executor, tg = _executor()
        connection, _ = make_connection()

        assert await executor.execute(connection, "chmod 600 key") == "pending"
        connection.authorization.approve()
        assert await executor.execute(connection, "chmod 600 key") == "started"

        assert len(tg.tasks) == 1
        fn, args = tg.tasks[0]
        assert fn == executor.run
        assert args == (connection, "chmod 600 key")
        assert connection.authorization.approved is False

    @pytest.mark.anyio
    async def test_approval_is_one_shot(self):
        executor, tg = _executor()
        connection, capture = make_connection()

        connection.authorization.approve()
        assert await executor.execute(connection, "sudo ls") == "started"
        assert await executor.execute(connection, "sudo ls") == "pending"
        connection.authorization.approve()
        assert await executor.execute(connection, "sudo ls") == "started"

        assert len(tg.tasks) == 2
        assert len(capture.of_type(UacRequired)) == 1

    @pytest.mark.anyio
    async def test_denied_command_stays_pending(self):
        executor, tg = _executor()
        connection, _ = make_connection()

        connection.authorization.approve()
        connection.authorization.deny()

        assert await executor.execute(connection, "kill 1") == "pending"
        assert tg.tasks == []

    @pytest.mark.anyio
    async def test_safe_command_consumes_stray_approval(self):
        executor, tg = _executor()
        connection, capture = make_connection()
        connection.authorization.approve()

        assert await executor.execute(connection, "echo hi") == "started"

        assert len(tg.tasks) == 1
        assert connection.authorization.approved is False
        assert capture.events == []


class TestCollect:
    @pytest.mark.anyio
    async def test_successful_command(self):
        executor, _ = _executor()
        result = await executor.collect("echo hello")
        assert result == ExecResult(stdout="hello\n", stderr="", error=None)

    @pytest.mark.anyio
    async def test_failed_command_reports_error(self):
        executor, _ = _executor()
        result = await executor.collect("echo oops >&2; exit 3")
        assert result.stdout == ""
        assert result.stderr == "oops\n"
        assert result.error == "Command failed: echo oops >&2; exit 3\noops\n"

    @pytest.mark.anyio
    async def test_output_is_capped(self):
        executor, _ = _executor(max_output_bytes=4)
        result = await executor.collect("printf abcdefghij")
        assert result.stdout == "abcd"
        assert result.error is None

    @pytest.mark.anyio
    async def test_run_emits_exactly_one_result(self):
        connection, capture = make_connection()
        async with anyio.create_task_group() as tg:
            executor, _ = _executor(task_group=tg)
            assert await executor.execute(connection, "printf out") == "started"

        assert capture.events == [ExecResult(stdout="out", stderr="", error=None)]

    @pytest.mark.anyio
    async def test_concurrent_runs_each_report(self):
        connection, capture = make_connection()
        async with anyio.create_task_group() as tg:
            executor, _ = _executor(task_group=tg)
            for i in range(5):
                await executor.execute(connection, f"echo {i}")

        results = capture.of_type(ExecResult)
        assert len(results) == 5
        assert sorted(r.stdout for r in results) == [f"{i}\n" for i in range(5)]


class _PipelessProcess:
    pid = 1
    returncode = 0
    stdout = None
    stderr = None


@contextlib.asynccontextmanager
async def _pipeless_subprocess(command, **kwargs):
    yield _PipelessProcess()


@pytest.mark.anyio
async def test_collect_requires_output_pipes(monkeypatch):
    monkeypatch.setattr(executor_module, "manage_subprocess", _pipeless_subprocess)
    executor, _ = _executor()

    with pytest.raises(RuntimeError, match="no output pipes"):
        await executor.collect("echo hi")
