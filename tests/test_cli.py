from __future__ import annotations

from pathlib import Path

import pytest
from typer.testing import CliRunner

from nativegate import __version__, cli
from nativegate.cli import create_app

runner = CliRunner()


@pytest.fixture
def logging_calls(monkeypatch) -> list[dict]:
    calls: list[dict] = []
    monkeypatch.setattr(cli, "setup_logging", lambda **kw: calls.append(kw))
    return calls


def test_version() -> None:
    result = runner.invoke(create_app(), ["version"])
    assert result.exit_code == 0
    assert result.output.strip() == __version__


def test_serve_missing_config_exits(tmp_path: Path, logging_calls) -> None:
    result = runner.invoke(
        create_app(),
        ["serve", "--config", str(tmp_path / "missing.toml"), "--debug"],
    )
    assert result.exit_code == 1
    assert "Missing config file" in result.output
    assert logging_calls == [{"debug": True, "json_logs": False}]


def test_serve_invalid_config_exits(tmp_path: Path, logging_calls) -> None:
    config_path = tmp_path / "nativegate.toml"
    config_path.write_text("[server]\nport = 0\n", encoding="utf-8")
    result = runner.invoke(create_app(), ["serve", "--config", str(config_path)])
    assert result.exit_code == 1
    assert "Invalid config" in result.output


def test_serve_runs_server_with_overrides(
    tmp_path: Path, monkeypatch, logging_calls
) -> None:
    config_path = tmp_path / "nativegate.toml"
    config_path.write_text("[server]\nport = 8080\n", encoding="utf-8")
    seen = {}

    async def fake_server(settings, config_path=None):
        seen["settings"] = settings
        seen["config_path"] = config_path

    monkeypatch.setattr(cli, "run_gateway_server", fake_server)

    result = runner.invoke(
        create_app(),
        ["serve", "--config", str(config_path), "--host", "0.0.0.0", "--port", "9000"],
    )

    assert result.exit_code == 0
    assert seen["settings"].server.host == "0.0.0.0"
    assert seen["settings"].server.port == 9000
    assert seen["config_path"] == config_path


def test_serve_rejects_invalid_port_override(
    tmp_path: Path, monkeypatch, logging_calls
) -> None:
    config_path = tmp_path / "nativegate.toml"
    config_path.write_text("[server]\nport = 8080\n", encoding="utf-8")
    called = []

    async def fake_server(settings, config_path=None):
        called.append(settings)

    monkeypatch.setattr(cli, "run_gateway_server", fake_server)

    result = runner.invoke(
        create_app(), ["serve", "--config", str(config_path), "--port", "0"]
    )

    assert result.exit_code == 1
    assert "Invalid config" in result.output
    assert called == []
