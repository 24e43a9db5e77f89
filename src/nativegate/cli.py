from __future__ import annotations

import functools
from pathlib import Path

import anyio
import typer

from . import __version__
from .config import ConfigError
from .logging import get_logger, setup_logging
from .server import run_gateway_server
from .settings import load_settings, validate_settings_data

logger = get_logger(__name__)


def create_app() -> typer.Typer:
    app = typer.Typer(
        add_completion=False,
        no_args_is_help=True,
        help="Command execution gateway and native session manager.",
    )

    @app.command()
    def serve(
        config: Path | None = typer.Option(
            None, "--config", "-c", help="Path to nativegate.toml."
        ),
        host: str | None = typer.Option(None, help="Override server.host."),
        port: int | None = typer.Option(None, help="Override server.port."),
        debug: bool = typer.Option(False, "--debug", help="Log subprocess output."),
        json_logs: bool = typer.Option(False, "--json-logs", help="Emit JSON logs."),
    ) -> None:
        """Run the HTTP/WebSocket gateway."""
        setup_logging(debug=debug, json_logs=json_logs)
        overrides = {}
        if host is not None:
            overrides["host"] = host
        if port is not None:
            overrides["port"] = port
        try:
            settings, config_path = load_settings(config)
            if overrides:
                data = settings.model_dump()
                data["server"].update(overrides)
                settings = validate_settings_data(data, config_path=config_path)
        except ConfigError as exc:
            typer.echo(str(exc), err=True)
            raise typer.Exit(code=1) from exc

        existing = config_path if config_path.is_file() else None
        try:
            anyio.run(functools.partial(run_gateway_server, settings, existing))
        except KeyboardInterrupt:
            logger.info("gateway.stopped")

    @app.command()
    def version() -> None:
        """Print the installed version."""
        typer.echo(__version__)

    return app


def main() -> None:
    create_app()()
