from __future__ import annotations

import os
from pathlib import Path
from typing import Annotated, Any

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    StringConstraints,
    ValidationError,
    field_validator,
)
from pydantic.types import StrictInt
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic_settings.sources import TomlConfigSettingsSource

from .config import HOME_CONFIG_PATH, ConfigError, read_config
from .logging import get_logger

logger = get_logger(__name__)

CONFIG_PATH_ENV = "NATIVEGATE_CONFIG_PATH"

NonEmptyStr = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1)]


class ServerSettings(BaseModel):
    """HTTP/WebSocket listener settings."""

    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)

    host: str = "127.0.0.1"
    port: StrictInt = Field(default=3000, ge=1, le=65535)
    exec_rate_limit: StrictInt = Field(default=60, ge=1)
    max_body_bytes: StrictInt = Field(default=65_536, ge=1024, le=10_485_760)


class PolicySettings(BaseModel):
    """Additions to the built-in blocklist and risk tokens.

    Built-in entries can not be removed from configuration.
    """

    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)

    extra_blocked: list[NonEmptyStr] = Field(default_factory=list)
    extra_risk_tokens: list[NonEmptyStr] = Field(default_factory=list)


class ExecSettings(BaseModel):
    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)

    max_output_bytes: StrictInt = Field(default=1_048_576, ge=1024)


class SessionSettings(BaseModel):
    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)

    kill_on_disconnect: bool = False
    kill_grace_s: float = Field(default=5.0, gt=0)


class XpraSettings(BaseModel):
    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)

    binary: NonEmptyStr = "xpra"
    display_base: StrictInt = Field(default=100, ge=1)
    bind_host: NonEmptyStr = "127.0.0.1"
    url_host: NonEmptyStr = "localhost"
    ready_timeout_s: float = Field(default=30.0, gt=0)


class SunshineSettings(BaseModel):
    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)

    binary: NonEmptyStr = "sunshine"
    url: NonEmptyStr = "http://localhost:47989"
    settle_delay_s: float = Field(default=2.0, ge=0)

    @field_validator("url")
    @classmethod
    def _validate_url(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            raise ValueError("sunshine url must be an http(s) URL")
        return v


class BackendsSettings(BaseModel):
    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)

    xpra: XpraSettings = Field(default_factory=XpraSettings)
    sunshine: SunshineSettings = Field(default_factory=SunshineSettings)


class GatewaySettings(BaseSettings):
    model_config = SettingsConfigDict(
        extra="forbid",
        env_prefix="NATIVEGATE__",
        env_nested_delimiter="__",
        str_strip_whitespace=True,
    )

    apps_dir: NonEmptyStr = "public/apps"
    server: ServerSettings = Field(default_factory=ServerSettings)
    policy: PolicySettings = Field(default_factory=PolicySettings)
    exec: ExecSettings = Field(default_factory=ExecSettings)
    sessions: SessionSettings = Field(default_factory=SessionSettings)
    backends: BackendsSettings = Field(default_factory=BackendsSettings)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            TomlConfigSettingsSource(settings_cls),
            file_secret_settings,
        )

    def resolved_apps_dir(self, *, config_path: Path | None) -> Path:
        path = Path(self.apps_dir).expanduser()
        if not path.is_absolute() and config_path is not None:
            path = config_path.parent / path
        return path


def load_settings(path: str | Path | None = None) -> tuple[GatewaySettings, Path]:
    """Load settings from TOML plus ``NATIVEGATE__`` env overrides.

    An explicitly requested config file must exist. The default location is
    optional; built-in defaults apply when it is absent.
    """
    cfg_path = _resolve_config_path(path)
    explicit = bool(path) or bool(os.environ.get(CONFIG_PATH_ENV))
    if cfg_path.exists() and not cfg_path.is_file():
        raise ConfigError(f"Config path {cfg_path} exists but is not a file.") from None
    if not cfg_path.exists():
        if explicit:
            raise ConfigError(f"Missing config file {cfg_path}.") from None
        logger.info("settings.defaults", config_path=str(cfg_path))
        return _load_defaults(), cfg_path
    return _load_settings_from_path(cfg_path), cfg_path


def validate_settings_data(
    data: dict[str, Any], *, config_path: Path
) -> GatewaySettings:
    try:
        return GatewaySettings.model_validate(data)
    except ValidationError as exc:
        raise ConfigError(f"Invalid config in {config_path}: {exc}") from exc


def _resolve_config_path(path: str | Path | None) -> Path:
    if path:
        return Path(path).expanduser()
    env_path = os.environ.get(CONFIG_PATH_ENV)
    if env_path:
        return Path(env_path).expanduser()
    return HOME_CONFIG_PATH


def _load_defaults() -> GatewaySettings:
    try:
        return GatewaySettings()
    except ValidationError as exc:
        raise ConfigError(f"Invalid environment overrides: {exc}") from exc


def _load_settings_from_path(cfg_path: Path) -> GatewaySettings:
    read_config(cfg_path)
    cfg = dict(GatewaySettings.model_config)
    cfg["toml_file"] = cfg_path
    Bound = type(
        "GatewaySettingsBound",
        (GatewaySettings,),
        {"model_config": SettingsConfigDict(**cfg)},
    )
    try:
        return Bound()
    except ValidationError as exc:
        raise ConfigError(f"Invalid config in {cfg_path}: {exc}") from exc
    except Exception as exc:  # pragma: no cover - safety net
        raise ConfigError(f"Failed to load config {cfg_path}: {exc}") from exc
