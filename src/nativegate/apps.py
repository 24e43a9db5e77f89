"""Application descriptors read from ``<apps_dir>/<app_key>/app.properties.json``."""

from __future__ import annotations

import re
from pathlib import Path

import msgspec

from .logging import get_logger

logger = get_logger(__name__)

PROPERTIES_FILENAME = "app.properties.json"

_APP_KEY_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.-]*$")


class AppDescriptor(msgspec.Struct, forbid_unknown_fields=False):
    command: str | None = None
    stream: str | None = None


def is_valid_app_key(app_key: str) -> bool:
    return bool(_APP_KEY_RE.match(app_key)) and ".." not in app_key


def load_app_descriptor(apps_dir: Path, app_key: str) -> AppDescriptor:
    """Return the server-declared descriptor, or an empty one.

    A missing or unreadable properties file means the application declares
    nothing, and client-supplied values fill the gaps.
    """
    if not is_valid_app_key(app_key):
        logger.warning("apps.descriptor.invalid_key", app_key=app_key)
        return AppDescriptor()
    path = apps_dir / app_key / PROPERTIES_FILENAME
    try:
        raw = path.read_bytes()
    except FileNotFoundError:
        return AppDescriptor()
    except OSError as exc:
        logger.warning("apps.descriptor.read_failed", path=str(path), error=str(exc))
        return AppDescriptor()
    try:
        return msgspec.json.decode(raw, type=AppDescriptor)
    except (msgspec.DecodeError, msgspec.ValidationError) as exc:
        logger.warning("apps.descriptor.invalid", path=str(path), error=str(exc))
        return AppDescriptor()


def resolve_launch(
    descriptor: AppDescriptor,
    *,
    command: str | None,
    stream: str | None,
) -> tuple[str | None, str | None]:
    """Merge client values into the descriptor; server-declared values win."""
    return descriptor.command or command, descriptor.stream or stream
