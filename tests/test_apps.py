from __future__ import annotations

import json
from pathlib import Path

import pytest

from nativegate.apps import (
    AppDescriptor,
    is_valid_app_key,
    load_app_descriptor,
    resolve_launch,
)


def _write(apps_dir: Path, app_key: str, raw: str) -> None:
    app_dir = apps_dir / app_key
    app_dir.mkdir(parents=True)
    (app_dir / "app.properties.json").write_text(raw, encoding="utf-8")


def test_load_descriptor(tmp_path: Path) -> None:
    _write(
        tmp_path,
        "gimp",
        json.dumps({"command": "gimp", "stream": "xpra", "icon": "gimp.png"}),
    )
    assert load_app_descriptor(tmp_path, "gimp") == AppDescriptor(
        command="gimp", stream="xpra"
    )


def test_missing_descriptor_is_empty(tmp_path: Path) -> None:
    assert load_app_descriptor(tmp_path, "nothing") == AppDescriptor()


def test_malformed_descriptor_is_empty(tmp_path: Path) -> None:
    _write(tmp_path, "broken", "{not json")
    assert load_app_descriptor(tmp_path, "broken") == AppDescriptor()


def test_wrong_types_are_empty(tmp_path: Path) -> None:
    _write(tmp_path, "typed", json.dumps({"command": ["gimp"]}))
    assert load_app_descriptor(tmp_path, "typed") == AppDescriptor()


def test_path_traversal_key_not_read(tmp_path: Path) -> None:
    apps_dir = tmp_path / "apps"
    apps_dir.mkdir()
    (tmp_path / "app.properties.json").write_text(
        json.dumps({"command": "evil"}), encoding="utf-8"
    )
    assert load_app_descriptor(apps_dir, "..") == AppDescriptor()


@pytest.mark.parametrize(
    ("key", "valid"),
    [
        ("gimp", True),
        ("steam-big_picture.v2", True),
        ("", False),
        ("..", False),
        ("a/b", False),
        (".hidden", False),
        ("x..y", False),
    ],
)
def test_is_valid_app_key(key: str, valid: bool) -> None:
    assert is_valid_app_key(key) is valid


class TestResolveLaunch:
    def test_server_values_win(self):
        descriptor = AppDescriptor(command="/opt/game", stream="sunshine")
        assert resolve_launch(descriptor, command="other", stream="xpra") == (
            "/opt/game",
            "sunshine",
        )

    def test_client_fills_gaps(self):
        descriptor = AppDescriptor(stream="xpra")
        assert resolve_launch(descriptor, command="xterm", stream="exec") == (
            "xterm",
            "xpra",
        )

    def test_nothing_declared(self):
        assert resolve_launch(AppDescriptor(), command=None, stream=None) == (
            None,
            None,
        )
