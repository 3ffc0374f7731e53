"""CLI tests for `mdpublish config`."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import pytest
from click.testing import CliRunner

from mdpublish.cli import cli
from mdpublish.config import ConfigManager


def _run(tmp_path: Path, *args: str, extra_env: dict[str, str] | None = None):
    env = dict(os.environ)
    env["HOME"] = str(tmp_path)
    env.update(extra_env or {})
    return CliRunner().invoke(cli, ["config", *args], env=env)


def _manager(tmp_path: Path) -> ConfigManager:
    return ConfigManager(config_path=tmp_path / ".mdpublish" / "config.yaml", env={})


def test_view_writes_default_file_and_shows_sections(tmp_path: Path) -> None:
    result = _run(tmp_path, "view")

    assert result.exit_code == 0, result.output
    for section in ("storage:", "access:", "logging:"):
        assert section in result.output
    assert _manager(tmp_path).config_path.exists()


def test_view_reflects_environment_unless_disabled(tmp_path: Path) -> None:
    env = {"MDPUBLISH__ACCESS__PASSWORD_ATTEMPTS": "9"}

    with_env = _run(tmp_path, "view", extra_env=env)
    without_env = _run(tmp_path, "view", "--no-env", extra_env=env)

    assert "password_attempts: 9" in with_env.output
    assert "password_attempts: 5" in without_env.output


def test_set_persists_throttle_window(tmp_path: Path) -> None:
    result = _run(tmp_path, "set", "access.window_seconds", "--value", "42.5")

    assert result.exit_code == 0, result.output
    assert "Updated access.window_seconds" in result.output
    config = _manager(tmp_path).load()
    assert config.access.window_seconds == pytest.approx(42.5)


def test_set_rejects_invalid_value_and_keeps_file(tmp_path: Path) -> None:
    _manager(tmp_path).ensure_exists()
    before = _manager(tmp_path).read_text()

    result = _run(tmp_path, "set", "access.password_attempts", "--value", "many")

    assert result.exit_code != 0
    assert "access.password_attempts" in result.output
    assert _manager(tmp_path).read_text() == before


def test_set_rejects_unknown_storage_key(tmp_path: Path) -> None:
    result = _run(tmp_path, "set", "storage.bucket", "--value", "s3://nowhere")

    assert result.exit_code != 0
    assert "storage.bucket" in result.output


def test_edit_applies_valid_changes(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    _manager(tmp_path).ensure_exists()

    def _edit(text: str, **_: Any) -> str:
        return text.replace("max_images_per_publication: 50", "max_images_per_publication: 10")

    monkeypatch.setattr("mdpublish.cli.click.edit", _edit)

    result = _run(tmp_path, "edit")

    assert result.exit_code == 0, result.output
    assert _manager(tmp_path).load().storage.max_images_per_publication == 10


def test_edit_with_invalid_limit_leaves_file_untouched(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    _manager(tmp_path).ensure_exists()
    before = _manager(tmp_path).read_text()

    def _edit(text: str, **_: Any) -> str:
        return text.replace("identifier_length: 12", "identifier_length: 2")

    monkeypatch.setattr("mdpublish.cli.click.edit", _edit)

    result = _run(tmp_path, "edit")

    assert result.exit_code != 0
    assert "storage.identifier_length" in result.output
    assert _manager(tmp_path).read_text() == before


def test_edit_cancelled_changes_nothing(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr("mdpublish.cli.click.edit", lambda text, **_: None)

    result = _run(tmp_path, "edit")

    assert result.exit_code == 0
    assert "cancelled" in result.output.lower()
