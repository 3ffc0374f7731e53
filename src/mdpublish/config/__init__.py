"""Configuration management for mdpublish."""

from __future__ import annotations

import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Mapping

import yaml

from .exceptions import ConfigError
from .models import (
    AccessSettings,
    CLIOptions,
    LoggingSettings,
    PublishConfig,
    StorageSettings,
)
from .resolver import flatten_for_env, parse_env_overrides, resolve_with_precedence

DEFAULT_CONFIG_PATH = Path("~/.mdpublish/config.yaml")
_HEADER_LINES = (
    "# mdpublish configuration file",
    "# Storage limits, password throttling and logging for the publication store.",
    "# Change values with `mdpublish config set KEY --value VALUE` or `mdpublish config edit`.",
)


class ConfigManager:
    """Read and write the YAML configuration file and resolve effective settings.

    Only values present in the file are treated as file overrides; everything
    else falls back to the model defaults, so new settings pick up their
    defaults without rewriting the file.
    """

    def __init__(
        self,
        config_path: Path | None = None,
        *,
        env: Mapping[str, str] | None = None,
    ) -> None:
        """Initialize the manager.

        Args:
            config_path: Configuration file; ``~/.mdpublish/config.yaml`` by default.
            env: Environment consulted for ``MDPUBLISH__`` overrides.
        """
        self._config_path = (config_path or DEFAULT_CONFIG_PATH).expanduser()
        self._env = env if env is not None else os.environ

    @property
    def config_path(self) -> Path:
        return self._config_path

    def load(
        self,
        *,
        cli_overrides: Mapping[str, Any] | None = None,
        include_env: bool = True,
        ensure_file: bool = True,
        env_overrides: Mapping[str, str] | None = None,
    ) -> PublishConfig:
        """Return the effective configuration.

        Args:
            cli_overrides: Dotted-key overrides from the command line.
            include_env: Apply ``MDPUBLISH__`` environment variables.
            ensure_file: Create the configuration file with defaults if missing.
            env_overrides: Environment to read instead of the manager's own.

        Raises:
            ConfigError: If the file is malformed or any value is invalid.
        """
        if ensure_file:
            self.ensure_exists()

        env_values = None
        if include_env:
            environ = env_overrides if env_overrides is not None else self._env
            env_values = parse_env_overrides(environ) or None

        return resolve_with_precedence(
            defaults=PublishConfig(),
            file_overrides=self.load_file_overrides(),
            env_overrides=env_values,
            cli_overrides=cli_overrides,
        )

    def load_file_overrides(self) -> dict[str, Any]:
        """Return the raw mapping stored in the configuration file."""
        text = self.read_text()
        if not text:
            return {}
        try:
            data = yaml.safe_load(text)
        except yaml.YAMLError as exc:
            raise ConfigError(f"Failed to parse {self._config_path}: {exc}") from exc
        if data is None:
            return {}
        if not isinstance(data, dict):
            raise ConfigError("Configuration file must contain a mapping at the top level.")
        return data

    def save(self, config: PublishConfig | Mapping[str, Any]) -> None:
        """Validate ``config`` and write it to the configuration file.

        Raises:
            ConfigError: If a raw mapping does not describe a valid configuration.
        """
        if isinstance(config, PublishConfig):
            data = config.model_dump(mode="python")
        else:
            data = dict(config)
            resolve_with_precedence(defaults=PublishConfig(), file_overrides=data)

        stamp = datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")
        body = yaml.safe_dump(data, sort_keys=False)
        self._config_path.parent.mkdir(parents=True, exist_ok=True)
        self._config_path.write_text(
            "\n".join((*_HEADER_LINES, f"# Last updated: {stamp}", body)), encoding="utf-8"
        )

    def ensure_exists(self) -> Path:
        """Write the default configuration if no file exists yet."""
        if not self._config_path.exists():
            self.save(PublishConfig())
        return self._config_path

    def read_text(self) -> str:
        if not self._config_path.exists():
            return ""
        return self._config_path.read_text(encoding="utf-8")


__all__ = [
    "AccessSettings",
    "CLIOptions",
    "ConfigError",
    "ConfigManager",
    "DEFAULT_CONFIG_PATH",
    "LoggingSettings",
    "PublishConfig",
    "StorageSettings",
    "flatten_for_env",
    "parse_env_overrides",
    "resolve_with_precedence",
]
