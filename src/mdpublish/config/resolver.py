"""Layered configuration: defaults, YAML file, environment and CLI overrides."""

from __future__ import annotations

from collections.abc import Mapping as MappingABC
from copy import deepcopy
from typing import Any, Dict, Iterator, Mapping, NamedTuple

import yaml
from pydantic import ValidationError

from .exceptions import ConfigError
from .models import PublishConfig

ENV_PREFIX = "MDPUBLISH__"
_ENV_SEPARATOR = "__"


class ConfigLayer(NamedTuple):
    """One override source, applied on top of every layer before it."""

    name: str
    values: Mapping[str, Any]


def resolve_with_precedence(
    *,
    defaults: PublishConfig,
    file_overrides: Mapping[str, Any] | None = None,
    env_overrides: Mapping[str, Any] | None = None,
    cli_overrides: Mapping[str, Any] | None = None,
) -> PublishConfig:
    """Merge configuration sources: defaults < file < environment < CLI.

    Override keys may be nested mappings or dotted paths such as
    ``"access.window_seconds"``.

    Raises:
        ConfigError: If a source is malformed or the merged values fail validation.
    """
    layers = [
        ConfigLayer(name, values)
        for name, values in (
            ("file", file_overrides),
            ("environment", env_overrides),
            ("cli", cli_overrides),
        )
        if values is not None
    ]
    merged = defaults.model_dump(mode="python")
    for layer in layers:
        _merge_into(merged, _expand_dotted(layer.values, source_name=layer.name))

    try:
        return PublishConfig.model_validate(merged)
    except ValidationError as exc:
        raise ConfigError(f"Invalid configuration values: {_describe(exc)}") from exc


def parse_env_overrides(
    environ: Mapping[str, str], *, prefix: str = ENV_PREFIX
) -> dict[str, Any]:
    """Collect ``MDPUBLISH__SECTION__KEY`` variables into a nested override mapping.

    Values are parsed as YAML so numbers, booleans, ``null`` and flow lists keep
    their types; text that is not valid YAML is used verbatim.
    """
    overrides: dict[str, Any] = {}
    for key, raw in environ.items():
        if not key.startswith(prefix):
            continue
        path = [part.lower() for part in key[len(prefix) :].split(_ENV_SEPARATOR) if part]
        if not path:
            continue
        try:
            value: Any = yaml.safe_load(raw)
        except yaml.YAMLError:
            value = raw
        assign_dotted(overrides, path, value, source_name="environment")
    return overrides


def flatten_for_env(config: PublishConfig) -> Dict[str, str]:
    """Render ``config`` as the environment variables that would reproduce it."""
    flat: Dict[str, str] = {}
    for path, value in _leaves(config.model_dump(mode="python")):
        if isinstance(value, list):
            rendered = yaml.safe_dump(value, default_flow_style=True).strip()
        elif value is None:
            rendered = "null"
        else:
            rendered = str(value)
        flat[ENV_PREFIX + _ENV_SEPARATOR.join(part.upper() for part in path)] = rendered
    return flat


def assign_dotted(
    target: dict[str, Any], path: list[str], value: Any, *, source_name: str = "cli"
) -> None:
    """Assign ``value`` at the nested ``path`` inside ``target``.

    Mapping values are merged into whatever already sits at ``path``.

    Raises:
        ConfigError: If an intermediate segment already holds a scalar.
    """
    *parents, leaf = path
    node = target
    for segment in parents:
        child = node.setdefault(segment, {})
        if not isinstance(child, dict):
            raise ConfigError(
                f"{source_name.capitalize()} override for {'.'.join(path)} "
                "conflicts with existing value."
            )
        node = child

    if isinstance(value, MappingABC):
        current = node.get(leaf)
        if not isinstance(current, dict):
            current = node[leaf] = {}
        _merge_into(current, _expand_dotted(value, source_name=source_name))
    else:
        node[leaf] = value


def _expand_dotted(source: Mapping[str, Any], *, source_name: str) -> dict[str, Any]:
    if not isinstance(source, MappingABC):
        raise ConfigError(f"{source_name.capitalize()} overrides must be a mapping.")
    expanded: dict[str, Any] = {}
    for key, value in source.items():
        if not isinstance(key, str):
            raise ConfigError(f"{source_name.capitalize()} override keys must be strings.")
        assign_dotted(expanded, key.split("."), value, source_name=source_name)
    return expanded


def _merge_into(base: dict[str, Any], overrides: Mapping[str, Any]) -> None:
    for key, value in overrides.items():
        current = base.get(key)
        if isinstance(value, MappingABC) and isinstance(current, dict):
            _merge_into(current, value)
        else:
            base[key] = deepcopy(value)


def _leaves(
    mapping: Mapping[str, Any], prefix: tuple[str, ...] = ()
) -> Iterator[tuple[tuple[str, ...], Any]]:
    for key, value in mapping.items():
        path = (*prefix, str(key))
        if isinstance(value, MappingABC):
            yield from _leaves(value, path)
        else:
            yield path, value


def _describe(exc: ValidationError) -> str:
    # "storage.max_image_size_bytes: Input should be a valid integer"
    return "; ".join(
        f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}"
        for error in exc.errors()
    )


__all__ = [
    "ENV_PREFIX",
    "ConfigLayer",
    "assign_dotted",
    "flatten_for_env",
    "parse_env_overrides",
    "resolve_with_precedence",
]
