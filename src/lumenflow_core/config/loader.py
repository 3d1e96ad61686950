"""
lumenflow-core — runtime config loader.

File: src/lumenflow_core/config/loader.py

Purpose
- Load effective runtime config from defaults, ``lumenflow.toml``, ``LUMENFLOW_``
  env vars, and CLI overrides, in that order of increasing precedence.

Functional requirements
- Every ``[section] key`` of the built-in defaults has one env var,
  ``LUMENFLOW_<SECTION>_<KEY>``, coerced to the default's type.
- The settings file lives at the repository root unless an explicit path is given.
- The merged result is validated before it is returned.
"""

from __future__ import annotations

import json
import os
import tomllib
from collections.abc import Mapping
from pathlib import Path
from typing import Any, Final

from lumenflow_core.config.schema import (
    DEFAULT_CONFIG,
    Settings,
    assert_valid_config,
    default_config,
    merge_config,
)

DEFAULT_CONFIG_FILE: Final[str] = "lumenflow.toml"
ENV_PREFIX: Final[str] = "LUMENFLOW_"

_TRUTHY: Final[frozenset[str]] = frozenset({"1", "true", "yes", "on"})
_FALSY: Final[frozenset[str]] = frozenset({"0", "false", "no", "off"})


class ConfigLoadError(ValueError):
    """Raised when config cannot be loaded or overrides cannot be coerced."""


def load_config(
    config_path: str | Path | None = None,
    *,
    repo_root: str | Path | None = None,
    cli_overrides: Mapping[str, object] | None = None,
    environ: Mapping[str, str] | None = None,
) -> dict[str, Any]:
    """Load effective config with deterministic precedence: CLI > env > file > defaults."""

    if config_path is not None:
        path = Path(config_path).expanduser().resolve()
        if not path.exists():
            raise ConfigLoadError(f"config file not found: {path}")
    else:
        path = (Path.cwd() if repo_root is None else Path(repo_root)) / DEFAULT_CONFIG_FILE

    merged = assert_valid_config(merge_config(default_config(), _read_toml(path)))
    merged = merge_config(merged, _env_overrides(os.environ if environ is None else environ))
    merged = merge_config(merged, _cli_payload(cli_overrides or {}))
    return assert_valid_config(merged)


def load_settings(
    config_path: str | Path | None = None,
    *,
    repo_root: str | Path | None = None,
    cli_overrides: Mapping[str, object] | None = None,
    environ: Mapping[str, str] | None = None,
) -> Settings:
    return Settings.from_config(
        load_config(config_path, repo_root=repo_root, cli_overrides=cli_overrides, environ=environ)
    )


def dump_effective_config(config: Mapping[str, object]) -> str:
    """Return deterministic JSON dump of effective config."""

    return json.dumps(dict(config), sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def _read_toml(path: Path) -> dict[str, Any]:
    if not path.exists():
        return {}
    try:
        with path.open("rb") as handle:
            return tomllib.load(handle)
    except tomllib.TOMLDecodeError as exc:
        raise ConfigLoadError(f"invalid TOML in {path}: {exc}") from exc
    except OSError as exc:
        raise ConfigLoadError(f"unable to read config file {path}: {exc}") from exc


def _env_overrides(environ: Mapping[str, str]) -> dict[str, dict[str, object]]:
    overrides: dict[str, dict[str, object]] = {}
    for section, fields in DEFAULT_CONFIG.items():
        for key, default in fields.items():
            name = f"{ENV_PREFIX}{section.upper()}_{key.upper()}"
            raw = environ.get(name)
            if raw is not None:
                overrides.setdefault(section, {})[key] = _coerce(name, f"{section}.{key}", raw.strip(), default)
    return overrides


def _coerce(name: str, dotted: str, value: str, default: object) -> object:
    if isinstance(default, bool):
        if value.lower() in _TRUTHY:
            return True
        if value.lower() in _FALSY:
            return False
        raise ConfigLoadError(f"{name} -> {dotted} must be a boolean (true/false/1/0/yes/no/on/off)")
    if isinstance(default, int):
        try:
            return int(value)
        except ValueError as exc:
            raise ConfigLoadError(f"{name} -> {dotted} must be an integer") from exc
    if isinstance(default, list):
        return [item.strip() for item in value.split(",") if item.strip()]
    return value


def _cli_payload(overrides: Mapping[str, object]) -> dict[str, Any]:
    """Expand ``section.key`` overrides into nested sections; ``None`` means unset."""

    payload: dict[str, Any] = {}
    for key in sorted(overrides):
        value = overrides[key]
        if value is None:
            continue
        section, _, field = key.partition(".")
        if field:
            payload.setdefault(section, {})[field] = value
        else:
            payload = merge_config(payload, {section: value})
    return payload


__all__ = [
    "ConfigLoadError",
    "DEFAULT_CONFIG_FILE",
    "ENV_PREFIX",
    "dump_effective_config",
    "load_config",
    "load_settings",
]
