"""
lumenflow-core — configuration schema and validation.

File: src/lumenflow_core/config/schema.py

Purpose
- Define authoritative runtime defaults and strict validation rules.
- Provide the typed ``Settings`` view consumed by the coordination planes.

Functional requirements
- Validate config payloads and return structured errors (field path + message).
- Repository paths stay repository-relative; they are resolved against the
  repository root at use time, not against the config file location.

Non-functional requirements
- Keep rules deterministic and easy to audit.
"""

from __future__ import annotations

import copy
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import Any, Final

from lumenflow_core import constants

DEFAULT_CONFIG: Final[dict[str, Any]] = {
    "paths": {
        "state_dir": str(constants.STATE_DIR),
        "stamps_dir": str(constants.STAMPS_DIR),
        "archive_dir": str(constants.ARCHIVE_DIR),
        "recovery_dir": str(constants.RECOVERY_DIR),
        "wu_dir": str(constants.WU_DOCS_DIR),
        "worktrees_dir": str(constants.WORKTREES_DIR),
        "lane_config": str(constants.LANE_CONFIG_FILE),
        "lane_inference": str(constants.LANE_INFERENCE_FILE),
    },
    "git": {
        "main_branch": constants.DEFAULT_MAIN_BRANCH,
        "remote": constants.DEFAULT_REMOTE,
        "push": True,
    },
    "archival": {
        "archive_after": constants.DEFAULT_ARCHIVE_AFTER,
    },
    "recovery": {
        "max_attempts": constants.MAX_RECOVERY_ATTEMPTS,
    },
    "enforcement": {
        "allowlist": list(constants.MAIN_WRITE_ALLOWLIST),
    },
    "lanes": {
        "strict_taxonomy": True,
    },
    "logging": {
        "level": "INFO",
        "json": True,
    },
}

PATH_FIELDS: Final[tuple[str, ...]] = tuple(DEFAULT_CONFIG["paths"])

_LOG_LEVELS: Final[tuple[str, ...]] = ("CRITICAL", "DEBUG", "ERROR", "INFO", "WARNING")


@dataclass(frozen=True, slots=True)
class ConfigValidationIssue:
    """Single structured validation failure."""

    path: str
    message: str


class ConfigValidationError(ValueError):
    """Raised when strict config validation fails."""

    def __init__(self, issues: Sequence[ConfigValidationIssue]) -> None:
        self.issues = tuple(issues)
        if not self.issues:
            rendered = "unknown validation failure"
        else:
            rendered = "\n".join(f"- {item.path}: {item.message}" for item in self.issues)
        super().__init__(f"invalid config:\n{rendered}")


class _IssueCollector:
    __slots__ = ("_items",)

    def __init__(self) -> None:
        self._items: list[ConfigValidationIssue] = []

    def add(self, path: str, message: str) -> None:
        self._items.append(ConfigValidationIssue(path=path, message=message))

    def items(self) -> tuple[ConfigValidationIssue, ...]:
        return tuple(self._items)

    @property
    def has_issues(self) -> bool:
        return bool(self._items)


@dataclass(frozen=True, slots=True)
class Settings:
    """Typed, validated runtime settings."""

    state_dir: PurePosixPath
    stamps_dir: PurePosixPath
    archive_dir: PurePosixPath
    recovery_dir: PurePosixPath
    wu_dir: PurePosixPath
    worktrees_dir: PurePosixPath
    lane_config: PurePosixPath
    lane_inference: PurePosixPath
    main_branch: str
    remote: str
    push: bool
    archive_after: str
    max_recovery_attempts: int
    allowlist: tuple[str, ...]
    strict_taxonomy: bool
    log_level: str
    log_json: bool

    @classmethod
    def from_config(cls, config: Mapping[str, object]) -> Settings:
        validated = assert_valid_config(config)
        paths = validated["paths"]
        return cls(
            state_dir=PurePosixPath(paths["state_dir"]),
            stamps_dir=PurePosixPath(paths["stamps_dir"]),
            archive_dir=PurePosixPath(paths["archive_dir"]),
            recovery_dir=PurePosixPath(paths["recovery_dir"]),
            wu_dir=PurePosixPath(paths["wu_dir"]),
            worktrees_dir=PurePosixPath(paths["worktrees_dir"]),
            lane_config=PurePosixPath(paths["lane_config"]),
            lane_inference=PurePosixPath(paths["lane_inference"]),
            main_branch=validated["git"]["main_branch"],
            remote=validated["git"]["remote"],
            push=validated["git"]["push"],
            archive_after=validated["archival"]["archive_after"],
            max_recovery_attempts=validated["recovery"]["max_attempts"],
            allowlist=tuple(validated["enforcement"]["allowlist"]),
            strict_taxonomy=validated["lanes"]["strict_taxonomy"],
            log_level=validated["logging"]["level"],
            log_json=validated["logging"]["json"],
        )

    @classmethod
    def defaults(cls) -> Settings:
        return cls.from_config(default_config())

    def resolve(self, repo_root: Path, relative: PurePosixPath) -> Path:
        """Resolve a configured repository-relative path under ``repo_root``."""

        candidate = Path(relative)
        if candidate.is_absolute():
            return candidate
        return repo_root / candidate


def default_config() -> dict[str, Any]:
    """Return a deep copy of deterministic built-in defaults."""

    return copy.deepcopy(DEFAULT_CONFIG)


def merge_config(base: Mapping[str, object], overlay: Mapping[str, object]) -> dict[str, Any]:
    """Deterministically deep-merge ``overlay`` onto ``base``."""

    merged = copy.deepcopy(dict(base))
    _merge_into(merged, overlay)
    return merged


def validate_config(config: Mapping[str, object] | object) -> tuple[dict[str, Any] | None, tuple[ConfigValidationIssue, ...]]:
    """Validate config and return ``(normalized, issues)``; ``normalized`` is ``None`` on failure."""

    issues = _IssueCollector()
    if not isinstance(config, Mapping):
        issues.add("<root>", f"expected object, got {type(config).__name__}")
        return None, issues.items()

    _reject_unknown_keys(config, set(DEFAULT_CONFIG), "", issues)
    merged = merge_config(default_config(), config)

    out: dict[str, Any] = {
        "paths": _validate_paths(merged["paths"], "paths", issues),
        "git": _validate_git(merged["git"], "git", issues),
        "archival": _validate_archival(merged["archival"], "archival", issues),
        "recovery": _validate_recovery(merged["recovery"], "recovery", issues),
        "enforcement": _validate_enforcement(merged["enforcement"], "enforcement", issues),
        "lanes": _validate_lanes(merged["lanes"], "lanes", issues),
        "logging": _validate_logging(merged["logging"], "logging", issues),
    }
    if issues.has_issues:
        return None, issues.items()
    return out, ()


def assert_valid_config(config: Mapping[str, object] | object) -> dict[str, Any]:
    """Validate config and raise ``ConfigValidationError`` on failure."""

    normalized, issues = validate_config(config)
    if normalized is None:
        raise ConfigValidationError(issues)
    return normalized


def _validate_paths(payload: object, path: str, issues: _IssueCollector) -> dict[str, Any]:
    section = _as_object(payload, path, issues)
    out: dict[str, Any] = {}
    if section is None:
        return out
    _reject_unknown_keys(section, set(PATH_FIELDS), path, issues)
    for key in PATH_FIELDS:
        parsed = _as_str(section.get(key), _join(path, key), issues)
        if parsed is None:
            continue
        if "\x00" in parsed:
            issues.add(_join(path, key), "must not contain NUL bytes")
            continue
        out[key] = PurePosixPath(parsed.replace("\\", "/")).as_posix()
    return out


def _validate_git(payload: object, path: str, issues: _IssueCollector) -> dict[str, Any]:
    section = _as_object(payload, path, issues)
    out: dict[str, Any] = {}
    if section is None:
        return out
    _reject_unknown_keys(section, {"main_branch", "remote", "push"}, path, issues)
    for key in ("main_branch", "remote"):
        parsed = _as_str(section.get(key), _join(path, key), issues)
        if parsed is not None:
            out[key] = parsed
    parsed_push = _as_bool(section.get("push"), _join(path, "push"), issues)
    if parsed_push is not None:
        out["push"] = parsed_push
    return out


def _validate_archival(payload: object, path: str, issues: _IssueCollector) -> dict[str, Any]:
    section = _as_object(payload, path, issues)
    out: dict[str, Any] = {}
    if section is None:
        return out
    _reject_unknown_keys(section, {"archive_after"}, path, issues)
    parsed = _as_str(section.get("archive_after"), _join(path, "archive_after"), issues)
    if parsed is not None:
        # Imported lazily: persistence depends on config for path defaults.
        from lumenflow_core.persistence.archival import parse_archive_after

        try:
            parse_archive_after(parsed)
        except ValueError as exc:
            issues.add(_join(path, "archive_after"), str(exc))
        else:
            out["archive_after"] = parsed
    return out


def _validate_recovery(payload: object, path: str, issues: _IssueCollector) -> dict[str, Any]:
    section = _as_object(payload, path, issues)
    out: dict[str, Any] = {}
    if section is None:
        return out
    _reject_unknown_keys(section, {"max_attempts"}, path, issues)
    parsed = _as_int(section.get("max_attempts"), _join(path, "max_attempts"), issues, minimum=1)
    if parsed is not None:
        out["max_attempts"] = parsed
    return out


def _validate_enforcement(payload: object, path: str, issues: _IssueCollector) -> dict[str, Any]:
    section = _as_object(payload, path, issues)
    out: dict[str, Any] = {}
    if section is None:
        return out
    _reject_unknown_keys(section, {"allowlist"}, path, issues)
    raw = section.get("allowlist")
    key_path = _join(path, "allowlist")
    if not isinstance(raw, list):
        issues.add(key_path, f"expected list of strings, got {type(raw).__name__}")
        return out
    prefixes: list[str] = []
    for index, item in enumerate(raw):
        parsed = _as_str(item, f"{key_path}[{index}]", issues)
        if parsed is None:
            continue
        normalized = parsed.replace("\\", "/")
        while normalized.startswith("./"):
            normalized = normalized[2:]
        prefixes.append(normalized if normalized.endswith("/") else f"{normalized}/")
    out["allowlist"] = prefixes
    return out


def _validate_lanes(payload: object, path: str, issues: _IssueCollector) -> dict[str, Any]:
    section = _as_object(payload, path, issues)
    out: dict[str, Any] = {}
    if section is None:
        return out
    _reject_unknown_keys(section, {"strict_taxonomy"}, path, issues)
    parsed = _as_bool(section.get("strict_taxonomy"), _join(path, "strict_taxonomy"), issues)
    if parsed is not None:
        out["strict_taxonomy"] = parsed
    return out


def _validate_logging(payload: object, path: str, issues: _IssueCollector) -> dict[str, Any]:
    section = _as_object(payload, path, issues)
    out: dict[str, Any] = {}
    if section is None:
        return out
    _reject_unknown_keys(section, {"level", "json"}, path, issues)
    level = _as_str(section.get("level"), _join(path, "level"), issues)
    if level is not None:
        upper = level.upper()
        if upper not in _LOG_LEVELS:
            expected = ", ".join(_LOG_LEVELS)
            issues.add(_join(path, "level"), f"invalid value {level!r}; expected one of: {expected}")
        else:
            out["level"] = upper
    parsed_json = _as_bool(section.get("json"), _join(path, "json"), issues)
    if parsed_json is not None:
        out["json"] = parsed_json
    return out


def _as_object(value: object, path: str, issues: _IssueCollector) -> dict[str, object] | None:
    if not isinstance(value, Mapping):
        issues.add(path, f"expected object, got {type(value).__name__}")
        return None
    out: dict[str, object] = {}
    for key, item in value.items():
        if not isinstance(key, str):
            issues.add(path, f"object key must be string, got {type(key).__name__}")
            continue
        out[key] = item
    return out


def _as_str(value: object, path: str, issues: _IssueCollector) -> str | None:
    if not isinstance(value, str):
        issues.add(path, f"expected string, got {type(value).__name__}")
        return None
    parsed = value.strip()
    if not parsed:
        issues.add(path, "must not be empty")
        return None
    return parsed


def _as_bool(value: object, path: str, issues: _IssueCollector) -> bool | None:
    if isinstance(value, bool):
        return value
    issues.add(path, f"expected boolean, got {type(value).__name__}")
    return None


def _as_int(
    value: object,
    path: str,
    issues: _IssueCollector,
    *,
    minimum: int | None = None,
) -> int | None:
    if isinstance(value, bool) or not isinstance(value, int):
        issues.add(path, f"expected integer, got {type(value).__name__}")
        return None
    if minimum is not None and value < minimum:
        issues.add(path, f"must be >= {minimum}")
        return None
    return value


def _reject_unknown_keys(
    payload: Mapping[str, object],
    allowed: set[str],
    path: str,
    issues: _IssueCollector,
) -> None:
    for key in sorted(payload):
        if key not in allowed:
            issues.add(_join(path, key), "unknown field")


def _join(path: str, key: str) -> str:
    if not path:
        return key
    return f"{path}.{key}"


def _merge_into(target: dict[str, Any], overlay: Mapping[str, object]) -> None:
    for key in sorted(overlay):
        value = overlay[key]
        if isinstance(value, Mapping):
            existing = target.get(key)
            if isinstance(existing, dict):
                _merge_into(existing, value)
            else:
                nested: dict[str, Any] = {}
                _merge_into(nested, value)
                target[key] = nested
        else:
            target[key] = copy.deepcopy(value)


__all__ = [
    "DEFAULT_CONFIG",
    "PATH_FIELDS",
    "ConfigValidationError",
    "ConfigValidationIssue",
    "Settings",
    "assert_valid_config",
    "default_config",
    "merge_config",
    "validate_config",
]
