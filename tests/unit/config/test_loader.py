"""
lumenflow-core — unit tests for config loading and validation

File: tests/unit/config/test_loader.py

Purpose
- Validate deterministic config loading from defaults, TOML, env overrides, and CLI overrides.

What this test file should cover
- Precedence: CLI > env > file > defaults.
- Deterministic env var path mapping and type coercion.
- Structured validation issues and allowlist normalization.
- Typed settings resolved against the repository root.
"""

from __future__ import annotations

import json
from pathlib import Path, PurePosixPath

import pytest

from lumenflow_core.config import (
    DEFAULT_CONFIG_FILE,
    ConfigLoadError,
    ConfigValidationError,
    Settings,
    default_config,
    dump_effective_config,
    load_config,
    load_settings,
    validate_config,
)


def _write_config(path: Path, text: str) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")
    return path


def test_loader_precedence_default_file_env_cli(tmp_path: Path) -> None:
    config_path = _write_config(tmp_path / "custom.toml", "[recovery]\nmax_attempts = 2\n")
    env = {"LUMENFLOW_RECOVERY_MAX_ATTEMPTS": "6"}

    assert load_config(repo_root=tmp_path, environ={})["recovery"]["max_attempts"] == 4
    assert load_config(config_path, environ={})["recovery"]["max_attempts"] == 2
    assert load_config(config_path, environ=env)["recovery"]["max_attempts"] == 6
    cli_loaded = load_config(config_path, environ=env, cli_overrides={"recovery.max_attempts": 9})
    assert cli_loaded["recovery"]["max_attempts"] == 9


def test_default_file_is_read_from_repo_root(tmp_path: Path) -> None:
    _write_config(tmp_path / DEFAULT_CONFIG_FILE, '[git]\nmain_branch = "trunk"\npush = false\n')

    loaded = load_config(repo_root=tmp_path, environ={})

    assert loaded["git"] == {"main_branch": "trunk", "remote": "origin", "push": False}


def test_env_values_are_coerced_by_default_type(tmp_path: Path) -> None:
    loaded = load_config(
        repo_root=tmp_path,
        environ={
            "LUMENFLOW_GIT_PUSH": "off",
            "LUMENFLOW_LOGGING_LEVEL": "debug",
            "LUMENFLOW_ENFORCEMENT_ALLOWLIST": "plan/, ./notes ,",
            "LUMENFLOW_PATHS_WORKTREES_DIR": "trees",
            "UNRELATED": "1",
        },
    )

    assert loaded["git"]["push"] is False
    assert loaded["logging"]["level"] == "DEBUG"
    assert loaded["enforcement"]["allowlist"] == ["plan/", "notes/"]
    assert loaded["paths"]["worktrees_dir"] == "trees"


@pytest.mark.parametrize(
    ("name", "value", "message"),
    [
        ("LUMENFLOW_RECOVERY_MAX_ATTEMPTS", "many", "must be an integer"),
        ("LUMENFLOW_GIT_PUSH", "sometimes", "must be a boolean"),
    ],
)
def test_invalid_env_coercion_raises_actionable_error(tmp_path: Path, name: str, value: str, message: str) -> None:
    with pytest.raises(ConfigLoadError, match=message) as excinfo:
        load_config(repo_root=tmp_path, environ={name: value})
    assert name in str(excinfo.value)


def test_explicit_missing_file_is_an_error(tmp_path: Path) -> None:
    with pytest.raises(ConfigLoadError, match="config file not found"):
        load_config(tmp_path / "absent.toml", environ={})


def test_invalid_toml_is_reported(tmp_path: Path) -> None:
    config_path = _write_config(tmp_path / DEFAULT_CONFIG_FILE, "[git\n")
    with pytest.raises(ConfigLoadError, match="invalid TOML in"):
        load_config(repo_root=tmp_path, environ={})
    assert config_path.exists()


def test_validation_collects_every_issue() -> None:
    normalized, issues = validate_config(
        {
            "extras": {},
            "logging": {"level": "LOUD"},
            "recovery": {"max_attempts": 0},
            "archival": {"archive_after": "soon"},
            "git": {"push": "yes"},
        }
    )

    assert normalized is None
    by_path = {issue.path: issue.message for issue in issues}
    assert by_path["extras"] == "unknown field"
    assert by_path["logging.level"].startswith("invalid value 'LOUD'")
    assert by_path["recovery.max_attempts"] == "must be >= 1"
    assert "Invalid archive_after format" in by_path["archival.archive_after"]
    assert by_path["git.push"] == "expected boolean, got str"


def test_file_validation_failure_raises(tmp_path: Path) -> None:
    _write_config(tmp_path / DEFAULT_CONFIG_FILE, "[lanes]\nstrict = true\n")
    with pytest.raises(ConfigValidationError) as excinfo:
        load_config(repo_root=tmp_path, environ={})
    assert str(excinfo.value) == "invalid config:\n- lanes.strict: unknown field"


def test_allowlist_entries_are_normalized() -> None:
    normalized, issues = validate_config({"enforcement": {"allowlist": ["./docs", "plan/", "a\\b"]}})
    assert issues == ()
    assert normalized is not None
    assert normalized["enforcement"]["allowlist"] == ["docs/", "plan/", "a/b/"]


def test_dump_effective_config_is_compact_and_sorted() -> None:
    dumped = dump_effective_config({"b": 1, "a": {"d": True, "c": "x"}})
    assert dumped == '{"a":{"c":"x","d":true},"b":1}'
    assert json.loads(dump_effective_config(default_config()))["recovery"] == {"max_attempts": 4}


def test_settings_resolve_relative_to_repo_root(tmp_path: Path) -> None:
    settings = load_settings(
        repo_root=tmp_path,
        environ={},
        cli_overrides={"paths": {"state_dir": "var/state"}, "archival.archive_after": "2w"},
    )

    assert settings.state_dir == PurePosixPath("var/state")
    assert settings.resolve(tmp_path, settings.state_dir) == tmp_path / "var" / "state"
    assert settings.archive_after == "2w"
    assert settings.allowlist == Settings.defaults().allowlist
    assert settings.allowlist[0] == "docs/04-operations/tasks/wu/"
