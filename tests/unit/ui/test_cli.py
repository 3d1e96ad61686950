"""
lumenflow-core — unit tests for the CLI router

File: tests/unit/ui/test_cli.py

Purpose
- Drive the lifecycle and maintenance commands end to end against a temporary
  repository and validate the exit-code contract.

What this test file should cover
- claim -> status -> block -> unblock -> complete with document and stamp updates,
  creating the lane worktree on claim and removing it on completion.
- Workspace claims outside git and rollback when recording the claim fails.
- Lane admission refusal, ``--force`` and ``lane check`` exit codes.
- check/repair/recover output and effective config dumping.
- Exception routing in ``cli_entrypoint``.
"""

from __future__ import annotations

import json
from typing import TYPE_CHECKING

import pytest
import structlog

from lumenflow_core.errors import LumenFlowIOError, PolicyError, SchemaError
from lumenflow_core.integration_plane.git_engine import GitEngine
from lumenflow_core.layout import RepoLayout
from lumenflow_core.main import ExitCode, cli_entrypoint, route_exception
from lumenflow_core.persistence.state_store import WUStateStore
from lumenflow_core.ui.cli import run_cli
from tests import isolate_git_env, make_layout, read_document, run_git, write_document, write_yaml

if TYPE_CHECKING:
    from collections.abc import Iterator
    from pathlib import Path

LANE = "Framework: Core"
WORKTREE = "worktrees/framework-core-wu-1"
BRANCH = "lane/framework-core/wu-1"


@pytest.fixture(autouse=True)
def _reset_logging() -> Iterator[None]:
    yield
    structlog.reset_defaults()


@pytest.fixture
def layout(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> RepoLayout:
    monkeypatch.delenv("LUMENFLOW_LOGGING_LEVEL", raising=False)
    isolate_git_env(tmp_path, monkeypatch)
    repo = make_layout(tmp_path)
    GitEngine(repo.root).init_or_open()
    write_yaml(repo.lane_inference, {"Framework": {"Core": {"keywords": ["parser"]}}})
    write_document(repo, "WU-1", status="ready")
    return repo


def _run(layout: RepoLayout, *args: str) -> int:
    return run_cli([*args, "--repo-root", str(layout.root)])


def _json_out(capsys: pytest.CaptureFixture[str]) -> dict[str, object]:
    return json.loads(capsys.readouterr().out)


def test_claim_status_complete_lifecycle(layout: RepoLayout, capsys: pytest.CaptureFixture[str]) -> None:
    assert _run(layout, "claim", "WU-1") == 0
    out = capsys.readouterr().out
    assert "WU-1 claimed in Framework: Core (workspace)" in out
    assert "Workspace: worktrees/framework-core-wu-1" in out

    document = read_document(layout.wu_dir / "WU-1.yaml")
    assert document["status"] == "in_progress"
    assert document["worktree_path"] == "worktrees/framework-core-wu-1"
    assert document["claimed_mode"] == "workspace"
    assert (layout.root / WORKTREE / ".git").is_file()
    assert run_git(layout.root, "branch", "--list", BRANCH).stdout.strip() == BRANCH
    assert run_git(layout.root / WORKTREE, "branch", "--show-current").stdout.strip() == BRANCH

    assert _run(layout, "status", "WU-1", "--json") == 0
    (state,) = _json_out(capsys)["wus"]
    assert (state["wu_id"], state["status"], state["lane"]) == ("WU-1", "in_progress", LANE)

    assert _run(layout, "block", "WU-1", "--reason", "waiting on review") == 0
    assert _run(layout, "unblock", "WU-1") == 0
    capsys.readouterr()

    assert _run(layout, "complete", "WU-1", "--json") == 0
    assert _json_out(capsys) == {
        "command": "complete",
        "wu_id": "WU-1",
        "status": "done",
        "stamp": ".lumenflow/stamps/WU-1.done",
    }
    document = read_document(layout.wu_dir / "WU-1.yaml")
    assert document["status"] == "done"
    assert document["locked"] is True
    assert not (layout.root / WORKTREE).exists()

    assert _run(layout, "check") == 0
    assert capsys.readouterr().out.strip() == "repository: consistent"


def test_claim_needs_lane_and_title_without_document(layout: RepoLayout, capsys: pytest.CaptureFixture[str]) -> None:
    assert _run(layout, "claim", "WU-2") == 2
    assert "--lane and --title are required" in capsys.readouterr().err


def test_workspace_claim_outside_git_is_refused(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    plain = make_layout(tmp_path, "plain")
    write_yaml(plain.lane_inference, {"Framework": {"Core": {"keywords": ["parser"]}}})
    write_document(plain, "WU-1", status="ready")

    assert _run(plain, "claim", "WU-1") == 2
    assert "workspace claims need a git repository" in capsys.readouterr().err
    assert plain.state_store().event_log.read() == []

    assert _run(plain, "claim", "WU-1", "--mode", "branch-pr") == 0
    assert "Branch: lane/framework-core/wu-1" in capsys.readouterr().out


def test_failed_claim_removes_the_new_workspace(
    layout: RepoLayout,
    monkeypatch: pytest.MonkeyPatch,
    capsys: pytest.CaptureFixture[str],
) -> None:
    def failing_claim(self: WUStateStore, *args: object, **kwargs: object) -> object:
        raise LumenFlowIOError("unable to append to wu-events.jsonl: disk full")

    monkeypatch.setattr(WUStateStore, "claim", failing_claim)

    code = cli_entrypoint(["claim", "WU-1", "--repo-root", str(layout.root)])

    assert code == ExitCode.INTERNAL_ERROR
    assert "disk full" in capsys.readouterr().err
    assert not (layout.root / WORKTREE).exists()
    assert run_git(layout.root, "branch", "--list", BRANCH).stdout.strip() == ""
    assert read_document(layout.wu_dir / "WU-1.yaml")["status"] == "ready"


def test_release_removes_clean_workspace_and_keeps_dirty_one(
    layout: RepoLayout,
    capsys: pytest.CaptureFixture[str],
) -> None:
    assert _run(layout, "claim", "WU-1") == 0
    assert _run(layout, "release", "WU-1", "--reason", "handing over") == 0
    assert not (layout.root / WORKTREE).exists()
    capsys.readouterr()

    assert _run(layout, "claim", "WU-1") == 0
    (layout.root / WORKTREE / "notes.txt").write_text("unsaved\n", encoding="utf-8")
    capsys.readouterr()

    assert _run(layout, "release", "WU-1", "--reason", "handing over") == 0
    assert f"warning: workspace {WORKTREE} left in place" in capsys.readouterr().err
    assert (layout.root / WORKTREE / "notes.txt").exists()


def test_full_lane_is_refused_unless_forced(layout: RepoLayout, capsys: pytest.CaptureFixture[str]) -> None:
    assert _run(layout, "claim", "WU-1") == 0

    code = cli_entrypoint(["claim", "WU-2", "--lane", LANE, "--title", "Second", "--repo-root", str(layout.root)])
    assert code == ExitCode.REJECTED
    err = capsys.readouterr().err
    assert "[LANE_OCCUPIED]" in err
    assert "found:    WU-1" in err

    assert _run(layout, "lane", "check", LANE) == 1
    assert "occupied by WU-1 (1/1, policy all)" in capsys.readouterr().out

    assert _run(layout, "claim", "WU-2", "--lane", LANE, "--title", "Second", "--force") == 0
    assert "over its WIP limit (1/1)" in capsys.readouterr().err


def test_lane_check_json_when_free(layout: RepoLayout, capsys: pytest.CaptureFixture[str]) -> None:
    assert _run(layout, "lane", "check", LANE, "--json") == 0
    result = _json_out(capsys)["result"]
    assert result["free"] is True
    assert result["wip_limit"] == 1
    assert result["warning"] is None


def test_lane_validate_rejects_unknown_sub_lane(layout: RepoLayout, capsys: pytest.CaptureFixture[str]) -> None:
    code = cli_entrypoint(["lane", "validate", "Framework: Parser", "--repo-root", str(layout.root)])
    assert code == ExitCode.CONFIG_ERROR
    assert 'Unknown sub-lane: "Parser"' in capsys.readouterr().err


def test_lane_suggest_uses_keywords(layout: RepoLayout, capsys: pytest.CaptureFixture[str]) -> None:
    assert _run(layout, "lane", "suggest", "--description", "fix the parser") == 0
    assert capsys.readouterr().out.startswith("Framework")


def test_zombie_claim_is_reported_then_repaired(layout: RepoLayout, capsys: pytest.CaptureFixture[str]) -> None:
    assert _run(layout, "claim", "WU-1") == 0
    capsys.readouterr()
    run_git(layout.root, "worktree", "remove", "--force", WORKTREE)

    assert _run(layout, "check", "WU-1") == 1
    assert "zombie-claim] WU-1" in capsys.readouterr().out

    assert _run(layout, "repair", "WU-1", "--in-place") == 0
    assert "repaired: WU-1: zombie-claim: released (attempt 1)" in capsys.readouterr().out
    assert read_document(layout.wu_dir / "WU-1.yaml")["status"] == "ready"

    assert _run(layout, "recover", "WU-1", "--reset") == 0
    assert capsys.readouterr().out.strip() == "WU-1: recovery counter was not set"


def test_doctor_state_drops_malformed_lines(layout: RepoLayout, capsys: pytest.CaptureFixture[str]) -> None:
    assert _run(layout, "claim", "WU-1") == 0
    path = layout.state_store().event_log.path
    with path.open("a", encoding="utf-8") as handle:
        handle.write("{not json\n")
    capsys.readouterr()

    assert _run(layout, "doctor-state", "--json") == 0
    result = _json_out(capsys)["result"]
    assert result["lines_kept"] == 1
    assert result["lines_removed"] == 1
    assert len(layout.state_store().event_log.read()) == 1


def test_config_dump_applies_log_level_override(layout: RepoLayout, capsys: pytest.CaptureFixture[str]) -> None:
    assert _run(layout, "config", "--json", "--log-level", "debug") == 0
    config = _json_out(capsys)
    assert config["logging"]["level"] == "DEBUG"
    assert config["paths"]["state_dir"] == ".lumenflow/state"


def test_unknown_wu_exits_rejected(layout: RepoLayout, capsys: pytest.CaptureFixture[str]) -> None:
    assert cli_entrypoint(["status", "WU-404", "--repo-root", str(layout.root)]) == ExitCode.REJECTED
    assert "[WU_NOT_FOUND]" in capsys.readouterr().err


def test_invalid_config_exits_config_error(layout: RepoLayout, capsys: pytest.CaptureFixture[str]) -> None:
    (layout.root / "lumenflow.toml").write_text("[recovery]\nmax_attempts = 0\n", encoding="utf-8")
    assert cli_entrypoint(["status", "--repo-root", str(layout.root)]) == ExitCode.CONFIG_ERROR
    assert "recovery.max_attempts" in capsys.readouterr().err


def test_argparse_errors_are_normalized(capsys: pytest.CaptureFixture[str]) -> None:
    assert cli_entrypoint(["no-such-command"]) == 2
    assert "invalid choice" in capsys.readouterr().err


def test_exception_routing_follows_the_cause_chain() -> None:
    try:
        try:
            raise PolicyError("refused")
        except PolicyError as inner:
            raise RuntimeError("wrapper") from inner
    except RuntimeError as outer:
        assert route_exception(outer) is ExitCode.REJECTED

    assert route_exception(SchemaError("bad")) is ExitCode.CONFIG_ERROR
    assert route_exception(KeyError("boom")) is ExitCode.INTERNAL_ERROR
