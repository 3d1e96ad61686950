"""
lumenflow-core — integration tests for repairs committed through git

File: tests/integration/test_repair_flow.py

Purpose
- Repairs without ``in_place`` land as one micro-worktree commit on main.
- A registered worktree left behind by a finished WU is removed through git.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from lumenflow_core.consistency.detector import ConsistencyChecker, ViolationKind
from lumenflow_core.consistency.repair import RepairEngine
from lumenflow_core.domain.events import WUEventType
from lumenflow_core.integration_plane.git_engine import GitEngine
from lumenflow_core.layout import RepoLayout
from tests import at, isolate_git_env, make_event, read_document, run_git, write_document, write_events

if TYPE_CHECKING:
    from pathlib import Path

pytestmark = pytest.mark.integration


@pytest.fixture
def repo(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> tuple[RepoLayout, GitEngine]:
    isolate_git_env(tmp_path, monkeypatch)
    engine = GitEngine(tmp_path / "repo")
    engine.init_or_open()
    layout = RepoLayout.at(engine.repo_path)

    write_events(
        layout,
        [make_event(WUEventType.CLAIM, "WU-2", when=at(0)), make_event(WUEventType.COMPLETE, "WU-2", when=at(60))],
    )
    write_document(layout, "WU-2", status="in_progress")
    run_git(engine.repo_path, "add", "-A")
    run_git(engine.repo_path, "commit", "--quiet", "-m", "seed WU-2")

    run_git(
        engine.repo_path,
        "worktree",
        "add",
        "--quiet",
        "-b",
        "lane/framework-core/wu-2",
        "worktrees/framework-core-wu-2",
    )
    return layout, engine


def test_repair_commits_through_micro_worktree_and_removes_orphan(repo: tuple[RepoLayout, GitEngine]) -> None:
    layout, engine = repo
    report = ConsistencyChecker(layout).check_all()
    assert {violation.kind for violation in report.violations} == {
        ViolationKind.DONE_NOT_LOCKED,
        ViolationKind.DONE_WITHOUT_STAMP,
        ViolationKind.LOG_DOCUMENT_MISMATCH,
        ViolationKind.ORPHAN_WORKTREE,
    }
    head_before = engine.rev_parse("main")

    result = RepairEngine(layout, engine=engine).repair(report)

    assert result.success, result.errors
    assert result.commit_sha is not None
    assert engine.rev_parse("main") == result.commit_sha != head_before
    assert "WU-2: orphan-worktree: removed worktrees/framework-core-wu-2" in result.repaired

    committed = run_git(engine.repo_path, "show", "--name-only", "--format=%s", "main").stdout.splitlines()
    assert committed[0].startswith("fix(consistency): repair repository")
    assert set(filter(None, committed[1:])) == {
        ".lumenflow/stamps/WU-2.done",
        "docs/04-operations/tasks/wu/WU-2.yaml",
    }

    document = read_document(layout.wu_dir / "WU-2.yaml")
    assert (document["status"], document["locked"]) == ("done", True)
    assert layout.stamps().exists("WU-2")
    assert not (layout.worktrees_dir / "framework-core-wu-2").exists()
    assert [entry.path for entry in engine.list_worktrees()] == [engine.repo_path]
    assert ConsistencyChecker(layout).check_all().valid


def test_unregistered_orphan_directory_is_left_for_a_human(repo: tuple[RepoLayout, GitEngine]) -> None:
    layout, engine = repo
    stray = layout.worktrees_dir / "docs-wu-12"
    stray.mkdir(parents=True)

    report = ConsistencyChecker(layout).check_all()
    result = RepairEngine(layout, engine=engine).repair(report)

    assert not result.success
    assert result.errors == (
        "WU-12: orphan-worktree: worktrees/docs-wu-12 is not a registered git worktree; remove it by hand",
    )
    assert stray.is_dir()
