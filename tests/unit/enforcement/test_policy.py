"""Unit tests for the pure write-decision policy."""

from __future__ import annotations

from pathlib import Path, PurePosixPath

import pytest

from lumenflow_core.enforcement.policy import (
    BranchPrClaim,
    DecisionRule,
    EnforcementState,
    WriteRequest,
    decide,
    is_allowlisted,
    resolve_target,
)

ROOT = Path("/repo")


def _state(**overrides: object) -> EnforcementState:
    fields: dict[str, object] = {"repo_root": ROOT, "has_metadata": True}
    fields.update(overrides)
    return EnforcementState(**fields)  # type: ignore[arg-type]


def _rule(file_path: str | None, state: EnforcementState, *, tool: str = "Write", branch: str | None = None) -> DecisionRule:
    return decide(WriteRequest(tool_name=tool, file_path=file_path), state, branch=branch).rule


def test_rules_apply_in_order() -> None:
    with_workspace = _state(workspaces=("framework-core-wu-1",))

    assert _rule("src/a.py", _state(), tool="Read") is DecisionRule.NON_WRITE_TOOL
    assert _rule("src/a.py", _state(has_metadata=False)) is DecisionRule.NOT_CONFIGURED
    assert _rule("../elsewhere/a.py", with_workspace) is DecisionRule.OUTSIDE_REPOSITORY
    assert _rule("src/a.py", with_workspace, branch="feature/x") is DecisionRule.NON_PROTECTED_BRANCH
    assert _rule("worktrees/framework-core-wu-1/a.py", with_workspace) is DecisionRule.INSIDE_WORKSPACE
    assert _rule("plan/notes.md", with_workspace) is DecisionRule.WORKSPACES_ACTIVE
    assert _rule("plan/notes.md", _state()) is DecisionRule.ALLOWLISTED
    assert _rule("src/a.py", _state()) is DecisionRule.FAIL_CLOSED


def test_protected_branch_does_not_short_circuit() -> None:
    assert _rule("src/a.py", _state(), branch="master") is DecisionRule.FAIL_CLOSED
    assert _rule("src/a.py", _state(), branch="HEAD") is DecisionRule.NON_PROTECTED_BRANCH


@pytest.mark.parametrize(
    ("claim_branch", "branch", "bypass"),
    [
        ("lane/framework-core/wu-4", None, True),
        ("lane/framework-core/wu-4", "main", False),
        (None, "main", True),
    ],
)
def test_branch_pr_bypass_matches_recorded_branch(claim_branch: str | None, branch: str | None, bypass: bool) -> None:
    state = _state(branch_pr_claims=(BranchPrClaim(wu_id="WU-4", branch=claim_branch),))
    assert (_rule("src/a.py", state, branch=branch) is DecisionRule.BRANCH_PR_BYPASS) is bypass


def test_missing_file_path_is_the_repository_root() -> None:
    assert resolve_target(None, ROOT) == ROOT
    assert resolve_target("  ", ROOT) == ROOT
    assert _rule(None, _state()) is DecisionRule.FAIL_CLOSED


def test_targets_are_normalized_lexically() -> None:
    assert resolve_target("worktrees/../src/a.py", ROOT) == Path("/repo/src/a.py")
    assert resolve_target("docs\\wu\\a.yaml", ROOT) == Path("/repo/docs/wu/a.yaml")
    assert resolve_target("/other/a.py", ROOT) == Path("/other/a.py")


def test_allowlist_matches_prefix_and_directory_itself() -> None:
    allowlist = ("plan/", ".lumenflow/")
    assert is_allowlisted(PurePosixPath("plan/a.md"), allowlist)
    assert is_allowlisted(PurePosixPath("plan"), allowlist)
    assert not is_allowlisted(PurePosixPath("planning/a.md"), allowlist)


def test_custom_worktrees_dir_and_allowlist() -> None:
    state = _state(worktrees_dir=PurePosixPath("trees"), allowlist=("notes/",))
    assert _rule("trees/docs-wu-3/a.md", state) is DecisionRule.INSIDE_WORKSPACE
    assert _rule("notes/a.md", state) is DecisionRule.ALLOWLISTED
    assert _rule("plan/a.md", state) is DecisionRule.FAIL_CLOSED


def test_blocked_decisions_carry_a_suggestion() -> None:
    blocked = decide(WriteRequest("Edit", "README.md"), _state(workspaces=("docs-wu-2",)))
    assert not blocked.allowed
    assert blocked.to_dict() == {
        "allowed": False,
        "rule": "workspaces-active",
        "reason": "cannot write to main repo while worktrees exist (docs-wu-2)",
        "suggestion": "cd to your worktree: cd worktrees/<lane>-wu-<id>/",
    }
    assert "suggestion" not in decide(WriteRequest("Read"), _state()).to_dict()
