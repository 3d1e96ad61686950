"""
lumenflow-core — write enforcement policy

File: src/lumenflow_core/enforcement/policy.py

Purpose
- The single allow/block decision shared by every enforcement surface.

Decision order (first match wins)
1. Non-write tools are allowed.
2. No coordination metadata in the repository: allow (graceful degradation).
3. Target outside the repository root: allow.
4. A known branch that is not protected (feature branch, detached HEAD): allow.
   Only surfaces that can see the branch pass one.
5. An active branch-pr claim whose recorded branch matches: allow.
6. Target inside the worktrees directory: allow.
7. Any workspace exists: block every main-checkout write, allowlist ignored.
8. Allowlisted coordination paths: allow.
9. Otherwise block (fail-closed).

Non-functional requirements
- Pure: no filesystem or git access. Callers gather :class:`EnforcementState`.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path, PurePosixPath
from typing import Final

from lumenflow_core.constants import MAIN_WRITE_ALLOWLIST, PROTECTED_BRANCHES, WORKTREES_DIR

WRITE_TOOLS: Final[frozenset[str]] = frozenset({"Write", "Edit", "MultiEdit", "NotebookEdit"})


class DecisionRule(StrEnum):
    NON_WRITE_TOOL = "non-write-tool"
    NOT_CONFIGURED = "not-configured"
    OUTSIDE_REPOSITORY = "outside-repository"
    NON_PROTECTED_BRANCH = "non-protected-branch"
    BRANCH_PR_BYPASS = "branch-pr-bypass"
    INSIDE_WORKSPACE = "inside-workspace"
    WORKSPACES_ACTIVE = "workspaces-active"
    ALLOWLISTED = "allowlisted"
    FAIL_CLOSED = "fail-closed"
    MALFORMED_INPUT = "malformed-input"


@dataclass(frozen=True, slots=True)
class WriteRequest:
    tool_name: str
    file_path: str | None = None


@dataclass(frozen=True, slots=True)
class BranchPrClaim:
    wu_id: str
    branch: str | None


@dataclass(frozen=True, slots=True)
class EnforcementState:
    """Snapshot of on-disk coordination state relevant to write decisions."""

    repo_root: Path
    has_metadata: bool
    workspaces: tuple[str, ...] = ()
    branch_pr_claims: tuple[BranchPrClaim, ...] = ()
    allowlist: tuple[str, ...] = MAIN_WRITE_ALLOWLIST
    worktrees_dir: PurePosixPath = field(default=WORKTREES_DIR)

    @property
    def has_workspaces(self) -> bool:
        return bool(self.workspaces)


@dataclass(frozen=True, slots=True)
class Decision:
    allowed: bool
    rule: DecisionRule
    reason: str
    suggestion: str | None = None

    def to_dict(self) -> dict[str, object]:
        payload: dict[str, object] = {
            "allowed": self.allowed,
            "rule": self.rule.value,
            "reason": self.reason,
        }
        if self.suggestion is not None:
            payload["suggestion"] = self.suggestion
        return payload


def _allow(rule: DecisionRule, reason: str) -> Decision:
    return Decision(allowed=True, rule=rule, reason=reason)


def resolve_target(file_path: str | None, repo_root: Path) -> Path:
    """Absolute target for ``file_path``; a missing path means the repository root."""

    if file_path is None or not file_path.strip():
        return repo_root
    candidate = Path(file_path.strip().replace("\\", "/"))
    if not candidate.is_absolute():
        candidate = repo_root / candidate
    return Path(_normalize(candidate))


def _normalize(path: Path) -> str:
    # Lexical normalization; the target need not exist yet.
    parts: list[str] = []
    for part in path.parts:
        if part == "..":
            if len(parts) > 1:
                parts.pop()
        elif part != ".":
            parts.append(part)
    return str(Path(*parts)) if parts else str(path)


def _relative(target: Path, root: Path) -> PurePosixPath | None:
    try:
        return PurePosixPath(target.relative_to(root).as_posix())
    except ValueError:
        return None


def is_allowlisted(relative: PurePosixPath, allowlist: Iterable[str]) -> bool:
    text = relative.as_posix()
    return any(text.startswith(prefix) or f"{text}/" == prefix for prefix in allowlist)


def _bypass_claim(claims: tuple[BranchPrClaim, ...], branch: str | None) -> BranchPrClaim | None:
    for claim in claims:
        if branch is None or claim.branch is None or claim.branch == branch:
            return claim
    return None


def decide(request: WriteRequest, state: EnforcementState, *, branch: str | None = None) -> Decision:
    """Decide whether ``request`` may write; ``branch=None`` means the branch is not consulted."""

    if request.tool_name not in WRITE_TOOLS:
        return _allow(DecisionRule.NON_WRITE_TOOL, f"{request.tool_name} is not a write tool")

    if not state.has_metadata:
        return _allow(DecisionRule.NOT_CONFIGURED, "graceful: LumenFlow not configured")

    root = Path(_normalize(state.repo_root))
    target = resolve_target(request.file_path, root)
    relative = _relative(target, root)
    if relative is None:
        return _allow(DecisionRule.OUTSIDE_REPOSITORY, "path is outside repository")

    if branch is not None and branch not in PROTECTED_BRANCHES:
        return _allow(DecisionRule.NON_PROTECTED_BRANCH, f"branch '{branch}' is not protected")

    claim = _bypass_claim(state.branch_pr_claims, branch)
    if claim is not None:
        return _allow(DecisionRule.BRANCH_PR_BYPASS, f"branch-pr: active claim {claim.wu_id} permits main writes")

    worktrees = state.worktrees_dir.as_posix().rstrip("/")
    if relative.as_posix().startswith(f"{worktrees}/"):
        return _allow(DecisionRule.INSIDE_WORKSPACE, "path is inside worktree")

    if state.has_workspaces:
        active = ", ".join(state.workspaces[:5])
        return Decision(
            allowed=False,
            rule=DecisionRule.WORKSPACES_ACTIVE,
            reason=f"cannot write to main repo while worktrees exist ({active})",
            suggestion=f"cd to your worktree: cd {worktrees}/<lane>-wu-<id>/",
        )

    if is_allowlisted(relative, state.allowlist):
        return _allow(DecisionRule.ALLOWLISTED, "allowlist: path is in safe scaffold/state area")

    return Decision(
        allowed=False,
        rule=DecisionRule.FAIL_CLOSED,
        reason="no active claim context on main (fail-closed)",
        suggestion=(
            'Claim a WU first: lumenflow claim <WU-ID> --lane "<Lane>" --title "<Title>"\n'
            "Or claim in branch-pr mode: lumenflow claim <WU-ID> --lane \"<Lane>\" --title \"<Title>\" --mode branch-pr"
        ),
    )


__all__ = [
    "BranchPrClaim",
    "Decision",
    "DecisionRule",
    "EnforcementState",
    "WRITE_TOOLS",
    "WriteRequest",
    "decide",
    "is_allowlisted",
    "resolve_target",
]
