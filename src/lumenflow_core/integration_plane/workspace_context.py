"""
lumenflow-core — workspace context resolver

File: src/lumenflow_core/integration_plane/workspace_context.py

Purpose
- Derive ``{wu_id, lane, workspace_path}`` from where an actor is working.

Functional requirements
- Path derivation matches ``.../worktrees/<lane-kebab>-wu-<n>`` anywhere in the
  path and needs no git call; it works from nested directories, relative paths,
  trailing slashes and Windows separators.
- Branch derivation matches ``lane/<lane-kebab>/wu-<n>`` and needs exactly one
  branch query.
- Path derivation is tried first.
- ``assert_write_allowed`` blocks only on protected branches when nothing
  resolves; any other branch, detached HEAD included, is allowed.

Non-functional requirements
- Resolver functions take an explicit :class:`RepoContext`; they never read the
  process working directory or environment.
"""

from __future__ import annotations

import re
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path, PurePosixPath
from typing import Final

from lumenflow_core.constants import (
    LANE_BRANCH_PREFIX,
    PROTECTED_BRANCHES,
    WORKTREES_DIR,
)
from lumenflow_core.domain.ids import format_wu_id
from lumenflow_core.errors import ErrorCode, PolicyError

BranchReader = Callable[[Path], "str | None"]

_PATH_RE: Final[re.Pattern[str]] = re.compile(
    r"(?:^|/)" + re.escape(str(WORKTREES_DIR)) + r"/([a-z0-9-]+?)-wu-(\d+)(?:/|$)"
)
_BRANCH_RE: Final[re.Pattern[str]] = re.compile(
    r"^" + re.escape(LANE_BRANCH_PREFIX) + r"/([a-z0-9-]+)/wu-(\d+)$"
)
_NON_SLUG_RE: Final[re.Pattern[str]] = re.compile(r"[^a-z0-9]+")
_UNSET: Final = object()


class ContextSource(StrEnum):
    PATH = "path"
    BRANCH = "branch"


@dataclass(frozen=True, slots=True)
class WorkspaceContext:
    """A resolved WU workspace."""

    wu_id: str
    lane: str
    workspace_path: str | None
    source: ContextSource

    def to_dict(self) -> dict[str, object]:
        return {
            "wu_id": self.wu_id,
            "lane": self.lane,
            "workspace_path": self.workspace_path,
            "source": self.source.value,
        }


@dataclass(slots=True)
class RepoContext:
    """Explicit working directory, repository root and (lazily) the current branch.

    ``branch`` may be given up front; otherwise ``branch_reader`` is called at
    most once, on first access.
    """

    cwd: Path
    repo_root: Path | None = None
    branch_reader: BranchReader | None = None
    _branch: object = field(default=_UNSET, repr=False)
    _branch_queries: int = field(default=0, repr=False)

    @classmethod
    def with_branch(cls, cwd: Path | str, branch: str | None, *, repo_root: Path | None = None) -> RepoContext:
        return cls(cwd=Path(cwd), repo_root=repo_root, _branch=branch)

    @property
    def branch(self) -> str | None:
        if self._branch is _UNSET:
            self._branch_queries += 1
            self._branch = self.branch_reader(self.cwd) if self.branch_reader is not None else None
        return self._branch  # type: ignore[return-value]

    @property
    def branch_queries(self) -> int:
        return self._branch_queries


class WriteBlockedError(PolicyError):
    """A write was attempted on a protected branch outside any WU workspace."""

    default_code = ErrorCode.WRITE_BLOCKED

    def __init__(self, operation: str, branch: str) -> None:
        super().__init__(
            f"BLOCKED: Operation '{operation}' requires a worktree",
            expected="a claimed WU worktree or lane branch",
            found=f"branch '{branch}' with no WU context",
            remediation=(
                "1. Claim a WU to create its worktree:\n"
                "     lumenflow claim <WU-ID> --lane \"<Lane>\" --title \"<Title>\"\n"
                "2. Move into the worktree:\n"
                f"     cd {WORKTREES_DIR}/<lane-kebab>-wu-<n>\n"
                f"3. Retry: {operation}"
            ),
            details={"operation": operation, "branch": branch},
        )
        self.operation = operation
        self.branch = branch


def lane_to_kebab(lane: str) -> str:
    """``"Framework: Core"`` -> ``"framework-core"``."""

    return _NON_SLUG_RE.sub("-", lane.strip().lower()).strip("-")


def default_worktree_path(lane: str, wu_id: str, *, worktrees_dir: PurePosixPath = WORKTREES_DIR) -> PurePosixPath:
    return worktrees_dir / f"{lane_to_kebab(lane)}-{wu_id.lower()}"


def default_lane_branch(lane: str, wu_id: str) -> str:
    return f"{LANE_BRANCH_PREFIX}/{lane_to_kebab(lane)}/{wu_id.lower()}"


def resolve_from_path(path: str | Path) -> WorkspaceContext | None:
    text = str(path).replace("\\", "/")
    match = _PATH_RE.search(text)
    if match is None:
        return None
    workspace = text[: match.end(2)]
    return WorkspaceContext(
        wu_id=format_wu_id(int(match.group(2))),
        lane=match.group(1),
        workspace_path=workspace,
        source=ContextSource.PATH,
    )


def resolve_from_branch(branch: str | None) -> WorkspaceContext | None:
    if not branch:
        return None
    match = _BRANCH_RE.match(branch.strip())
    if match is None:
        return None
    return WorkspaceContext(
        wu_id=format_wu_id(int(match.group(2))),
        lane=match.group(1),
        workspace_path=None,
        source=ContextSource.BRANCH,
    )


def resolve_workspace_context(ctx: RepoContext) -> WorkspaceContext | None:
    """Path first, then branch; ``None`` when neither names a WU."""

    resolved = resolve_from_path(ctx.cwd)
    if resolved is not None:
        return resolved
    return resolve_from_branch(ctx.branch)


def assert_write_allowed(ctx: RepoContext, operation: str = "this operation") -> WorkspaceContext | None:
    """Return the resolved context, ``None`` on a permitted non-WU branch, or raise."""

    resolved = resolve_workspace_context(ctx)
    if resolved is not None:
        return resolved
    branch = ctx.branch
    if branch is not None and branch in PROTECTED_BRANCHES:
        raise WriteBlockedError(operation, branch)
    return None


__all__ = [
    "BranchReader",
    "ContextSource",
    "RepoContext",
    "WorkspaceContext",
    "WriteBlockedError",
    "assert_write_allowed",
    "default_lane_branch",
    "default_worktree_path",
    "lane_to_kebab",
    "resolve_from_branch",
    "resolve_from_path",
    "resolve_workspace_context",
]
