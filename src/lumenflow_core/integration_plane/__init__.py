"""Git-facing plane: git engine, workspace context and micro-worktree transactions."""

from lumenflow_core.integration_plane.git_engine import (
    CommandResult,
    GitCommandError,
    GitEngine,
    GitEngineError,
    MergeResult,
    PushRejectedError,
    WorktreeEntry,
)
from lumenflow_core.integration_plane.micro_worktree import (
    MicroWorktreeChange,
    MicroWorktreeResult,
    micro_worktree_branch,
    run_micro_worktree,
)
from lumenflow_core.integration_plane.workspace_context import (
    ContextSource,
    RepoContext,
    WorkspaceContext,
    WriteBlockedError,
    assert_write_allowed,
    default_lane_branch,
    default_worktree_path,
    lane_to_kebab,
    resolve_from_branch,
    resolve_from_path,
    resolve_workspace_context,
)

__all__ = [
    "CommandResult",
    "ContextSource",
    "GitCommandError",
    "GitEngine",
    "GitEngineError",
    "MergeResult",
    "MicroWorktreeChange",
    "MicroWorktreeResult",
    "PushRejectedError",
    "RepoContext",
    "WorkspaceContext",
    "WorktreeEntry",
    "WriteBlockedError",
    "assert_write_allowed",
    "default_lane_branch",
    "default_worktree_path",
    "lane_to_kebab",
    "micro_worktree_branch",
    "resolve_from_branch",
    "resolve_from_path",
    "resolve_workspace_context",
]
