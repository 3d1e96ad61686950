"""Stable constants shared across coordination planes."""

from __future__ import annotations

from pathlib import PurePosixPath
from typing import Final

# Git branch names.
DEFAULT_MAIN_BRANCH: Final[str] = "main"
PROTECTED_BRANCHES: Final[frozenset[str]] = frozenset({"main", "master"})
DEFAULT_REMOTE: Final[str] = "origin"
LANE_BRANCH_PREFIX: Final[str] = "lane"
MICRO_WORKTREE_BRANCH_PREFIX: Final[str] = "tmp"
DETACHED_HEAD: Final[str] = "HEAD"

# Work unit identifiers.
WU_ID_PREFIX: Final[str] = "WU"

# Default repository paths (relative to the repository root unless overridden by config).
LUMENFLOW_DIR: Final[PurePosixPath] = PurePosixPath(".lumenflow")
STATE_DIR: Final[PurePosixPath] = LUMENFLOW_DIR / "state"
STAMPS_DIR: Final[PurePosixPath] = LUMENFLOW_DIR / "stamps"
ARCHIVE_DIR: Final[PurePosixPath] = LUMENFLOW_DIR / "archive"
RECOVERY_DIR: Final[PurePosixPath] = LUMENFLOW_DIR / "recovery"
WU_DOCS_DIR: Final[PurePosixPath] = PurePosixPath("docs/04-operations/tasks/wu")
WORKTREES_DIR: Final[PurePosixPath] = PurePosixPath("worktrees")
LANE_CONFIG_FILE: Final[PurePosixPath] = PurePosixPath(".lumenflow.config.yaml")
LANE_INFERENCE_FILE: Final[PurePosixPath] = PurePosixPath(".lumenflow.lane-inference.yaml")

EVENTS_FILE_NAME: Final[str] = "wu-events.jsonl"
STAMP_SUFFIX: Final[str] = ".done"
RECOVERY_SUFFIX: Final[str] = ".recovery"
WU_DOC_SUFFIX: Final[str] = ".yaml"
ARCHIVE_FILE_PREFIX: Final[str] = "wu-events-"

# Paths that stay writable on the main checkout when no workspace exists.
MAIN_WRITE_ALLOWLIST: Final[tuple[str, ...]] = (
    f"{WU_DOCS_DIR}/",
    f"{LUMENFLOW_DIR}/",
    ".claude/",
    "plan/",
)

# Lifecycle defaults.
DEFAULT_WIP_LIMIT: Final[int] = 1
DEFAULT_ARCHIVE_AFTER: Final[str] = "90d"
MAX_RECOVERY_ATTEMPTS: Final[int] = 4

__all__ = [
    "ARCHIVE_DIR",
    "ARCHIVE_FILE_PREFIX",
    "DEFAULT_ARCHIVE_AFTER",
    "DEFAULT_MAIN_BRANCH",
    "DEFAULT_REMOTE",
    "DEFAULT_WIP_LIMIT",
    "DETACHED_HEAD",
    "EVENTS_FILE_NAME",
    "LANE_BRANCH_PREFIX",
    "LANE_CONFIG_FILE",
    "LANE_INFERENCE_FILE",
    "LUMENFLOW_DIR",
    "MAIN_WRITE_ALLOWLIST",
    "MAX_RECOVERY_ATTEMPTS",
    "MICRO_WORKTREE_BRANCH_PREFIX",
    "PROTECTED_BRANCHES",
    "RECOVERY_DIR",
    "RECOVERY_SUFFIX",
    "STAMPS_DIR",
    "STAMP_SUFFIX",
    "STATE_DIR",
    "WORKTREES_DIR",
    "WU_DOCS_DIR",
    "WU_DOC_SUFFIX",
    "WU_ID_PREFIX",
]
