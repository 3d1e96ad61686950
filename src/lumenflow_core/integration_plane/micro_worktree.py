"""Single-purpose micro-worktree transactions against the shared main line.

Every change that must land on main goes through :func:`run_micro_worktree`:
branch ``tmp/<operation>/<wu-id>`` from fresh main, let the caller mutate files
inside a throwaway worktree, commit, fast-forward main, push. A rejected push
rolls local main back to where it started and raises a retryable error. The
worktree and temp branch are always removed, win or lose.
"""

from __future__ import annotations

import re
import shutil
import tempfile
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import structlog

from lumenflow_core.constants import MICRO_WORKTREE_BRANCH_PREFIX
from lumenflow_core.integration_plane.git_engine import GitEngine, GitEngineError, PushRejectedError

_OPERATION_RE = re.compile(r"[^a-z0-9-]+")


@dataclass(frozen=True, slots=True)
class MicroWorktreeChange:
    """What the callback changed: commit message plus repo-relative paths to stage."""

    commit_message: str
    files: tuple[str, ...]

    @classmethod
    def of(cls, commit_message: str, files: Sequence[str]) -> MicroWorktreeChange:
        return cls(commit_message=commit_message, files=tuple(files))


@dataclass(frozen=True, slots=True)
class MicroWorktreeResult:
    operation: str
    wu_id: str
    branch: str
    commit_sha: str | None
    main_head: str
    pushed: bool
    files: tuple[str, ...]

    @property
    def committed(self) -> bool:
        return self.commit_sha is not None

    def to_dict(self) -> dict[str, object]:
        return {
            "operation": self.operation,
            "wu_id": self.wu_id,
            "branch": self.branch,
            "commit_sha": self.commit_sha,
            "main_head": self.main_head,
            "pushed": self.pushed,
            "files": list(self.files),
        }


MicroWorktreeCallback = Callable[[Path], MicroWorktreeChange]


def micro_worktree_branch(operation: str, wu_id: str) -> str:
    slug = _OPERATION_RE.sub("-", operation.strip().lower()).strip("-") or "change"
    return f"{MICRO_WORKTREE_BRANCH_PREFIX}/{slug}/{wu_id.lower()}"


def run_micro_worktree(
    engine: GitEngine,
    *,
    operation: str,
    wu_id: str,
    execute: MicroWorktreeCallback,
    push: bool | None = None,
    logger: Any | None = None,
) -> MicroWorktreeResult:
    """Run ``execute`` inside a temp worktree and land its commit on main.

    ``push=None`` pushes whenever the repository has the configured remote;
    ``push=False`` (or no remote) is local-only mode.
    """

    log = (logger if logger is not None else structlog.get_logger(__name__)).bind(
        operation=operation, wu_id=wu_id
    )
    branch = micro_worktree_branch(operation, wu_id)
    _cleanup_orphan(engine, branch, log)

    has_remote = engine.has_remote()
    push_enabled = has_remote if push is None else (push and has_remote)
    if push and not has_remote:
        log.warning("micro_worktree_local_only", remote=engine.remote)
    if has_remote:
        engine.sync_main_with_remote()

    base = engine.rev_parse(engine.main_branch)
    engine.create_branch(branch, engine.main_branch)
    temp_root = Path(tempfile.mkdtemp(prefix="lumenflow-micro-"))
    worktree = temp_root / "wt"
    added = False
    log.info("micro_worktree_started", branch=branch, base=base)

    try:
        engine.add_worktree(worktree, branch)
        added = True
        change = execute(worktree)
        engine.stage(worktree, change.files)

        if not engine.has_staged_changes(worktree):
            log.info("micro_worktree_no_changes", branch=branch)
            return MicroWorktreeResult(
                operation=operation,
                wu_id=wu_id,
                branch=branch,
                commit_sha=None,
                main_head=base,
                pushed=False,
                files=change.files,
            )

        commit_sha = engine.commit(worktree, change.commit_message)
        merge = engine.merge_ff_only(branch, engine.main_branch)

        if push_enabled:
            try:
                engine.push(engine.main_branch)
            except PushRejectedError:
                engine.reset_branch(engine.main_branch, base)
                log.warning("micro_worktree_push_rejected", branch=branch, rolled_back_to=base)
                raise

        log.info(
            "micro_worktree_committed",
            branch=branch,
            commit=commit_sha,
            pushed=push_enabled,
            files=list(change.files),
        )
        return MicroWorktreeResult(
            operation=operation,
            wu_id=wu_id,
            branch=branch,
            commit_sha=commit_sha,
            main_head=merge.target_head,
            pushed=push_enabled,
            files=change.files,
        )
    finally:
        _teardown(engine, branch, worktree if added else None, temp_root, log)


def _cleanup_orphan(engine: GitEngine, branch: str, log: Any) -> None:
    """Remove a temp branch (and its worktree) left behind by an interrupted run."""

    for entry in engine.list_worktrees():
        if entry.branch == branch:
            log.warning("micro_worktree_orphan_removed", branch=branch, path=entry.path.as_posix())
            engine.remove_worktree(entry.path)
    if engine.delete_branch(branch):
        log.warning("micro_worktree_orphan_branch_deleted", branch=branch)


def _teardown(engine: GitEngine, branch: str, worktree: Path | None, temp_root: Path, log: Any) -> None:
    try:
        if worktree is not None:
            engine.remove_worktree(worktree)
        engine.delete_branch(branch)
    except GitEngineError as exc:
        log.warning("micro_worktree_cleanup_failed", branch=branch, error=str(exc))
    finally:
        shutil.rmtree(temp_root, ignore_errors=True)


__all__ = [
    "MicroWorktreeCallback",
    "MicroWorktreeChange",
    "MicroWorktreeResult",
    "micro_worktree_branch",
    "run_micro_worktree",
]
