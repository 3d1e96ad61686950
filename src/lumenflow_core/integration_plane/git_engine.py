"""Deterministic Git integration helpers for WU coordination workflows."""

from __future__ import annotations

import os
import re
import shutil
import subprocess
import tempfile
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any

import structlog

from lumenflow_core.constants import DEFAULT_MAIN_BRANCH, DEFAULT_REMOTE, DETACHED_HEAD
from lumenflow_core.errors import ErrorCode, LumenFlowIOError

if TYPE_CHECKING:
    from collections.abc import Iterator, Mapping, Sequence

_BRANCH_NAME_RE = re.compile(r"^[A-Za-z0-9._/-]+$")
_PUSH_REJECTED_MARKERS = ("non-fast-forward", "[rejected]", "fetch first", "stale info")


class GitEngineError(LumenFlowIOError):
    """Base error for git engine failures."""

    default_code = ErrorCode.GIT_ERROR


class GitCommandError(GitEngineError):
    """Raised when a git subprocess command exits non-zero."""

    def __init__(
        self,
        *,
        command: Sequence[str],
        returncode: int,
        stdout: str,
        stderr: str,
    ) -> None:
        self.command = tuple(command)
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr
        message = f"git command failed ({returncode}): {' '.join(command)}"
        if stderr.strip():
            message = f"{message}: {stderr.strip()}"
        super().__init__(message, details={"returncode": returncode})


class PushRejectedError(GitEngineError):
    """The remote refused a non-fast-forward push; the caller may retry from fresh main."""

    default_code = ErrorCode.PUSH_REJECTED
    retryable = True


@dataclass(frozen=True, slots=True)
class CommandResult:
    """Normalized subprocess result for deterministic git wrapper behavior."""

    command: tuple[str, ...]
    cwd: str
    returncode: int
    stdout: str
    stderr: str


@dataclass(frozen=True, slots=True)
class WorktreeEntry:
    path: Path
    branch: str | None
    head: str | None


@dataclass(frozen=True, slots=True)
class MergeResult:
    """Result for ff-only merge."""

    source: str
    target: str
    target_head: str


class GitEngine:
    """Deterministic wrapper around the git CLI."""

    def __init__(
        self,
        repo_path: Path | str,
        *,
        main_branch: str = DEFAULT_MAIN_BRANCH,
        remote: str = DEFAULT_REMOTE,
        env_overrides: Mapping[str, str] | None = None,
        logger: Any | None = None,
    ) -> None:
        self.repo_path = Path(repo_path).resolve()
        self.main_branch = main_branch
        self.remote = remote
        self._env_overrides = dict(env_overrides or {})
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    def init_or_open(self) -> bool:
        """Open a repository or initialize it with an initial commit on main; return ``created``."""
        self.repo_path.mkdir(parents=True, exist_ok=True)
        created = not (self.repo_path / ".git").exists()

        if created:
            self._run_git(["init", "--initial-branch", self.main_branch], cwd=self.repo_path)
        else:
            self._run_git(["rev-parse", "--git-dir"], cwd=self.repo_path)

        self._ensure_local_identity()

        if self._run_git(["rev-parse", "--verify", "HEAD"], check=False).returncode != 0:
            self._run_git(["symbolic-ref", "HEAD", f"refs/heads/{self.main_branch}"])
            self._run_git(["commit", "--allow-empty", "--no-gpg-sign", "-m", "Initialize repository"])

        return created

    def current_branch(self, cwd: Path | str | None = None) -> str | None:
        """Return the checked-out branch, ``"HEAD"`` when detached, ``None`` outside git."""
        result = self._run_git(
            ["rev-parse", "--abbrev-ref", "HEAD"],
            cwd=Path(cwd) if cwd is not None else None,
            check=False,
        )
        if result.returncode != 0:
            return None
        branch = result.stdout.strip()
        return branch or DETACHED_HEAD

    def toplevel(self, cwd: Path | str | None = None) -> Path | None:
        result = self._run_git(
            ["rev-parse", "--show-toplevel"],
            cwd=Path(cwd) if cwd is not None else None,
            check=False,
        )
        if result.returncode != 0 or not result.stdout.strip():
            return None
        return Path(result.stdout.strip()).resolve()

    def has_remote(self) -> bool:
        return self._run_git(["remote", "get-url", self.remote], check=False).returncode == 0

    def branch_exists(self, branch: str) -> bool:
        ref = f"refs/heads/{branch}"
        return self._run_git(["show-ref", "--verify", "--quiet", ref], check=False).returncode == 0

    def create_branch(self, branch: str, base: str) -> None:
        self._sanitize_branch(branch)
        if self.branch_exists(branch):
            raise GitEngineError(f"Branch already exists: {branch}")
        self._run_git(["branch", branch, base])

    def delete_branch(self, branch: str) -> bool:
        """Force-delete a local branch; return ``False`` when it did not exist."""
        if not self.branch_exists(branch):
            return False
        self._run_git(["branch", "-D", branch])
        return True

    def add_worktree(self, worktree_path: Path | str, branch: str) -> Path:
        self._require_branch(branch)
        path = Path(worktree_path)
        self._run_git(["worktree", "add", "--force", str(path), branch])
        return path

    def remove_worktree(self, worktree_path: Path | str, *, force: bool = True) -> None:
        """Remove a worktree path and prune stale entries; ``force=False`` refuses dirty worktrees."""
        path = Path(worktree_path)
        self._run_git(["worktree", "remove", *(["--force"] if force else []), str(path)])
        self._run_git(["worktree", "prune"], check=False)

    def list_worktrees(self) -> tuple[WorktreeEntry, ...]:
        output = self._run_git(["worktree", "list", "--porcelain"], check=False).stdout
        entries: list[WorktreeEntry] = []
        path: Path | None = None
        branch: str | None = None
        head: str | None = None
        for line in [*output.splitlines(), ""]:
            if not line:
                if path is not None:
                    entries.append(WorktreeEntry(path=path, branch=branch, head=head))
                path, branch, head = None, None, None
                continue
            key, _, value = line.partition(" ")
            value = value.strip()
            if key == "worktree":
                path = Path(value).resolve(strict=False)
            elif key == "branch":
                branch = value.removeprefix("refs/heads/")
            elif key == "HEAD":
                head = value
        return tuple(entries)

    def fetch(self, branch: str | None = None) -> None:
        target = branch if branch is not None else self.main_branch
        self._run_git(["fetch", "--quiet", self.remote, target])

    def sync_main_with_remote(self) -> str:
        """Fetch and fast-forward local main to ``<remote>/<main>``; return the new main head."""
        self.fetch(self.main_branch)
        remote_ref = f"{self.remote}/{self.main_branch}"
        with self._temporary_worktree(self.main_branch) as worktree:
            self._run_git(["merge", "--ff-only", "--quiet", remote_ref], cwd=worktree)
        return self.rev_parse(self.main_branch)

    def stage(self, worktree_path: Path | str, files: Sequence[str]) -> None:
        """Stage additions, modifications and deletions for ``files``."""
        if not files:
            return
        self._run_git(["add", "-A", "--", *files], cwd=Path(worktree_path))

    def has_staged_changes(self, worktree_path: Path | str) -> bool:
        output = self._run_git(["diff", "--cached", "--name-only"], cwd=Path(worktree_path)).stdout
        return bool(output.strip())

    def commit(self, worktree_path: Path | str, message: str) -> str:
        title = message.strip()
        if not title:
            raise GitEngineError("Commit message cannot be empty.")
        self._ensure_local_identity()
        worktree = Path(worktree_path)
        self._run_git(["commit", "--no-gpg-sign", "--quiet", "-m", title], cwd=worktree)
        return self._run_git(["rev-parse", "HEAD"], cwd=worktree).stdout.strip()

    def merge_ff_only(self, source_branch: str, target_branch: str | None = None) -> MergeResult:
        """Fast-forward ``target_branch`` (main by default) to ``source_branch``."""
        target = target_branch if target_branch is not None else self.main_branch
        self._require_branch(source_branch)
        self._require_branch(target)

        with self._temporary_worktree(target) as temp_worktree:
            self._run_git(["merge", "--ff-only", "--quiet", source_branch], cwd=temp_worktree)

        return MergeResult(source=source_branch, target=target, target_head=self.rev_parse(target))

    def push(self, branch: str | None = None) -> None:
        """Push ``branch`` to the remote; a non-fast-forward rejection raises ``PushRejectedError``."""
        target = branch if branch is not None else self.main_branch
        result = self._run_git(["push", "--quiet", self.remote, target], check=False)
        if result.returncode == 0:
            return
        lowered = result.stderr.lower()
        if any(marker in lowered for marker in _PUSH_REJECTED_MARKERS):
            raise PushRejectedError(
                f"push of {target} to {self.remote} rejected (non-fast-forward)",
                expected=f"{self.remote}/{target} to be an ancestor of local {target}",
                found=result.stderr.strip() or "rejected",
                remediation="Another change landed first. Re-run the operation to retry from fresh main.",
            )
        raise GitCommandError(
            command=("git", "push", self.remote, target),
            returncode=result.returncode,
            stdout=result.stdout,
            stderr=result.stderr,
        )

    def reset_branch(self, branch: str, commit_sha: str) -> None:
        """Move ``branch`` back to ``commit_sha`` without discarding unrelated local edits."""
        existing = self._existing_worktree_for_branch(branch)
        if existing is not None:
            self._run_git(["reset", "--keep", commit_sha], cwd=existing)
            return
        self._run_git(["update-ref", f"refs/heads/{branch}", commit_sha])

    def rev_parse(self, ref: str) -> str:
        return self._run_git(["rev-parse", ref]).stdout.strip()

    def _ensure_local_identity(self) -> None:
        if self._run_git(["config", "--get", "user.name"], check=False).returncode != 0:
            self._run_git(["config", "--local", "user.name", "lumenflow"])
        if self._run_git(["config", "--get", "user.email"], check=False).returncode != 0:
            self._run_git(["config", "--local", "user.email", "lumenflow@example.invalid"])

    def _require_branch(self, branch: str) -> None:
        if not self.branch_exists(branch):
            raise GitEngineError(f"Branch does not exist: {branch}")

    def _sanitize_branch(self, branch: str) -> None:
        if not branch or branch.startswith("-") or ".." in branch or not _BRANCH_NAME_RE.fullmatch(branch):
            raise GitEngineError(f"Unsafe branch name: {branch!r}")

    @contextmanager
    def _temporary_worktree(self, branch: str) -> Iterator[Path]:
        existing = self._existing_worktree_for_branch(branch)
        if existing is not None:
            yield existing
            return

        temp_path = Path(tempfile.mkdtemp(prefix="lumenflow-git-engine-"))
        added = False
        try:
            self._run_git(["worktree", "add", "--force", str(temp_path), branch])
            added = True
            yield temp_path
        finally:
            if added:
                self._run_git(["worktree", "remove", "--force", str(temp_path)], check=False)
                self._run_git(["worktree", "prune"], check=False)
            shutil.rmtree(temp_path, ignore_errors=True)

    def _existing_worktree_for_branch(self, branch: str) -> Path | None:
        for entry in self.list_worktrees():
            if entry.branch == branch:
                return entry.path
        return None

    def _run_git(
        self,
        args: Sequence[str],
        *,
        cwd: Path | None = None,
        check: bool = True,
        input_text: str | None = None,
    ) -> CommandResult:
        command = ("git", *args)
        run_cwd = (cwd if cwd is not None else self.repo_path).resolve()
        env = os.environ.copy()
        env["GIT_TERMINAL_PROMPT"] = "0"
        env.setdefault("GIT_CONFIG_NOSYSTEM", "1")
        env.update(self._env_overrides)

        try:
            completed = subprocess.run(
                command,
                cwd=run_cwd,
                env=env,
                text=True,
                capture_output=True,
                input=input_text,
                check=False,
            )
        except OSError as exc:
            raise GitEngineError(f"unable to run git in {run_cwd}: {exc}") from exc

        result = CommandResult(
            command=command,
            cwd=run_cwd.as_posix(),
            returncode=completed.returncode,
            stdout=completed.stdout,
            stderr=completed.stderr,
        )
        self._logger.debug("git_command", args=list(args), cwd=result.cwd, returncode=result.returncode)

        if check and result.returncode != 0:
            raise GitCommandError(
                command=result.command,
                returncode=result.returncode,
                stdout=result.stdout,
                stderr=result.stderr,
            )

        return result


__all__ = [
    "CommandResult",
    "GitCommandError",
    "GitEngine",
    "GitEngineError",
    "MergeResult",
    "PushRejectedError",
    "WorktreeEntry",
]
