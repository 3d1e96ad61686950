"""Enforcement surfaces: thin adapters that gather inputs and call :func:`decide`.

The in-process surface never looks at the branch. The subprocess and remote
surfaces read it, so on a non-protected branch (detached HEAD included) they
allow writes the in-process surface would block.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from pathlib import Path
from typing import Any

import structlog

from lumenflow_core.config.schema import Settings
from lumenflow_core.domain.state_machine import WUStatus
from lumenflow_core.enforcement.policy import (
    BranchPrClaim,
    Decision,
    DecisionRule,
    EnforcementState,
    WriteRequest,
    decide,
)
from lumenflow_core.integration_plane.git_engine import GitEngine
from lumenflow_core.persistence.event_log import EventLogCorruptError
from lumenflow_core.persistence.state_store import WUStateStore

BranchLookup = Callable[[Path], "str | None"]


def collect_enforcement_state(
    repo_root: Path | str,
    settings: Settings | None = None,
    *,
    logger: Any | None = None,
) -> EnforcementState:
    """Read metadata presence, workspace directories and branch-pr claims from disk."""

    log = logger if logger is not None else structlog.get_logger(__name__)
    cfg = settings if settings is not None else Settings.defaults()
    root = Path(repo_root).resolve()

    state_dir = cfg.resolve(root, cfg.state_dir)
    metadata_root = cfg.resolve(root, cfg.state_dir.parent) if cfg.state_dir.parent.parts else state_dir
    has_metadata = metadata_root.is_dir()

    worktrees_root = cfg.resolve(root, cfg.worktrees_dir)
    workspaces: tuple[str, ...] = ()
    if worktrees_root.is_dir():
        workspaces = tuple(sorted(entry.name for entry in worktrees_root.iterdir() if entry.is_dir()))

    claims: list[BranchPrClaim] = []
    if state_dir.is_dir():
        store = WUStateStore(state_dir, logger=log)
        try:
            snapshot = store.load().get_all()
        except EventLogCorruptError as exc:
            # No bypass can be proven from a corrupt log; the decision stays fail-closed.
            log.warning("enforcement_state_unreadable", error=exc.message)
            snapshot = {}
        for wu_id, state in sorted(snapshot.items()):
            if state.status is WUStatus.IN_PROGRESS and state.is_branch_pr:
                claims.append(BranchPrClaim(wu_id=wu_id, branch=state.claimed_branch))

    return EnforcementState(
        repo_root=root,
        has_metadata=has_metadata,
        workspaces=workspaces,
        branch_pr_claims=tuple(claims),
        allowlist=cfg.allowlist,
        worktrees_dir=cfg.worktrees_dir,
    )


def git_branch_lookup(settings: Settings | None = None) -> BranchLookup:
    cfg = settings if settings is not None else Settings.defaults()

    def lookup(repo_root: Path) -> str | None:
        return GitEngine(repo_root, main_branch=cfg.main_branch, remote=cfg.remote).current_branch()

    return lookup


def check_in_process(
    tool_name: str,
    file_path: str | None,
    *,
    repo_root: Path | str,
    settings: Settings | None = None,
    state: EnforcementState | None = None,
) -> Decision:
    current = state if state is not None else collect_enforcement_state(repo_root, settings)
    return decide(WriteRequest(tool_name=tool_name, file_path=file_path), current)


def parse_tool_payload(payload: object) -> WriteRequest | None:
    """``{tool_name, tool_input: {file_path}}`` -> request, ``None`` when malformed."""

    if not isinstance(payload, Mapping):
        return None
    tool_name = payload.get("tool_name")
    if not isinstance(tool_name, str) or not tool_name.strip():
        return None
    tool_input = payload.get("tool_input")
    file_path: str | None = None
    if isinstance(tool_input, Mapping):
        raw = tool_input.get("file_path")
        if isinstance(raw, str) and raw.strip():
            file_path = raw
    elif tool_input is not None:
        return None
    return WriteRequest(tool_name=tool_name.strip(), file_path=file_path)


def check_subprocess(
    payload: object,
    *,
    repo_root: Path | str,
    settings: Settings | None = None,
    branch_lookup: BranchLookup | None = None,
    state: EnforcementState | None = None,
) -> Decision:
    """Decision for a hook payload; malformed payloads fail open."""

    request = parse_tool_payload(payload)
    if request is None:
        return Decision(allowed=True, rule=DecisionRule.MALFORMED_INPUT, reason="graceful: malformed hook input")
    root = Path(repo_root).resolve()
    current = state if state is not None else collect_enforcement_state(root, settings)
    lookup = branch_lookup if branch_lookup is not None else git_branch_lookup(settings)
    return decide(request, current, branch=lookup(root))


__all__ = [
    "BranchLookup",
    "check_in_process",
    "check_subprocess",
    "collect_enforcement_state",
    "git_branch_lookup",
    "parse_tool_payload",
]
