"""
lumenflow-core — repair engine

File: src/lumenflow_core/consistency/repair.py

Purpose
- Apply fixes for the violations in a :class:`ConsistencyReport`.

Functional requirements
- The event log is authoritative: document status, lock flags and stamps are
  reconciled to it, never the other way round.
- A missing claim event is synthesized from the claimed document; that WU is
  then checked again so repairs planned against the old log are not applied.
- File repairs land on main as one micro-worktree commit, and each zombie
  release as its own, or in the current checkout when ``in_place`` is
  requested or no git engine is configured. ``commit_sha`` is the last commit
  the repair landed on main.
- A rejected push aborts the whole repair and re-raises the retryable error.
- Orphan worktree removal runs directly through git; zombie claims go to
  bounded recovery.
- Partial success is reported: every failure is listed in ``errors``.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

import structlog

from lumenflow_core.consistency.detector import (
    FILE_REPAIR_KINDS,
    ConsistencyChecker,
    ConsistencyReport,
    ConsistencyViolation,
    ViolationKind,
    workspace_path,
)
from lumenflow_core.consistency.duplicates import remediate_duplicates
from lumenflow_core.consistency.recovery import RecoveryError, RecoveryEscalationError, ZombieRecovery
from lumenflow_core.domain.events import EventValidationError, WUEvent, WUEventType, parse_timestamp
from lumenflow_core.domain.models import ClaimMode
from lumenflow_core.domain.state_machine import WUStatus
from lumenflow_core.errors import ConsistencyError, LumenFlowError
from lumenflow_core.integration_plane.git_engine import GitEngine, GitEngineError
from lumenflow_core.integration_plane.micro_worktree import MicroWorktreeChange, run_micro_worktree
from lumenflow_core.layout import RepoLayout
from lumenflow_core.observability.logging import correlation_scope
from lumenflow_core.persistence.state_store import Clock


@dataclass(frozen=True, slots=True)
class RepairResult:
    success: bool
    repaired: tuple[str, ...]
    errors: tuple[str, ...]
    commit_sha: str | None = None

    def to_dict(self) -> dict[str, object]:
        return {
            "success": self.success,
            "repaired": list(self.repaired),
            "errors": list(self.errors),
            "commit_sha": self.commit_sha,
        }


@dataclass(slots=True)
class _FileRepairOutcome:
    repaired: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    touched: list[str] = field(default_factory=list)

    def touch(self, path: str) -> None:
        if path not in self.touched:
            self.touched.append(path)


def _utc_now() -> datetime:
    return datetime.now(tz=UTC)


class RepairEngine:
    def __init__(
        self,
        layout: RepoLayout,
        *,
        engine: GitEngine | None = None,
        clock: Clock | None = None,
        recovery: ZombieRecovery | None = None,
        logger: Any | None = None,
    ) -> None:
        self._layout = layout
        self._engine = engine
        self._clock = clock if clock is not None else _utc_now
        self._logger = logger if logger is not None else structlog.get_logger(__name__)
        self._recovery = (
            recovery
            if recovery is not None
            else ZombieRecovery(layout, engine=engine, clock=self._clock, logger=self._logger)
        )

    def repair(self, report: ConsistencyReport, *, in_place: bool = False) -> RepairResult:
        """Dispatch every violation in ``report``; see the module docstring for ordering."""

        with correlation_scope(wu_id=report.wu_id, operation="repair"):
            file_violations = [v for v in report.violations if v.kind in FILE_REPAIR_KINDS]
            repaired: list[str] = []
            errors: list[str] = []
            commit_sha: str | None = None

            if file_violations:
                outcome, commit_sha = self._run_file_repairs(report, file_violations, in_place=in_place)
                repaired.extend(outcome.repaired)
                errors.extend(outcome.errors)

            for violation in report.violations:
                if violation.kind is ViolationKind.ORPHAN_WORKTREE:
                    self._remove_orphan(violation, repaired, errors)
                elif violation.kind is ViolationKind.ZOMBIE_CLAIM:
                    commit_sha = self._recover_zombie(violation, repaired, errors, in_place=in_place) or commit_sha
                elif violation.kind is ViolationKind.MISSING_DOCUMENT:
                    errors.append(
                        f"{violation.affected_id}: missing-document: cannot be synthesized; "
                        f"restore {self._layout.relative(self._layout.wu_dir)}/{violation.affected_id}.yaml"
                    )

            result = RepairResult(
                success=not errors,
                repaired=tuple(repaired),
                errors=tuple(errors),
                commit_sha=commit_sha,
            )
            self._logger.info(
                "repair_finished",
                success=result.success,
                repaired=len(result.repaired),
                errors=len(result.errors),
                commit=commit_sha,
            )
            return result

    def _run_file_repairs(
        self,
        report: ConsistencyReport,
        violations: list[ConsistencyViolation],
        *,
        in_place: bool,
    ) -> tuple[_FileRepairOutcome, str | None]:
        if in_place or self._engine is None:
            return self._apply_file_repairs(self._layout, violations), None

        captured: list[_FileRepairOutcome] = []

        def execute(worktree: Any) -> MicroWorktreeChange:
            outcome = self._apply_file_repairs(self._layout.rebase(worktree), violations)
            captured.append(outcome)
            target = report.wu_id or "repository"
            summary = ", ".join(sorted({v.kind.value for v in violations}))
            return MicroWorktreeChange.of(f"fix(consistency): repair {target} ({summary})", outcome.touched)

        result = run_micro_worktree(
            self._engine,
            operation="repair",
            wu_id=report.wu_id or "all",
            execute=execute,
            push=None if self._layout.settings.push else False,
            logger=self._logger,
        )
        return captured[0], result.commit_sha

    def _apply_file_repairs(self, layout: RepoLayout, violations: Iterable[ConsistencyViolation]) -> _FileRepairOutcome:
        outcome = _FileRepairOutcome()
        pending = list(violations)
        duplicate_ids = list(
            dict.fromkeys(v.affected_id for v in pending if v.kind is ViolationKind.DUPLICATE_ID)
        )

        # Once events are synthesized for a WU, its other violations are detected again.
        resynced: list[str] = []
        for violation in pending:
            if violation.kind is ViolationKind.MISSING_CLAIM_EVENT and self._apply_and_record(
                layout, violation, outcome
            ):
                resynced.append(violation.affected_id)
        remaining = [
            v
            for v in pending
            if v.kind not in (ViolationKind.DUPLICATE_ID, ViolationKind.MISSING_CLAIM_EVENT)
            and v.affected_id not in resynced
        ]
        if resynced:
            checker = ConsistencyChecker(layout, logger=self._logger)
            for wu_id in resynced:
                remaining.extend(
                    v
                    for v in checker.check(wu_id).violations
                    if v.kind in FILE_REPAIR_KINDS
                    and v.kind not in (ViolationKind.DUPLICATE_ID, ViolationKind.MISSING_CLAIM_EVENT)
                )

        for violation in remaining:
            self._apply_and_record(layout, violation, outcome)

        if duplicate_ids:
            try:
                remapped = remediate_duplicates(layout, apply=True, wu_ids=duplicate_ids, logger=self._logger)
            except (LumenFlowError, OSError) as exc:
                outcome.errors.extend(f"{wu_id}: duplicate-id: {exc}" for wu_id in duplicate_ids)
            else:
                for remap in remapped.remaps:
                    outcome.touch(layout.relative(remap.old_path))
                    outcome.touch(layout.relative(remap.new_path))
                    if remap.stamp_moved:
                        outcome.touch(layout.relative(layout.stamps().path_for(remap.old_id)))
                        outcome.touch(layout.relative(layout.stamps().path_for(remap.new_id)))
                    if remap.events_remapped:
                        outcome.touch(layout.relative(layout.state_store().event_log.path))
                    outcome.repaired.append(f"{remap.old_id}: duplicate-id: {remap.old_path.name} -> {remap.new_id}")
        return outcome

    def _apply_and_record(
        self,
        layout: RepoLayout,
        violation: ConsistencyViolation,
        outcome: _FileRepairOutcome,
    ) -> bool:
        label = f"{violation.affected_id}: {violation.kind.value}"
        try:
            message = self._apply_one(layout, violation, outcome)
        except (LumenFlowError, OSError) as exc:
            outcome.errors.append(f"{label}: {exc}")
            return False
        outcome.repaired.append(f"{label}: {message}")
        return True

    def _apply_one(self, layout: RepoLayout, violation: ConsistencyViolation, outcome: _FileRepairOutcome) -> str:
        wu_id = violation.affected_id
        repository = layout.documents(logger=self._logger)
        stamps = layout.stamps()

        if violation.kind is ViolationKind.DONE_WITHOUT_STAMP:
            state = layout.state_store(logger=self._logger).require(wu_id)
            path = stamps.create(wu_id, state.title, now=self._clock())
            if path is not None:
                outcome.touch(layout.relative(path))
            return "stamp created"

        if violation.kind is ViolationKind.STALE_STAMP:
            path = stamps.path_for(wu_id)
            if stamps.remove(wu_id):
                outcome.touch(layout.relative(path))
            return "stale stamp removed"

        if violation.kind is ViolationKind.MISSING_CLAIM_EVENT:
            return self._synthesize_claim(layout, wu_id, outcome)

        document = repository.load(wu_id)
        if violation.kind is ViolationKind.LOG_DOCUMENT_MISMATCH:
            state = layout.state_store(logger=self._logger).require(wu_id)
            document.set_status(state.status)
            if state.status is WUStatus.DONE:
                document.data["locked"] = True
                document.data.setdefault("completed_at", state.last_event_at.date().isoformat())
            message = f"document status set to {state.status.value}"
        elif violation.kind is ViolationKind.DONE_NOT_LOCKED:
            document.data["locked"] = True
            message = "document locked"
        elif violation.kind is ViolationKind.STALE_LOCK_FLAG:
            document.data["locked"] = False
            message = "stale lock flag cleared"
        else:
            raise ConsistencyError(f"no file repair for {violation.kind.value}")

        outcome.touch(layout.relative(repository.save(document)))
        return message

    def _synthesize_claim(self, layout: RepoLayout, wu_id: str, outcome: _FileRepairOutcome) -> str:
        document = layout.documents(logger=self._logger).load(wu_id)
        if document.lane is None or document.title is None:
            raise ConsistencyError(f"{wu_id} document lacks lane or title; cannot synthesize a claim event")
        claimed_at = _document_time(document.claimed_at) or self._clock()
        mode = document.claimed_mode or ClaimMode.WORKSPACE
        extra: dict[str, Any] = {"claimed_mode": mode.value, "synthesized": True}
        if document.claimed_branch:
            extra["claimed_branch"] = document.claimed_branch

        events = [
            WUEvent(
                event_type=WUEventType.CLAIM,
                wu_id=wu_id,
                timestamp=claimed_at,
                lane=document.lane,
                title=document.title,
                extra=extra,
            )
        ]
        follow_up = {WUStatus.BLOCKED: WUEventType.BLOCK, WUStatus.DONE: WUEventType.COMPLETE}.get(
            document.status or WUStatus.IN_PROGRESS
        )
        if follow_up is not None:
            completed_at = _document_time(document.completed_at) if follow_up is WUEventType.COMPLETE else None
            events.append(
                WUEvent(
                    event_type=follow_up,
                    wu_id=wu_id,
                    timestamp=max(completed_at or self._clock(), claimed_at),
                    reason="synthesized from document" if follow_up is WUEventType.BLOCK else None,
                )
            )

        event_log = layout.state_store(logger=self._logger).event_log
        for event in events:
            event_log.append(event)
        outcome.touch(layout.relative(event_log.path))
        return f"synthesized {', '.join(event.event_type.value for event in events)} event(s)"

    def _remove_orphan(self, violation: ConsistencyViolation, repaired: list[str], errors: list[str]) -> None:
        path = workspace_path(self._layout, violation)
        label = f"{violation.affected_id}: orphan-worktree"
        if path is None or self._engine is None:
            errors.append(f"{label}: needs a git engine to remove {violation.details.get('path', '?')}")
            return
        registered = {entry.path for entry in self._engine.list_worktrees()}
        if path.resolve() not in registered:
            errors.append(f"{label}: {self._layout.relative(path)} is not a registered git worktree; remove it by hand")
            return
        try:
            self._engine.remove_worktree(path)
        except GitEngineError as exc:
            errors.append(f"{label}: {exc}")
            return
        repaired.append(f"{label}: removed {self._layout.relative(path)}")

    def _recover_zombie(
        self,
        violation: ConsistencyViolation,
        repaired: list[str],
        errors: list[str],
        *,
        in_place: bool,
    ) -> str | None:
        label = f"{violation.affected_id}: zombie-claim"
        try:
            outcome = self._recovery.recover(violation.affected_id, in_place=in_place)
        except (RecoveryEscalationError, RecoveryError) as exc:
            errors.append(f"{label}: {exc.message}")
            return None
        if outcome.released:
            repaired.append(f"{label}: released (attempt {outcome.attempt})")
        else:
            repaired.append(f"{label}: {outcome.message}")
        return outcome.commit_sha


def _document_time(value: str | None) -> datetime | None:
    if value is None:
        return None
    try:
        return parse_timestamp(value if "T" in value else f"{value}T00:00:00Z")
    except EventValidationError:
        return None


__all__ = ["RepairEngine", "RepairResult"]
