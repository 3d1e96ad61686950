"""
lumenflow-core — consistency checker

File: src/lumenflow_core/consistency/detector.py

Purpose
- Compare the derived state from the event log, each WU document and the
  on-disk markers (stamps, lock flags, workspaces) and report divergence.

Functional requirements
- ``check(wu_id)`` reports violations for one WU; ``check_all()`` covers every
  WU known to the log, the documents or the stamps, plus orphaned workspaces
  and duplicate document ids.
- The event log is authoritative; violations describe how the other artifacts
  disagree with it.
- Results are deterministic: violations are ordered by WU id, then kind.

Non-functional requirements
- Read-only. Repairs live in ``consistency.repair``.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path
from typing import Any

import structlog

from lumenflow_core.constants import WORKTREES_DIR
from lumenflow_core.domain.ids import is_wu_id, validate_wu_id
from lumenflow_core.domain.models import WUDocument
from lumenflow_core.domain.state_machine import ACTIVE_STATUSES, WUStatus
from lumenflow_core.errors import ErrorCode, NotFoundError
from lumenflow_core.integration_plane.workspace_context import resolve_from_path
from lumenflow_core.layout import RepoLayout
from lumenflow_core.persistence.state_store import WUState


class ViolationType(StrEnum):
    STATUS_MISMATCH = "status-mismatch"
    MISSING_DOCUMENT = "missing-document"
    STALE_LOCK = "stale-lock"
    DUPLICATE_IDENTIFIER = "duplicate-identifier"
    ORPHANED_WORKSPACE = "orphaned-workspace"


class ViolationKind(StrEnum):
    LOG_DOCUMENT_MISMATCH = "log-document-mismatch"
    MISSING_CLAIM_EVENT = "missing-claim-event"
    DONE_WITHOUT_STAMP = "done-without-stamp"
    DONE_NOT_LOCKED = "done-not-locked"
    MISSING_DOCUMENT = "missing-document"
    STALE_STAMP = "stale-stamp"
    STALE_LOCK_FLAG = "stale-lock-flag"
    ZOMBIE_CLAIM = "zombie-claim"
    DUPLICATE_ID = "duplicate-id"
    ORPHAN_WORKTREE = "orphan-worktree"


KIND_TYPES: dict[ViolationKind, ViolationType] = {
    ViolationKind.LOG_DOCUMENT_MISMATCH: ViolationType.STATUS_MISMATCH,
    ViolationKind.MISSING_CLAIM_EVENT: ViolationType.STATUS_MISMATCH,
    ViolationKind.DONE_WITHOUT_STAMP: ViolationType.STATUS_MISMATCH,
    ViolationKind.ZOMBIE_CLAIM: ViolationType.STATUS_MISMATCH,
    ViolationKind.MISSING_DOCUMENT: ViolationType.MISSING_DOCUMENT,
    ViolationKind.DONE_NOT_LOCKED: ViolationType.STALE_LOCK,
    ViolationKind.STALE_STAMP: ViolationType.STALE_LOCK,
    ViolationKind.STALE_LOCK_FLAG: ViolationType.STALE_LOCK,
    ViolationKind.DUPLICATE_ID: ViolationType.DUPLICATE_IDENTIFIER,
    ViolationKind.ORPHAN_WORKTREE: ViolationType.ORPHANED_WORKSPACE,
}

# Kinds fixed by editing tracked files; these land through one micro-worktree commit.
FILE_REPAIR_KINDS: frozenset[ViolationKind] = frozenset(
    {
        ViolationKind.LOG_DOCUMENT_MISMATCH,
        ViolationKind.MISSING_CLAIM_EVENT,
        ViolationKind.DONE_WITHOUT_STAMP,
        ViolationKind.DONE_NOT_LOCKED,
        ViolationKind.STALE_STAMP,
        ViolationKind.STALE_LOCK_FLAG,
        ViolationKind.DUPLICATE_ID,
    }
)


@dataclass(frozen=True, slots=True)
class ConsistencyViolation:
    kind: ViolationKind
    description: str
    affected_id: str
    details: Mapping[str, str] = field(default_factory=dict)

    @property
    def type(self) -> ViolationType:
        return KIND_TYPES[self.kind]

    @property
    def auto_repairable(self) -> bool:
        return self.kind is not ViolationKind.MISSING_DOCUMENT

    def to_dict(self) -> dict[str, object]:
        return {
            "type": self.type.value,
            "kind": self.kind.value,
            "description": self.description,
            "affected_id": self.affected_id,
            "auto_repairable": self.auto_repairable,
            "details": dict(sorted(self.details.items())),
        }


@dataclass(frozen=True, slots=True)
class ConsistencyReport:
    wu_id: str | None
    violations: tuple[ConsistencyViolation, ...]

    @property
    def valid(self) -> bool:
        return not self.violations

    def by_kind(self, kind: ViolationKind) -> tuple[ConsistencyViolation, ...]:
        return tuple(violation for violation in self.violations if violation.kind is kind)

    def to_dict(self) -> dict[str, object]:
        return {
            "wu_id": self.wu_id,
            "valid": self.valid,
            "violations": [violation.to_dict() for violation in self.violations],
        }


def _sorted(violations: list[ConsistencyViolation]) -> tuple[ConsistencyViolation, ...]:
    return tuple(
        sorted(
            violations,
            key=lambda item: (item.affected_id, item.kind.value, item.details.get("path", "")),
        )
    )


class ConsistencyChecker:
    """Detects divergence between the event log, documents and markers."""

    def __init__(self, layout: RepoLayout, *, logger: Any | None = None) -> None:
        self._layout = layout
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    @property
    def layout(self) -> RepoLayout:
        return self._layout

    def check(self, wu_id: str) -> ConsistencyReport:
        validate_wu_id(wu_id)
        snapshot, by_id = self._load()
        documents = by_id.get(wu_id, [])
        stamped = self._layout.stamps().exists(wu_id)
        if wu_id not in snapshot and not documents and not stamped:
            raise NotFoundError(
                f"{wu_id} is unknown: no events, document or stamp",
                code=ErrorCode.WU_NOT_FOUND,
                expected=f"events, a document or a stamp for {wu_id}",
                found="nothing",
                remediation="Check the id, or run `lumenflow check` for the whole repository.",
            )
        violations = self._check_one(wu_id, snapshot.get(wu_id), documents, stamped)
        report = ConsistencyReport(wu_id=wu_id, violations=_sorted(violations))
        self._logger.info("consistency_checked", wu_id=wu_id, violations=len(report.violations))
        return report

    def check_all(self) -> ConsistencyReport:
        snapshot, by_id = self._load()
        stamped = set(self._layout.stamps().stamped_ids())
        known = sorted(set(snapshot) | set(by_id) | stamped)

        violations: list[ConsistencyViolation] = []
        for wu_id in known:
            violations.extend(self._check_one(wu_id, snapshot.get(wu_id), by_id.get(wu_id, []), wu_id in stamped))
        violations.extend(self._orphan_worktrees(snapshot))

        report = ConsistencyReport(wu_id=None, violations=_sorted(violations))
        self._logger.info("consistency_checked_all", wus=len(known), violations=len(report.violations))
        return report

    def _load(self) -> tuple[dict[str, WUState], dict[str, list[WUDocument]]]:
        snapshot = self._layout.state_store(logger=self._logger).load().get_all()
        by_id: dict[str, list[WUDocument]] = {}
        for document in self._layout.documents(logger=self._logger).list_documents():
            if document.id is not None and is_wu_id(document.id):
                by_id.setdefault(document.id, []).append(document)
        return snapshot, by_id

    def _check_one(
        self,
        wu_id: str,
        state: WUState | None,
        documents: list[WUDocument],
        stamped: bool,
    ) -> list[ConsistencyViolation]:
        violations: list[ConsistencyViolation] = []
        document = canonical_document(wu_id, documents)

        if len(documents) > 1:
            violations.extend(self._duplicates(wu_id, documents, document))

        if document is None and state is not None:
            violations.append(
                ConsistencyViolation(
                    kind=ViolationKind.MISSING_DOCUMENT,
                    description=f"{wu_id} has events but no document in {self._layout.relative(self._layout.wu_dir)}",
                    affected_id=wu_id,
                    details={"log_status": state.status.value},
                )
            )

        if document is not None and state is None:
            doc_status = document.status
            if doc_status is not None and doc_status is not WUStatus.READY:
                violations.append(
                    ConsistencyViolation(
                        kind=ViolationKind.MISSING_CLAIM_EVENT,
                        description=f"{wu_id} document says {doc_status.value} but the event log has no claim",
                        affected_id=wu_id,
                        details={"document_status": doc_status.value},
                    )
                )

        if document is not None and state is not None and document.status is not state.status:
            violations.append(
                ConsistencyViolation(
                    kind=ViolationKind.LOG_DOCUMENT_MISMATCH,
                    description=(
                        f"{wu_id} document status {document.status_raw!r} disagrees with "
                        f"event log status {state.status.value!r}"
                    ),
                    affected_id=wu_id,
                    details={
                        "log_status": state.status.value,
                        "document_status": str(document.status_raw),
                    },
                )
            )

        done = state is not None and state.status is WUStatus.DONE
        if done and not stamped:
            violations.append(
                ConsistencyViolation(
                    kind=ViolationKind.DONE_WITHOUT_STAMP,
                    description=f"{wu_id} is done in the event log but has no stamp",
                    affected_id=wu_id,
                )
            )
        if done and document is not None and not document.locked:
            violations.append(
                ConsistencyViolation(
                    kind=ViolationKind.DONE_NOT_LOCKED,
                    description=f"{wu_id} is done but its document is not locked",
                    affected_id=wu_id,
                )
            )
        if not done and stamped:
            violations.append(
                ConsistencyViolation(
                    kind=ViolationKind.STALE_STAMP,
                    description=f"{wu_id} has a stamp but is not done in the event log",
                    affected_id=wu_id,
                    details={"log_status": "none" if state is None else state.status.value},
                )
            )
        if not done and document is not None and document.locked:
            violations.append(
                ConsistencyViolation(
                    kind=ViolationKind.STALE_LOCK_FLAG,
                    description=f"{wu_id} document is locked but the WU is not done",
                    affected_id=wu_id,
                )
            )

        if (
            state is not None
            and state.status is WUStatus.IN_PROGRESS
            and not state.is_branch_pr
            and self._layout.find_workspace(wu_id, lane=state.lane, document=document) is None
        ):
            violations.append(
                ConsistencyViolation(
                    kind=ViolationKind.ZOMBIE_CLAIM,
                    description=f"{wu_id} is in_progress but its workspace does not exist",
                    affected_id=wu_id,
                    details={"lane": state.lane or ""},
                )
            )
        return violations

    def _duplicates(
        self,
        wu_id: str,
        documents: list[WUDocument],
        canonical: WUDocument | None,
    ) -> list[ConsistencyViolation]:
        found: list[ConsistencyViolation] = []
        for document in documents:
            if document is canonical or document.path is None:
                continue
            path = self._layout.relative(document.path)
            found.append(
                ConsistencyViolation(
                    kind=ViolationKind.DUPLICATE_ID,
                    description=f"{path} reuses id {wu_id}",
                    affected_id=wu_id,
                    details={"path": path},
                )
            )
        return found

    def _orphan_worktrees(self, snapshot: Mapping[str, WUState]) -> list[ConsistencyViolation]:
        root = self._layout.worktrees_dir
        if not root.is_dir():
            return []
        found: list[ConsistencyViolation] = []
        for entry in sorted(root.iterdir()):
            if not entry.is_dir():
                continue
            context = resolve_from_path(f"{WORKTREES_DIR}/{entry.name}")
            if context is None:
                continue
            state = snapshot.get(context.wu_id)
            if state is not None and state.status in ACTIVE_STATUSES:
                continue
            status = "unknown" if state is None else state.status.value
            found.append(
                ConsistencyViolation(
                    kind=ViolationKind.ORPHAN_WORKTREE,
                    description=f"workspace {self._layout.relative(entry)} belongs to {context.wu_id} ({status})",
                    affected_id=context.wu_id,
                    details={"path": self._layout.relative(entry), "log_status": status},
                )
            )
        return found


def canonical_document(wu_id: str, documents: list[WUDocument]) -> WUDocument | None:
    """The document named ``<id>.yaml`` wins; otherwise the first in filename order."""

    for document in documents:
        if document.path is not None and document.path.stem == wu_id:
            return document
    return documents[0] if documents else None


def workspace_path(layout: RepoLayout, violation: ConsistencyViolation) -> Path | None:
    raw = violation.details.get("path")
    if not raw:
        return None
    candidate = Path(raw)
    return candidate if candidate.is_absolute() else layout.root / candidate


__all__ = [
    "FILE_REPAIR_KINDS",
    "KIND_TYPES",
    "ConsistencyChecker",
    "ConsistencyReport",
    "ConsistencyViolation",
    "ViolationKind",
    "ViolationType",
    "canonical_document",
    "workspace_path",
]
