"""Duplicate WU id remediation.

Two documents claiming the same id are grouped; the document named
``<id>.yaml`` (else the first by filename) keeps the id and every other one is
remapped to the next unused id. Documents, stamps and events all count as
"used". Applying a remap rewrites the document's ``id`` field, renames the
file, carries its stamp and moves the events attributed to it.

Events are attributed by lane: an id's events belong to the duplicate from a
``create``/``claim`` in the duplicate's lane until the next ``create``/``claim``
in another lane. When both documents share a lane the events stay with the
canonical id.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import structlog

from lumenflow_core.consistency.detector import canonical_document
from lumenflow_core.domain.events import WUEvent, WUEventType
from lumenflow_core.domain.ids import is_wu_id, next_available_id
from lumenflow_core.domain.models import WUDocument
from lumenflow_core.domain.state_machine import WUStatus
from lumenflow_core.errors import ConsistencyError, ErrorCode
from lumenflow_core.layout import RepoLayout
from lumenflow_core.utils.fs import atomic_write


@dataclass(frozen=True, slots=True)
class DuplicateGroup:
    wu_id: str
    canonical: Path
    duplicates: tuple[Path, ...]

    def to_dict(self) -> dict[str, object]:
        return {
            "wu_id": self.wu_id,
            "canonical": self.canonical.as_posix(),
            "duplicates": [path.as_posix() for path in self.duplicates],
        }


@dataclass(frozen=True, slots=True)
class IdRemap:
    old_id: str
    new_id: str
    old_path: Path
    new_path: Path
    lane: str | None
    stamp_moved: bool = False
    events_remapped: int = 0

    def to_dict(self) -> dict[str, object]:
        return {
            "old_id": self.old_id,
            "new_id": self.new_id,
            "old_path": self.old_path.as_posix(),
            "new_path": self.new_path.as_posix(),
            "lane": self.lane,
            "stamp_moved": self.stamp_moved,
            "events_remapped": self.events_remapped,
        }


@dataclass(frozen=True, slots=True)
class DuplicateReport:
    groups: tuple[DuplicateGroup, ...]
    remaps: tuple[IdRemap, ...]
    applied: bool

    @property
    def touched_files(self) -> tuple[Path, ...]:
        files: list[Path] = []
        for remap in self.remaps:
            files.extend((remap.old_path, remap.new_path))
        return tuple(files)

    def to_dict(self) -> dict[str, object]:
        return {
            "applied": self.applied,
            "groups": [group.to_dict() for group in self.groups],
            "remaps": [remap.to_dict() for remap in self.remaps],
        }


def find_duplicate_groups(documents: Iterable[WUDocument]) -> list[tuple[WUDocument, list[WUDocument]]]:
    """``[(canonical, [duplicates...])]`` ordered by id."""

    by_id: dict[str, list[WUDocument]] = {}
    for document in documents:
        if document.id is not None and is_wu_id(document.id) and document.path is not None:
            by_id.setdefault(document.id, []).append(document)

    groups: list[tuple[WUDocument, list[WUDocument]]] = []
    for wu_id in sorted(by_id):
        members = by_id[wu_id]
        if len(members) < 2:
            continue
        canonical = canonical_document(wu_id, members)
        if canonical is None:
            continue
        groups.append((canonical, [member for member in members if member is not canonical]))
    return groups


def collect_used_ids(layout: RepoLayout, documents: Iterable[WUDocument], events: Iterable[WUEvent]) -> set[str]:
    used: set[str] = set()
    for document in documents:
        if document.id is not None:
            used.add(document.id)
        if document.path is not None:
            used.add(document.path.stem)
    used.update(layout.stamps().stamped_ids())
    used.update(event.wu_id for event in events)
    return used


def remediate_duplicates(
    layout: RepoLayout,
    *,
    apply: bool = False,
    wu_ids: Iterable[str] | None = None,
    logger: Any | None = None,
) -> DuplicateReport:
    """Report (``apply=False``) or fix duplicate ids under ``layout``."""

    log = logger if logger is not None else structlog.get_logger(__name__)
    repository = layout.documents(logger=log)
    event_log = layout.state_store(logger=log).event_log
    documents = repository.list_documents()
    events = event_log.read()
    wanted = None if wu_ids is None else set(wu_ids)

    groups = [
        (canonical, duplicates)
        for canonical, duplicates in find_duplicate_groups(documents)
        if wanted is None or canonical.original_id in wanted
    ]
    used = collect_used_ids(layout, documents, events)

    planned: list[tuple[WUDocument, WUDocument, IdRemap]] = []
    for canonical, duplicates in groups:
        for duplicate in duplicates:
            new_id = next_available_id(used)
            used.add(new_id)
            planned.append(
                (
                    canonical,
                    duplicate,
                    IdRemap(
                        old_id=_require_id(duplicate),
                        new_id=new_id,
                        old_path=_require_path(duplicate),
                        new_path=repository.path_for(new_id),
                        lane=duplicate.lane,
                    ),
                )
            )

    report_groups = tuple(
        DuplicateGroup(
            wu_id=canonical.id or "",
            canonical=_require_path(canonical),
            duplicates=tuple(_require_path(item) for item in duplicates),
        )
        for canonical, duplicates in groups
    )

    if not apply:
        for remap in (item[2] for item in planned):
            log.info("duplicate_id_planned", old_id=remap.old_id, new_id=remap.new_id, path=str(remap.old_path))
        return DuplicateReport(groups=report_groups, remaps=tuple(item[2] for item in planned), applied=False)

    applied: list[IdRemap] = []
    for canonical, duplicate, remap in planned:
        events, moved = _remap_events(events, remap, canonical_lane=canonical.lane)
        stamp_moved = _carry_stamp(layout, canonical, duplicate, remap)

        updated = duplicate.copy()
        updated.data["id"] = remap.new_id
        if updated.worktree_path and remap.old_id.lower() in updated.worktree_path:
            updated.data["worktree_path"] = updated.worktree_path.replace(remap.old_id.lower(), remap.new_id.lower())
        repository.save(updated, path=remap.new_path)
        if remap.old_path != remap.new_path:
            remap.old_path.unlink()

        result = IdRemap(
            old_id=remap.old_id,
            new_id=remap.new_id,
            old_path=remap.old_path,
            new_path=remap.new_path,
            lane=remap.lane,
            stamp_moved=stamp_moved,
            events_remapped=moved,
        )
        applied.append(result)
        log.info(
            "duplicate_id_remapped",
            old_id=result.old_id,
            new_id=result.new_id,
            path=str(result.new_path),
            events_remapped=moved,
            stamp_moved=stamp_moved,
        )

    if any(item.events_remapped for item in applied):
        event_log.rewrite(events)
    return DuplicateReport(groups=report_groups, remaps=tuple(applied), applied=True)


def _require_path(document: WUDocument) -> Path:
    if document.path is None:
        raise ConsistencyError(f"{document.id} has no backing file", code=ErrorCode.DUPLICATE_ID)
    return document.path


def _require_id(document: WUDocument) -> str:
    if document.id is None:
        raise ConsistencyError(f"{_require_path(document)} has no id", code=ErrorCode.DUPLICATE_ID)
    return document.id


def _remap_events(events: list[WUEvent], remap: IdRemap, *, canonical_lane: str | None) -> tuple[list[WUEvent], int]:
    lane = (remap.lane or "").strip().lower()
    other = (canonical_lane or "").strip().lower()
    if not lane or lane == other:
        return events, 0

    owned = False
    moved = 0
    result: list[WUEvent] = []
    for event in events:
        if event.wu_id != remap.old_id:
            result.append(event)
            continue
        if event.event_type in (WUEventType.CREATE, WUEventType.CLAIM):
            owned = (event.lane or "").strip().lower() == lane
        if owned:
            result.append(event.with_wu_id(remap.new_id))
            moved += 1
        else:
            result.append(event)
    return result, moved


def _carry_stamp(layout: RepoLayout, canonical: WUDocument, duplicate: WUDocument, remap: IdRemap) -> bool:
    stamps = layout.stamps()
    if not stamps.exists(remap.old_id) or duplicate.status is not WUStatus.DONE:
        return False
    old_stamp = stamps.path_for(remap.old_id)
    body = old_stamp.read_text(encoding="utf-8").replace(remap.old_id, remap.new_id)
    atomic_write(stamps.path_for(remap.new_id), body)
    if canonical.status is not WUStatus.DONE:
        old_stamp.unlink()
    return True


__all__ = [
    "DuplicateGroup",
    "DuplicateReport",
    "IdRemap",
    "collect_used_ids",
    "find_duplicate_groups",
    "remediate_duplicates",
]
