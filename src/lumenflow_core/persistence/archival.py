"""
lumenflow-core — event log archival.

File: src/lumenflow_core/persistence/archival.py

Purpose
- Move the complete history of old, done WUs out of the live event log into
  monthly archive buckets.

Functional requirements
- A WU is archived only when its derived status is ``done`` and its most
  recent event is older than ``archive_after``.
- All events of one WU move together into the bucket named by the UTC
  year-month of its most recent event; buckets are appended, never replaced.
- Non-terminal WUs are retained regardless of age.
- Dry runs report the same breakdown and touch nothing.

Non-functional requirements
- Read everything, decide, then write: buckets are appended before the live
  log is atomically rewritten.
"""

from __future__ import annotations

import re
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any, Final

import structlog

from lumenflow_core.constants import ARCHIVE_FILE_PREFIX, DEFAULT_ARCHIVE_AFTER, EVENTS_FILE_NAME
from lumenflow_core.domain.events import WUEvent
from lumenflow_core.domain.state_machine import TERMINAL_STATUSES
from lumenflow_core.errors import ErrorCode, SchemaError
from lumenflow_core.persistence.event_log import EventLog
from lumenflow_core.persistence.state_store import fold_events
from lumenflow_core.utils.fs import append_lines

_DURATION_RE: Final[re.Pattern[str]] = re.compile(r"^(\d+(?:\.\d+)?)\s*(ms|s|m|h|d|w)$", re.IGNORECASE)

_UNIT_SECONDS: Final[dict[str, float]] = {
    "ms": 0.001,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
    "d": 86400.0,
    "w": 604800.0,
}


class InvalidDurationError(SchemaError):
    default_code = ErrorCode.INVALID_DURATION


@dataclass(frozen=True, slots=True)
class ArchivalBreakdown:
    archived_older_than_threshold: int = 0
    retained_active_wu: int = 0
    retained_within_threshold: int = 0

    def to_dict(self) -> dict[str, int]:
        return {
            "archived_older_than_threshold": self.archived_older_than_threshold,
            "retained_active_wu": self.retained_active_wu,
            "retained_within_threshold": self.retained_within_threshold,
        }


@dataclass(frozen=True, slots=True)
class ArchiveResult:
    archived_wu_ids: tuple[str, ...]
    retained_wu_ids: tuple[str, ...]
    archived_event_count: int
    retained_event_count: int
    bytes_archived: int
    breakdown: ArchivalBreakdown
    buckets: tuple[str, ...]
    dry_run: bool

    def to_dict(self) -> dict[str, object]:
        return {
            "archived_wu_ids": list(self.archived_wu_ids),
            "retained_wu_ids": list(self.retained_wu_ids),
            "archived_event_count": self.archived_event_count,
            "retained_event_count": self.retained_event_count,
            "bytes_archived": self.bytes_archived,
            "breakdown": self.breakdown.to_dict(),
            "buckets": list(self.buckets),
            "dry_run": self.dry_run,
        }


def parse_archive_after(value: str) -> timedelta:
    """Parse ``"90d"``, ``"12h"``, ``"30m"``, ``"45s"``, ``"2w"`` or ``"500ms"``."""

    if not isinstance(value, str) or not value.strip():
        raise InvalidDurationError("Invalid archive_after format: duration string is required")
    match = _DURATION_RE.fullmatch(value.strip())
    if match is None:
        raise InvalidDurationError(
            f"Invalid archive_after format: {value!r} is not a valid duration",
            expected="<number><ms|s|m|h|d|w>, e.g. 90d",
            found=value,
        )
    amount = float(match.group(1))
    seconds = amount * _UNIT_SECONDS[match.group(2).lower()]
    if seconds <= 0:
        raise InvalidDurationError(
            f"Invalid archive_after format: {value!r} must be greater than zero"
        )
    return timedelta(seconds=seconds)


def archive_bucket_name(timestamp: datetime) -> str:
    utc = timestamp.astimezone(UTC)
    return f"{ARCHIVE_FILE_PREFIX}{utc.year:04d}-{utc.month:02d}.jsonl"


def archive_wu_events(
    state_dir: str | Path,
    archive_dir: str | Path,
    *,
    archive_after: str | timedelta = DEFAULT_ARCHIVE_AFTER,
    now: datetime | None = None,
    dry_run: bool = False,
    logger: Any | None = None,
) -> ArchiveResult:
    log = logger if logger is not None else structlog.get_logger(__name__)
    threshold = (
        archive_after if isinstance(archive_after, timedelta) else parse_archive_after(archive_after)
    )
    reference = (now or datetime.now(tz=UTC)).astimezone(UTC)
    event_log = EventLog(Path(state_dir) / EVENTS_FILE_NAME, logger=log)

    events = event_log.read()
    states = fold_events(events).states

    grouped: dict[str, list[WUEvent]] = {}
    for event in events:
        grouped.setdefault(event.wu_id, []).append(event)

    archived_ids: list[str] = []
    retained_ids: list[str] = []
    buckets: dict[str, list[WUEvent]] = {}
    counts = {"archived": 0, "active": 0, "within": 0}

    for wu_id, wu_events in grouped.items():
        state = states.get(wu_id)
        if state is None or state.status not in TERMINAL_STATUSES:
            retained_ids.append(wu_id)
            counts["active"] += 1
            continue
        most_recent = max(event.timestamp for event in wu_events)
        if reference - most_recent > threshold:
            archived_ids.append(wu_id)
            counts["archived"] += 1
            buckets.setdefault(archive_bucket_name(most_recent), []).extend(wu_events)
        else:
            retained_ids.append(wu_id)
            counts["within"] += 1

    archived_set = set(archived_ids)
    to_archive = [event for event in events if event.wu_id in archived_set]
    to_retain = [event for event in events if event.wu_id not in archived_set]
    bytes_archived = _estimate_bytes(to_archive)

    result = ArchiveResult(
        archived_wu_ids=tuple(archived_ids),
        retained_wu_ids=tuple(retained_ids),
        archived_event_count=len(to_archive),
        retained_event_count=len(to_retain),
        bytes_archived=bytes_archived,
        breakdown=ArchivalBreakdown(
            archived_older_than_threshold=counts["archived"],
            retained_active_wu=counts["active"],
            retained_within_threshold=counts["within"],
        ),
        buckets=tuple(sorted(buckets)),
        dry_run=dry_run,
    )

    if dry_run or not to_archive:
        log.info("archival_planned" if dry_run else "archival_noop", **result.breakdown.to_dict())
        return result

    archive_root = Path(archive_dir)
    for bucket_name in sorted(buckets):
        append_lines(archive_root / bucket_name, [event.to_json() for event in buckets[bucket_name]])
    event_log.rewrite(to_retain)

    log.info(
        "archival_completed",
        archived_wus=len(archived_ids),
        archived_events=len(to_archive),
        bytes_archived=bytes_archived,
        buckets=list(result.buckets),
    )
    return result


def _estimate_bytes(events: Sequence[WUEvent]) -> int:
    return sum(len(event.to_json().encode("utf-8")) + 1 for event in events)


__all__ = [
    "ArchivalBreakdown",
    "ArchiveResult",
    "InvalidDurationError",
    "archive_bucket_name",
    "archive_wu_events",
    "parse_archive_after",
]
