"""
lumenflow-core — append-only WU event log.

File: src/lumenflow_core/persistence/event_log.py

Purpose
- Own the line-delimited JSON event log that is the single source of truth for
  WU status.

Functional requirements
- ``append`` validates first, then writes exactly one newline-terminated line
  with one open-append-fsync-close; prior bytes are never rewritten.
- ``read`` fails loudly on the first malformed line, naming its line number.
- Whole-log rewrites (archival, duplicate remapping, doctor) go through one
  atomic replace.

Non-functional requirements
- Logical order is file order; timestamps never reorder events.
"""

from __future__ import annotations

import json
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import structlog

from lumenflow_core.domain.events import EventValidationError, WUEvent
from lumenflow_core.errors import ErrorCode, LumenFlowIOError, SchemaError
from lumenflow_core.utils.fs import append_line, atomic_write


class EventLogCorruptError(SchemaError):
    """A line of the event log is not a valid event."""

    default_code = ErrorCode.EVENT_LOG_CORRUPT

    def __init__(self, path: Path, line_number: int, reason: str) -> None:
        super().__init__(
            f"{path}: line {line_number}: {reason}",
            expected="one JSON event object per line",
            found=reason,
            remediation="Run `lumenflow doctor-state` to back up the log and drop invalid lines.",
            details={"path": str(path), "line": line_number},
        )
        self.path = path
        self.line_number = line_number


@dataclass(frozen=True, slots=True)
class StateFileRepairResult:
    """Outcome of :func:`repair_state_file`."""

    lines_kept: int
    lines_removed: int
    backup_path: Path | None
    warnings: tuple[str, ...] = field(default_factory=tuple)

    def to_dict(self) -> dict[str, object]:
        return {
            "lines_kept": self.lines_kept,
            "lines_removed": self.lines_removed,
            "backup_path": None if self.backup_path is None else str(self.backup_path),
            "warnings": list(self.warnings),
        }


class EventLog:
    """Line-delimited JSON log of :class:`WUEvent` records."""

    def __init__(self, path: str | Path, *, logger: Any | None = None) -> None:
        self._path = Path(path)
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    @property
    def path(self) -> Path:
        return self._path

    def exists(self) -> bool:
        return self._path.is_file()

    def append(self, event: WUEvent) -> None:
        if not isinstance(event, WUEvent):
            raise EventValidationError(f"expected WUEvent, got {type(event).__name__}")
        line = event.to_json()
        try:
            append_line(self._path, line)
        except OSError as exc:
            raise LumenFlowIOError(f"unable to append to {self._path}: {exc}") from exc
        self._logger.debug(
            "event_appended",
            wu_id=event.wu_id,
            event_type=event.event_type.value,
            path=str(self._path),
        )

    def read(self) -> list[WUEvent]:
        """Parse every non-blank line; raise :class:`EventLogCorruptError` on the first bad one."""

        events: list[WUEvent] = []
        for line_number, raw in self._iter_lines():
            try:
                events.append(WUEvent.from_json(raw))
            except EventValidationError as exc:
                raise EventLogCorruptError(self._path, line_number, exc.message) from exc
        return events

    def rewrite(self, events: Iterable[WUEvent]) -> None:
        """Atomically replace the log with ``events`` in the given order."""

        materialized = list(events)
        try:
            atomic_write(self._path, serialize_events(materialized))
        except OSError as exc:
            raise LumenFlowIOError(f"unable to rewrite {self._path}: {exc}") from exc
        self._logger.info("event_log_rewritten", path=str(self._path), events=len(materialized))

    def _iter_lines(self) -> list[tuple[int, str]]:
        if not self._path.exists():
            return []
        try:
            raw = self._path.read_bytes()
        except OSError as exc:
            raise LumenFlowIOError(f"unable to read {self._path}: {exc}") from exc
        lines: list[tuple[int, str]] = []
        for index, chunk in enumerate(raw.splitlines(), start=1):
            line = _decode_line(chunk)
            if line is None:
                raise EventLogCorruptError(self._path, index, "invalid UTF-8")
            if line:
                lines.append((index, line))
        return lines


def repair_state_file(
    path: str | Path,
    *,
    now: datetime | None = None,
    logger: Any | None = None,
) -> StateFileRepairResult:
    """Back up the log, drop malformed or invalid lines, and rewrite it atomically."""

    log = logger if logger is not None else structlog.get_logger(__name__)
    target = Path(path)
    if not target.exists():
        return StateFileRepairResult(
            lines_kept=0,
            lines_removed=0,
            backup_path=None,
            warnings=("File does not exist, nothing to repair",),
        )

    try:
        original = target.read_bytes()
        stamp = (now or datetime.now(tz=UTC)).strftime("%Y-%m-%dT%H-%M-%S-%fZ")
        backup_path = target.with_name(f"{target.name}.backup.{stamp}")
        atomic_write(backup_path, original)
    except OSError as exc:
        raise LumenFlowIOError(f"unable to back up {target}: {exc}") from exc

    kept: list[str] = []
    warnings: list[str] = []
    removed = 0
    for index, chunk in enumerate(original.splitlines(), start=1):
        line = _decode_line(chunk)
        if line is None:
            reason: str | None = "Invalid UTF-8 removed"
        elif not line:
            continue
        else:
            reason = _line_problem(line)
        if reason is not None:
            removed += 1
            warnings.append(f"Line {index}: {reason}")
            continue
        kept.append(line)

    try:
        atomic_write(target, "".join(f"{line}\n" for line in kept))
    except OSError as exc:
        raise LumenFlowIOError(f"unable to rewrite {target}: {exc}") from exc
    if not kept and removed:
        warnings.append("All lines were invalid - file is now empty")

    log.info(
        "state_file_repaired",
        path=str(target),
        lines_kept=len(kept),
        lines_removed=removed,
        backup=str(backup_path),
    )
    return StateFileRepairResult(
        lines_kept=len(kept),
        lines_removed=removed,
        backup_path=backup_path,
        warnings=tuple(warnings),
    )


def _decode_line(chunk: bytes) -> str | None:
    """Stripped line text, or ``None`` when the bytes are not UTF-8."""

    try:
        return chunk.decode("utf-8").strip()
    except UnicodeDecodeError:
        return None


def _line_problem(line: str) -> str | None:
    try:
        parsed = json.loads(line)
    except json.JSONDecodeError:
        return "Malformed JSON removed"
    try:
        WUEvent.from_dict(parsed)
    except EventValidationError as exc:
        return f"Invalid event removed ({exc.message})"
    return None


def serialize_events(events: Sequence[WUEvent]) -> str:
    return "".join(f"{event.to_json()}\n" for event in events)


__all__ = [
    "EventLog",
    "EventLogCorruptError",
    "StateFileRepairResult",
    "repair_state_file",
    "serialize_events",
]
