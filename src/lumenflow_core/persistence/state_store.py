"""
Derived WU state: a pure fold over the event log plus the command API that
appends lifecycle events.

The projection is never mutated directly. Commands validate the transition
against the current derived view, append one event, then apply that same event
to the projection with the fold's own step function, so a reload always yields
the same map.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, replace
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import structlog

from lumenflow_core.constants import EVENTS_FILE_NAME
from lumenflow_core.domain.events import JSONValue, WUEvent, WUEventType, format_timestamp
from lumenflow_core.domain.ids import validate_wu_id
from lumenflow_core.domain.models import ClaimMode
from lumenflow_core.domain.state_machine import (
    WUStatus,
    assert_transition,
    is_valid_transition,
    parse_status,
)
from lumenflow_core.errors import ConsistencyError, ErrorCode, NotFoundError
from lumenflow_core.persistence.event_log import EventLog

Clock = Callable[[], datetime]


@dataclass(frozen=True, slots=True)
class WUState:
    """Current derived view of one WU."""

    wu_id: str
    status: WUStatus
    lane: str | None
    title: str | None
    last_event_at: datetime
    claimed_mode: ClaimMode | None = None
    claimed_branch: str | None = None
    last_checkpoint: datetime | None = None
    last_checkpoint_note: str | None = None

    @property
    def is_branch_pr(self) -> bool:
        return self.claimed_mode is ClaimMode.BRANCH_PR

    def to_dict(self) -> dict[str, object]:
        return {
            "wu_id": self.wu_id,
            "status": self.status.value,
            "lane": self.lane,
            "title": self.title,
            "last_event_at": format_timestamp(self.last_event_at),
            "claimed_mode": None if self.claimed_mode is None else self.claimed_mode.value,
            "claimed_branch": self.claimed_branch,
            "last_checkpoint": (
                None if self.last_checkpoint is None else format_timestamp(self.last_checkpoint)
            ),
            "last_checkpoint_note": self.last_checkpoint_note,
        }


@dataclass(frozen=True, slots=True)
class ReplayIssue:
    """An event skipped during replay because it does not fit the lifecycle."""

    index: int
    wu_id: str
    event_type: WUEventType
    message: str

    def to_dict(self) -> dict[str, object]:
        return {
            "index": self.index,
            "wu_id": self.wu_id,
            "event_type": self.event_type.value,
            "message": self.message,
        }


@dataclass(frozen=True, slots=True)
class FoldResult:
    states: dict[str, WUState]
    issues: tuple[ReplayIssue, ...]


def fold_events(events: Iterable[WUEvent]) -> FoldResult:
    """Replay ``events`` in order into ``{wu_id: WUState}``.

    Events whose transition is invalid against the state built so far are
    reported and skipped; the prior state is kept and the fold continues.
    """

    states: dict[str, WUState] = {}
    issues: list[ReplayIssue] = []
    for index, event in enumerate(events):
        problem = apply_event(states, event)
        if problem is not None:
            issues.append(
                ReplayIssue(
                    index=index,
                    wu_id=event.wu_id,
                    event_type=event.event_type,
                    message=problem,
                )
            )
    return FoldResult(states=states, issues=tuple(issues))


def apply_event(states: dict[str, WUState], event: WUEvent) -> str | None:
    """Apply one event to ``states`` in place; return a problem description when skipped."""

    current = states.get(event.wu_id)
    target = event.target_status

    if target is None:
        if current is None:
            return f"{event.event_type} for unknown WU {event.wu_id}"
        states[event.wu_id] = replace(
            current,
            last_event_at=event.timestamp,
            last_checkpoint=event.timestamp,
            last_checkpoint_note=event.note,
        )
        return None

    if current is None and event.event_type not in (WUEventType.CREATE, WUEventType.CLAIM):
        return f"{event.event_type} for unknown WU {event.wu_id}"

    source = WUStatus.READY if current is None else current.status
    if not is_valid_transition(source, target):
        return f"invalid transition {source} -> {target} ({event.event_type})"

    claimed_mode = None if current is None else current.claimed_mode
    claimed_branch = None if current is None else current.claimed_branch
    if event.event_type in (WUEventType.CREATE, WUEventType.CLAIM):
        claimed_mode = _claim_mode(event.extra.get("claimed_mode"))
        raw_branch = event.extra.get("claimed_branch")
        claimed_branch = raw_branch if isinstance(raw_branch, str) and raw_branch else None
    elif event.event_type is WUEventType.RELEASE:
        claimed_mode = None
        claimed_branch = None

    states[event.wu_id] = WUState(
        wu_id=event.wu_id,
        status=target,
        lane=event.lane or (None if current is None else current.lane),
        title=event.title or (None if current is None else current.title),
        last_event_at=event.timestamp,
        claimed_mode=claimed_mode,
        claimed_branch=claimed_branch,
        last_checkpoint=None if current is None else current.last_checkpoint,
        last_checkpoint_note=None if current is None else current.last_checkpoint_note,
    )
    return None


def _claim_mode(value: object) -> ClaimMode:
    if isinstance(value, str):
        try:
            return ClaimMode(value)
        except ValueError:
            pass
    return ClaimMode.WORKSPACE


def _utc_now() -> datetime:
    return datetime.now(tz=UTC)


class WUStateStore:
    """Event-sourced store: the event log plus its derived projection."""

    def __init__(
        self,
        state_dir: str | Path,
        *,
        clock: Clock | None = None,
        logger: Any | None = None,
    ) -> None:
        self._logger = logger if logger is not None else structlog.get_logger(__name__)
        self._log = EventLog(Path(state_dir) / EVENTS_FILE_NAME, logger=self._logger)
        self._clock = clock if clock is not None else _utc_now
        self._states: dict[str, WUState] = {}
        self._issues: tuple[ReplayIssue, ...] = ()
        self._loaded = False

    @property
    def event_log(self) -> EventLog:
        return self._log

    @property
    def replay_issues(self) -> tuple[ReplayIssue, ...]:
        self._ensure_loaded()
        return self._issues

    def load(self) -> WUStateStore:
        """Rebuild the projection from the full log."""

        result = fold_events(self._log.read())
        self._states = result.states
        self._issues = result.issues
        self._loaded = True
        for issue in result.issues:
            self._logger.warning(
                "replay_event_skipped",
                wu_id=issue.wu_id,
                event_type=issue.event_type.value,
                index=issue.index,
                reason=issue.message,
            )
        return self

    # Queries

    def get(self, wu_id: str) -> WUState | None:
        self._ensure_loaded()
        return self._states.get(wu_id)

    def require(self, wu_id: str) -> WUState:
        state = self.get(validate_wu_id(wu_id))
        if state is None:
            raise NotFoundError(
                f"{wu_id} has no events in {self._log.path}",
                code=ErrorCode.WU_NOT_FOUND,
                expected=f"at least one event for {wu_id}",
                found="no events",
                remediation=f"Claim it first: lumenflow claim {wu_id} --lane <Lane> --title <Title>",
            )
        return state

    def get_by_status(self, status: WUStatus | str) -> list[str]:
        self._ensure_loaded()
        wanted = parse_status(status)
        if wanted is None:
            return []
        return [wu_id for wu_id, state in self._states.items() if state.status is wanted]

    def get_by_lane(self, lane: str) -> list[str]:
        self._ensure_loaded()
        key = lane.strip().lower()
        return [
            wu_id
            for wu_id, state in self._states.items()
            if state.lane is not None and state.lane.lower() == key
        ]

    def get_all(self) -> dict[str, WUState]:
        self._ensure_loaded()
        return dict(self._states)

    def snapshot(self) -> Mapping[str, WUState]:
        return self.get_all()

    # Commands

    def create(self, wu_id: str, *, lane: str, title: str) -> WUEvent:
        return self._record(WUEventType.CREATE, wu_id, lane=lane, title=title)

    def claim(
        self,
        wu_id: str,
        *,
        lane: str,
        title: str,
        claimed_mode: ClaimMode = ClaimMode.WORKSPACE,
        claimed_branch: str | None = None,
    ) -> WUEvent:
        extra: dict[str, JSONValue] = {"claimed_mode": ClaimMode(claimed_mode).value}
        if claimed_branch:
            extra["claimed_branch"] = claimed_branch
        return self._record(WUEventType.CLAIM, wu_id, lane=lane, title=title, extra=extra)

    def block(self, wu_id: str, *, reason: str | None = None) -> WUEvent:
        return self._record(WUEventType.BLOCK, wu_id, reason=reason)

    def unblock(self, wu_id: str) -> WUEvent:
        return self._record(WUEventType.UNBLOCK, wu_id)

    def complete(self, wu_id: str) -> WUEvent:
        return self._record(WUEventType.COMPLETE, wu_id)

    def release(self, wu_id: str, *, reason: str | None = None) -> WUEvent:
        return self._record(WUEventType.RELEASE, wu_id, reason=reason)

    def checkpoint(
        self,
        wu_id: str,
        *,
        note: str,
        session_id: str | None = None,
        progress: str | None = None,
        next_steps: str | None = None,
    ) -> WUEvent:
        extra: dict[str, JSONValue] = {}
        if session_id:
            extra["session_id"] = session_id
        if progress:
            extra["progress"] = progress
        if next_steps:
            extra["next_steps"] = next_steps
        return self._record(WUEventType.CHECKPOINT, wu_id, note=note, extra=extra)

    def _record(
        self,
        event_type: WUEventType,
        wu_id: str,
        *,
        lane: str | None = None,
        title: str | None = None,
        reason: str | None = None,
        note: str | None = None,
        extra: dict[str, JSONValue] | None = None,
    ) -> WUEvent:
        validate_wu_id(wu_id)
        self._ensure_loaded()
        current = self._states.get(wu_id)

        event = WUEvent(
            event_type=event_type,
            wu_id=wu_id,
            timestamp=self._clock(),
            lane=lane,
            title=title,
            reason=reason,
            note=note,
            extra=dict(extra or {}),
        )

        if event_type in (WUEventType.CREATE, WUEventType.CLAIM):
            source = WUStatus.READY if current is None else current.status
        else:
            source = self.require(wu_id).status

        target = event.target_status
        if target is not None:
            assert_transition(source, target, wu_id=wu_id)

        self._log.append(event)
        problem = apply_event(self._states, event)
        if problem is not None:
            raise ConsistencyError(
                f"{wu_id}: validated event rejected by fold: {problem}",
                details={"wu_id": wu_id, "event_type": event_type.value},
            )
        self._logger.info(
            "wu_event_recorded",
            wu_id=wu_id,
            event_type=event_type.value,
            from_status=source.value,
            to_status=self._states[wu_id].status.value,
        )
        return event

    def _ensure_loaded(self) -> None:
        if not self._loaded:
            self.load()


__all__ = [
    "Clock",
    "FoldResult",
    "ReplayIssue",
    "WUState",
    "WUStateStore",
    "apply_event",
    "fold_events",
]
