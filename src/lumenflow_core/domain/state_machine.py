"""
WU lifecycle state machine.

Pure validation only: no I/O and no side effects on rejection. ``done`` is
terminal; ``blocked`` and ``waiting`` return to ``ready`` only through
``in_progress``.
"""

from __future__ import annotations

from enum import StrEnum
from typing import Final

from lumenflow_core.errors import ErrorCode, StateError


class WUStatus(StrEnum):
    READY = "ready"
    IN_PROGRESS = "in_progress"
    BLOCKED = "blocked"
    WAITING = "waiting"
    DONE = "done"


TERMINAL_STATUSES: Final[frozenset[WUStatus]] = frozenset({WUStatus.DONE})
ACTIVE_STATUSES: Final[frozenset[WUStatus]] = frozenset(
    {WUStatus.IN_PROGRESS, WUStatus.BLOCKED, WUStatus.WAITING}
)

_TRANSITIONS: Final[dict[WUStatus, frozenset[WUStatus]]] = {
    WUStatus.READY: frozenset({WUStatus.IN_PROGRESS}),
    WUStatus.IN_PROGRESS: frozenset(
        {WUStatus.BLOCKED, WUStatus.WAITING, WUStatus.DONE, WUStatus.READY}
    ),
    WUStatus.BLOCKED: frozenset({WUStatus.IN_PROGRESS, WUStatus.DONE}),
    WUStatus.WAITING: frozenset({WUStatus.IN_PROGRESS, WUStatus.DONE}),
    WUStatus.DONE: frozenset(),
}


class InvalidTransitionError(StateError):
    """Raised for a lifecycle transition outside the transition table."""

    def __init__(
        self,
        message: str,
        *,
        from_status: object,
        to_status: object,
        code: ErrorCode = ErrorCode.INVALID_TRANSITION,
        remediation: str | None = None,
    ) -> None:
        super().__init__(
            message,
            code=code,
            remediation=remediation,
            expected=_describe_allowed(from_status),
            found=f"{from_status!r} -> {to_status!r}",
            details={"from": str(from_status), "to": str(to_status)},
        )
        self.from_status = from_status
        self.to_status = to_status


def parse_status(value: object) -> WUStatus | None:
    """Return the matching status, or ``None`` for missing/empty/unknown values."""

    if isinstance(value, WUStatus):
        return value
    if not isinstance(value, str) or not value:
        return None
    try:
        return WUStatus(value)
    except ValueError:
        return None


def is_valid_transition(from_status: object, to_status: object) -> bool:
    source = parse_status(from_status)
    target = parse_status(to_status)
    if source is None or target is None:
        return False
    return target in _TRANSITIONS[source]


def allowed_transitions(status: object) -> frozenset[WUStatus]:
    source = parse_status(status)
    if source is None:
        return frozenset()
    return _TRANSITIONS[source]


def assert_transition(from_status: object, to_status: object, *, wu_id: str | None = None) -> None:
    """Raise ``InvalidTransitionError`` unless ``from_status -> to_status`` is allowed."""

    subject = f" for {wu_id}" if wu_id else ""
    source = parse_status(from_status)
    target = parse_status(to_status)

    if source is None:
        raise InvalidTransitionError(
            f"Invalid state transition{subject}: unknown current state {from_status!r}",
            from_status=from_status,
            to_status=to_status,
        )
    if target is None:
        raise InvalidTransitionError(
            f"Invalid state transition{subject}: unknown target state {to_status!r}",
            from_status=from_status,
            to_status=to_status,
        )
    if source in TERMINAL_STATUSES:
        raise InvalidTransitionError(
            f"Invalid state transition{subject}: {source} -> {target}. "
            f"{source} is a terminal state.",
            from_status=source,
            to_status=target,
            code=ErrorCode.TERMINAL_STATE,
            remediation="Create a new WU for follow-up work instead of reopening a done WU.",
        )
    if target not in _TRANSITIONS[source]:
        raise InvalidTransitionError(
            f"Invalid state transition{subject}: {source} -> {target}",
            from_status=source,
            to_status=target,
        )


def is_terminal(status: object) -> bool:
    return parse_status(status) in TERMINAL_STATUSES


def _describe_allowed(from_status: object) -> str:
    allowed = sorted(status.value for status in allowed_transitions(from_status))
    if not allowed:
        return "no transitions"
    return "one of " + ", ".join(allowed)


__all__ = [
    "ACTIVE_STATUSES",
    "InvalidTransitionError",
    "TERMINAL_STATUSES",
    "WUStatus",
    "allowed_transitions",
    "assert_transition",
    "is_terminal",
    "is_valid_transition",
    "parse_status",
]
