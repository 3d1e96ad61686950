"""WU lifecycle event definitions and line-delimited JSON serialization."""

from __future__ import annotations

import json
import math
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Final

from lumenflow_core.domain import ids
from lumenflow_core.domain.state_machine import WUStatus
from lumenflow_core.errors import ErrorCode, SchemaError

JSONScalar = str | int | float | bool | None
JSONValue = JSONScalar | list["JSONValue"] | dict[str, "JSONValue"]

_CORE_KEYS: Final[frozenset[str]] = frozenset(
    {"type", "wuId", "timestamp", "lane", "title", "reason", "note"}
)


class WUEventType(StrEnum):
    """Lifecycle events appended to the event log."""

    CREATE = "create"
    CLAIM = "claim"
    BLOCK = "block"
    UNBLOCK = "unblock"
    CHECKPOINT = "checkpoint"
    COMPLETE = "complete"
    RELEASE = "release"


# ``None`` means the event does not change status.
EVENT_TARGET_STATUS: Final[dict[WUEventType, WUStatus | None]] = {
    WUEventType.CREATE: WUStatus.IN_PROGRESS,
    WUEventType.CLAIM: WUStatus.IN_PROGRESS,
    WUEventType.BLOCK: WUStatus.BLOCKED,
    WUEventType.UNBLOCK: WUStatus.IN_PROGRESS,
    WUEventType.CHECKPOINT: None,
    WUEventType.COMPLETE: WUStatus.DONE,
    WUEventType.RELEASE: WUStatus.READY,
}

_REQUIRES_LANE_AND_TITLE: Final[frozenset[WUEventType]] = frozenset(
    {WUEventType.CREATE, WUEventType.CLAIM}
)


class EventValidationError(SchemaError):
    """Raised when an event does not match the event schema."""

    default_code = ErrorCode.INVALID_EVENT


@dataclass(slots=True)
class WUEvent:
    """One immutable line of the event log."""

    event_type: WUEventType
    wu_id: str
    timestamp: datetime
    lane: str | None = None
    title: str | None = None
    reason: str | None = None
    note: str | None = None
    extra: dict[str, JSONValue] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.event_type = _as_event_type(self.event_type, "WUEvent.type")
        if not ids.is_wu_id(self.wu_id):
            raise EventValidationError(
                f"WUEvent.wuId: invalid WU id {self.wu_id!r}",
                expected=ids.WU_ID_PATTERN_DESCRIPTION,
                found=repr(self.wu_id),
            )
        self.timestamp = _as_utc_datetime(self.timestamp, "WUEvent.timestamp")
        self.lane = _as_optional_str(self.lane, "WUEvent.lane")
        self.title = _as_optional_str(self.title, "WUEvent.title")
        self.reason = _as_optional_str(self.reason, "WUEvent.reason")
        self.note = _as_optional_str(self.note, "WUEvent.note")
        self.extra = _as_json_object(self.extra, "WUEvent")

        clashing = sorted(key for key in self.extra if key in _CORE_KEYS)
        if clashing:
            raise EventValidationError(f"WUEvent: extra fields shadow core fields: {clashing}")

        if self.event_type in _REQUIRES_LANE_AND_TITLE:
            missing = [name for name in ("lane", "title") if getattr(self, name) is None]
            if missing:
                raise EventValidationError(
                    f"WUEvent: {self.event_type} event for {self.wu_id} requires {missing}"
                )

    @property
    def target_status(self) -> WUStatus | None:
        return EVENT_TARGET_STATUS[self.event_type]

    def to_dict(self) -> dict[str, JSONValue]:
        payload: dict[str, JSONValue] = {
            "type": self.event_type.value,
            "wuId": self.wu_id,
        }
        for key in ("lane", "title", "reason", "note"):
            value = getattr(self, key)
            if value is not None:
                payload[key] = value
        payload.update(self.extra)
        payload["timestamp"] = format_timestamp(self.timestamp)
        return payload

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), separators=(",", ":"), ensure_ascii=False)

    def with_wu_id(self, wu_id: str) -> WUEvent:
        return WUEvent(
            event_type=self.event_type,
            wu_id=wu_id,
            timestamp=self.timestamp,
            lane=self.lane,
            title=self.title,
            reason=self.reason,
            note=self.note,
            extra=dict(self.extra),
        )

    @classmethod
    def from_dict(cls, data: object) -> WUEvent:
        if not isinstance(data, dict):
            raise EventValidationError(f"WUEvent: expected object, got {type(data).__name__}")
        missing = sorted(key for key in ("type", "wuId", "timestamp") if key not in data)
        if missing:
            raise EventValidationError(f"WUEvent: missing required fields: {missing}")
        extra = {key: value for key, value in data.items() if key not in _CORE_KEYS}
        return cls(
            event_type=_as_event_type(data["type"], "WUEvent.type"),
            wu_id=_as_str(data["wuId"], "WUEvent.wuId"),
            timestamp=_as_utc_datetime(data["timestamp"], "WUEvent.timestamp"),
            lane=_as_optional_str(data.get("lane"), "WUEvent.lane"),
            title=_as_optional_str(data.get("title"), "WUEvent.title"),
            reason=_as_optional_str(data.get("reason"), "WUEvent.reason"),
            note=_as_optional_str(data.get("note"), "WUEvent.note"),
            extra=_as_json_object(extra, "WUEvent"),
        )

    @classmethod
    def from_json(cls, raw: str) -> WUEvent:
        if not isinstance(raw, str):
            raise EventValidationError(f"WUEvent: expected JSON string, got {type(raw).__name__}")
        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise EventValidationError(f"WUEvent: invalid JSON: {exc}") from exc
        return cls.from_dict(parsed)


def format_timestamp(value: datetime) -> str:
    """Render ``value`` as ``YYYY-MM-DDTHH:MM:SS.mmmZ``."""

    normalized = _as_utc_datetime(value, "timestamp")
    return normalized.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_timestamp(value: object) -> datetime:
    return _as_utc_datetime(value, "timestamp")


def _as_str(value: object, path: str, *, max_len: int = 4096) -> str:
    if not isinstance(value, str):
        raise EventValidationError(f"{path}: expected string, got {type(value).__name__}")
    parsed = value.strip()
    if not parsed:
        raise EventValidationError(f"{path}: must not be empty")
    if len(parsed) > max_len:
        raise EventValidationError(f"{path}: must be <= {max_len} characters")
    return parsed


def _as_optional_str(value: object, path: str) -> str | None:
    if value is None:
        return None
    return _as_str(value, path)


def _as_event_type(value: object, path: str) -> WUEventType:
    if isinstance(value, WUEventType):
        return value
    if not isinstance(value, str):
        raise EventValidationError(
            f"{path}: expected string event type, got {type(value).__name__}"
        )
    try:
        return WUEventType(value)
    except ValueError as exc:
        allowed = ", ".join(member.value for member in WUEventType)
        raise EventValidationError(
            f"{path}: unsupported event type {value!r}; allowed: {allowed}"
        ) from exc


def _as_utc_datetime(value: object, path: str) -> datetime:
    parsed: datetime
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str):
        normalized = value[:-1] + "+00:00" if value.endswith("Z") else value
        try:
            parsed = datetime.fromisoformat(normalized)
        except ValueError as exc:
            raise EventValidationError(f"{path}: invalid ISO-8601 datetime: {value!r}") from exc
    else:
        raise EventValidationError(
            f"{path}: expected datetime or ISO-8601 string, got {type(value).__name__}"
        )

    if parsed.tzinfo is None or parsed.utcoffset() is None:
        raise EventValidationError(f"{path}: datetime must be timezone-aware UTC")
    return parsed.astimezone(UTC)


def _as_json_value(value: object, path: str, *, depth: int = 0) -> JSONValue:
    if depth > 16:
        raise EventValidationError(f"{path}: JSON nesting too deep")

    if value is None or isinstance(value, bool):
        return value
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if not math.isfinite(value):
            raise EventValidationError(f"{path}: float value must be finite")
        return value
    if isinstance(value, str):
        return value
    if isinstance(value, list):
        return [
            _as_json_value(item, f"{path}[{idx}]", depth=depth + 1)
            for idx, item in enumerate(value)
        ]
    if isinstance(value, dict):
        out: dict[str, JSONValue] = {}
        for key, item in value.items():
            if not isinstance(key, str):
                raise EventValidationError(f"{path}: object keys must be strings")
            out[key] = _as_json_value(item, f"{path}.{key}", depth=depth + 1)
        return out
    raise EventValidationError(f"{path}: value is not JSON-serializable ({type(value).__name__})")


def _as_json_object(value: object, path: str) -> dict[str, JSONValue]:
    parsed = _as_json_value(value, path)
    if not isinstance(parsed, dict):
        raise EventValidationError(f"{path}: expected object")
    return parsed


__all__ = [
    "EVENT_TARGET_STATUS",
    "EventValidationError",
    "JSONValue",
    "WUEvent",
    "WUEventType",
    "format_timestamp",
    "parse_timestamp",
]
