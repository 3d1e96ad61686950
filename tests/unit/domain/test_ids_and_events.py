"""Unit tests for WU identifiers and the event wire format."""

from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone

import pytest

from lumenflow_core.domain.events import (
    EventValidationError,
    WUEvent,
    WUEventType,
    format_timestamp,
    parse_timestamp,
)
from lumenflow_core.domain.ids import (
    InvalidWUIdError,
    format_wu_id,
    is_wu_id,
    next_available_id,
    normalize_wu_id,
    validate_wu_id,
    wu_number,
)
from lumenflow_core.domain.state_machine import WUStatus
from tests import BASE_TS, make_event


@pytest.mark.parametrize("value", ["WU-1", "WU-42", "WU-1000"])
def test_valid_ids(value: str) -> None:
    assert is_wu_id(value)
    assert validate_wu_id(value) == value


@pytest.mark.parametrize("value", ["wu-1", "WU-", "WU-1a", "WU1", " WU-1", "INIT-1", 7, None])
def test_invalid_ids(value: object) -> None:
    assert not is_wu_id(value)
    with pytest.raises(InvalidWUIdError) as excinfo:
        validate_wu_id(value)
    assert isinstance(excinfo.value, ValueError)
    assert excinfo.value.expected == "WU-123"


def test_id_helpers() -> None:
    assert normalize_wu_id(" wu-12 ") == "WU-12"
    assert wu_number("WU-12") == 12
    assert format_wu_id(3) == "WU-3"
    with pytest.raises(InvalidWUIdError):
        format_wu_id(0)


def test_next_available_id_fills_smallest_gap_and_ignores_noise() -> None:
    assert next_available_id([]) == "WU-1"
    assert next_available_id(["WU-1", "WU-2", "WU-4", "WU-1-copy", "notes"]) == "WU-3"


def test_event_round_trip_preserves_extra_fields() -> None:
    event = make_event(
        WUEventType.CLAIM,
        "WU-5",
        lane="Operations: Tooling",
        title="Add guard",
        claimed_mode="branch-pr",
        claimed_branch="lane/operations-tooling/wu-5",
    )
    line = event.to_json()
    payload = json.loads(line)

    assert payload["type"] == "claim"
    assert payload["wuId"] == "WU-5"
    assert payload["timestamp"] == "2026-03-01T12:00:00.000Z"
    assert payload["claimed_mode"] == "branch-pr"

    parsed = WUEvent.from_json(line)
    assert parsed.to_dict() == event.to_dict()
    assert parsed.target_status is WUStatus.IN_PROGRESS


def test_checkpoint_does_not_change_status() -> None:
    event = make_event(WUEventType.CHECKPOINT, "WU-5", note="halfway")
    assert event.target_status is None


@pytest.mark.parametrize(
    ("payload", "match"),
    [
        ({"type": "claim", "wuId": "WU-1", "timestamp": "2026-03-01T00:00:00Z"}, "requires"),
        ({"type": "explode", "wuId": "WU-1", "timestamp": "2026-03-01T00:00:00Z"}, "unsupported event type"),
        ({"type": "block", "wuId": "wu-1", "timestamp": "2026-03-01T00:00:00Z"}, "invalid WU id"),
        ({"type": "block", "wuId": "WU-1"}, "missing required fields"),
        ({"type": "block", "wuId": "WU-1", "timestamp": "2026-03-01T00:00:00"}, "timezone-aware"),
        ({"type": "block", "wuId": "WU-1", "timestamp": "yesterday"}, "invalid ISO-8601"),
        ([1, 2], "expected object"),
    ],
)
def test_event_validation_failures(payload: object, match: str) -> None:
    with pytest.raises(EventValidationError, match=match):
        WUEvent.from_dict(payload)


def test_timestamps_normalize_to_utc_milliseconds() -> None:
    offset = datetime(2026, 3, 1, 14, 0, 0, 123456, tzinfo=timezone(timedelta(hours=2)))
    assert format_timestamp(offset) == "2026-03-01T12:00:00.123Z"
    assert parse_timestamp("2026-03-01T12:00:00Z") == BASE_TS
