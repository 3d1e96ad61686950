"""
lumenflow-core — unit tests for lane definitions and WIP admission

File: tests/unit/lanes/test_registry_and_admission.py

Purpose
- Validate every accepted lane-config shape and the wip_limit rules.
- Validate occupancy counting under each lock policy.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from lumenflow_core.domain.events import WUEventType
from lumenflow_core.errors import ErrorCode
from lumenflow_core.lanes.admission import LaneOccupiedError, assert_lane_free, check_lane_free
from lumenflow_core.lanes.registry import (
    LaneConfigError,
    LaneRegistry,
    LockPolicy,
    check_wip_justification,
    extract_parent,
    get_lock_policy_for_lane,
    get_wip_limit_for_lane,
    normalize_lane_config,
    parse_lock_policy,
)
from lumenflow_core.persistence.state_store import WUState, fold_events
from tests import at, make_event

if TYPE_CHECKING:
    from pathlib import Path

LANE = "Framework: Core"


def _registry(policy: str, wip_limit: int = 2) -> LaneRegistry:
    return LaneRegistry.from_config(
        {"definitions": [{"name": LANE, "wip_limit": wip_limit, "lock_policy": policy}]}
    )


def _snapshot() -> dict[str, WUState]:
    events = [
        make_event(WUEventType.CLAIM, "WU-1", when=at(0), lane=LANE),
        make_event(WUEventType.CLAIM, "WU-2", when=at(1), lane=LANE),
        make_event(WUEventType.BLOCK, "WU-2", when=at(2), reason="review"),
        make_event(WUEventType.CLAIM, "WU-3", when=at(3), lane="Operations: Tooling"),
        make_event(WUEventType.CLAIM, "WU-4", when=at(4), lane=LANE),
        make_event(WUEventType.COMPLETE, "WU-4", when=at(5)),
    ]
    return dict(fold_events(events).states)


@pytest.mark.parametrize(
    "payload",
    [
        {"lanes": {"definitions": [{"name": LANE, "wip_limit": 2}]}},
        {"definitions": [{"name": LANE, "wip_limit": 2}]},
        [{"name": LANE, "wip_limit": 2}],
        {"engineering": [{"name": LANE, "wip_limit": 2}]},
    ],
)
def test_accepted_config_shapes(payload: object) -> None:
    registry = LaneRegistry.from_config(payload)
    assert registry.names() == [LANE]
    assert get_wip_limit_for_lane("framework: core", registry) == 2


def test_defaults_and_string_entries() -> None:
    registry = LaneRegistry.from_config(["Docs", {"name": " Operations: Tooling ", "lock_policy": "ACTIVE"}])

    assert len(registry) == 2
    assert "docs" in registry
    assert get_wip_limit_for_lane("Docs", registry) == 1
    assert get_lock_policy_for_lane("Operations: Tooling", registry) is LockPolicy.ACTIVE
    assert get_wip_limit_for_lane("Unknown", registry) == 1
    assert get_lock_policy_for_lane("Unknown", registry) is LockPolicy.ALL
    assert registry.has_parent("operations")
    assert not registry.has_parent("Framework")


def test_empty_configs() -> None:
    assert normalize_lane_config(None) == []
    assert normalize_lane_config({"lanes": None}) == []
    assert LaneRegistry.from_config({}).is_empty()


@pytest.mark.parametrize(
    ("payload", "match"),
    [
        ({"definitions": {"name": LANE}}, "lanes.definitions must be a list"),
        ("lanes", "lane config must be a list or a mapping"),
        ([{"wip_limit": 1}], "lane name is required"),
        ([{"name": LANE, "wip_limit": 0}], "invalid wip_limit"),
        ([{"name": LANE, "wip_limit": True}], "invalid wip_limit"),
        ([{"name": LANE, "wip_limit": "2"}], "invalid wip_limit"),
        ([42], "lanes\\[0\\]"),
    ],
)
def test_invalid_configs(payload: object, match: str) -> None:
    with pytest.raises(LaneConfigError, match=match) as excinfo:
        LaneRegistry.from_config(payload)
    assert excinfo.value.code is ErrorCode.LANE_CONFIG_INVALID


def test_registry_from_missing_file_is_empty(tmp_path: Path) -> None:
    assert LaneRegistry.from_file(tmp_path / "absent.yaml").is_empty()


def test_registry_from_yaml_file(tmp_path: Path) -> None:
    path = tmp_path / ".lumenflow.config.yaml"
    path.write_text(
        "lanes:\n  definitions:\n    - name: 'Framework: Core'\n      wip_limit: 3\n"
        "      wip_justification: pairing rotation\n",
        encoding="utf-8",
    )
    definition = LaneRegistry.from_file(path).get(LANE)
    assert definition is not None
    assert definition.parent == "Framework"
    assert definition.to_dict()["wip_justification"] == "pairing rotation"


def test_lock_policy_parsing_falls_back_to_all() -> None:
    assert parse_lock_policy("none") is LockPolicy.NONE
    assert parse_lock_policy(" Active ") is LockPolicy.ACTIVE
    assert parse_lock_policy("bogus") is LockPolicy.ALL
    assert parse_lock_policy(None) is LockPolicy.ALL


def test_extract_parent() -> None:
    assert extract_parent("Framework: Core") == "Framework"
    assert extract_parent("  Docs ") == "Docs"


def test_lock_policy_all_counts_blocked_occupants() -> None:
    result = check_lane_free(_snapshot(), LANE, "WU-9", _registry("all"))

    assert not result.free
    assert result.current_count == 2
    assert result.in_progress_wus == ("WU-1", "WU-2")
    assert result.occupied_by == "WU-1"
    assert result.lock_policy is LockPolicy.ALL


def test_lock_policy_active_ignores_blocked_occupants() -> None:
    result = check_lane_free(_snapshot(), LANE, "WU-9", _registry("active"))

    assert result.free
    assert result.current_count == 1
    assert result.occupied_by is None


def test_lock_policy_none_is_always_free() -> None:
    result = check_lane_free(_snapshot(), LANE, "WU-9", _registry("none", wip_limit=1))
    assert result.free
    assert result.current_count == 0
    assert result.in_progress_wus == ()


def test_candidate_is_not_counted_against_itself() -> None:
    result = check_lane_free(_snapshot(), LANE, "WU-1", _registry("all"))
    assert result.free
    assert result.in_progress_wus == ("WU-2",)


def test_lane_comparison_is_case_insensitive() -> None:
    result = check_lane_free(_snapshot(), "framework: core", "WU-9", _registry("all"))
    assert result.current_count == 2


def test_assert_lane_free_raises_lane_occupied() -> None:
    with pytest.raises(LaneOccupiedError) as excinfo:
        assert_lane_free(_snapshot(), LANE, "WU-9", _registry("all"))

    error = excinfo.value
    assert error.code is ErrorCode.LANE_OCCUPIED
    assert "at capacity (2/2)" in error.message
    assert error.found == "WU-1, WU-2"
    assert "in a different lane" in (error.remediation or "")
    assert error.to_dict()["details"]["occupied_by"] == "WU-1"


def test_wip_justification_is_a_soft_warning() -> None:
    unjustified = check_wip_justification(LANE, _registry("all", wip_limit=2))
    assert unjustified.valid
    assert unjustified.requires_justification
    assert unjustified.warning is not None
    assert 'Lane "Framework: Core" has WIP limit of 2' in unjustified.warning
    assert "you need better lanes, not higher limits" in unjustified.warning

    justified = check_wip_justification(
        LANE,
        [{"name": LANE, "wip_limit": 2, "wip_justification": "docs and code pair"}],
    )
    assert justified.warning is None
    assert justified.justification == "docs and code pair"

    single = check_wip_justification(LANE, _registry("all", wip_limit=1))
    assert single.warning is None
    assert not single.requires_justification
