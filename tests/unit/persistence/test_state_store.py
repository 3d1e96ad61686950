"""
lumenflow-core — unit tests for derived WU state

File: tests/unit/persistence/test_state_store.py

Purpose
- Validate the pure fold, replay-issue reporting and the command API.

What this test file should cover
- Replay determinism and reload equivalence.
- Invalid transitions skipped, never fatal, during replay.
- Command preconditions raising typed state errors.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest
from hypothesis import HealthCheck, given, settings
from hypothesis import strategies as st

from lumenflow_core.domain.events import WUEvent, WUEventType
from lumenflow_core.domain.models import ClaimMode
from lumenflow_core.domain.state_machine import InvalidTransitionError, WUStatus
from lumenflow_core.errors import NotFoundError
from lumenflow_core.persistence.state_store import WUStateStore, fold_events
from tests import at, make_event, stepping_clock

if TYPE_CHECKING:
    from pathlib import Path


def test_fold_builds_current_status_per_wu() -> None:
    events = [
        make_event(WUEventType.CLAIM, "WU-1", when=at(0), lane="Framework: Core"),
        make_event(WUEventType.CLAIM, "WU-2", when=at(1), lane="Operations: Tooling"),
        make_event(WUEventType.BLOCK, "WU-1", when=at(2), reason="review"),
        make_event(WUEventType.UNBLOCK, "WU-1", when=at(3)),
        make_event(WUEventType.COMPLETE, "WU-1", when=at(4)),
        make_event(WUEventType.RELEASE, "WU-2", when=at(5)),
    ]

    result = fold_events(events)

    assert result.issues == ()
    assert result.states["WU-1"].status is WUStatus.DONE
    assert result.states["WU-1"].lane == "Framework: Core"
    assert result.states["WU-1"].last_event_at == at(4)
    assert result.states["WU-2"].status is WUStatus.READY
    assert result.states["WU-2"].claimed_mode is None


def test_fold_skips_invalid_transitions_and_keeps_prior_state() -> None:
    events = [
        make_event(WUEventType.CLAIM, "WU-1", when=at(0)),
        make_event(WUEventType.COMPLETE, "WU-1", when=at(1)),
        make_event(WUEventType.CLAIM, "WU-1", when=at(2)),
        make_event(WUEventType.UNBLOCK, "WU-9", when=at(3)),
        make_event(WUEventType.CHECKPOINT, "WU-8", when=at(4), note="orphan"),
    ]

    result = fold_events(events)

    assert result.states["WU-1"].status is WUStatus.DONE
    assert result.states["WU-1"].last_event_at == at(1)
    assert [(issue.index, issue.wu_id) for issue in result.issues] == [(2, "WU-1"), (3, "WU-9"), (4, "WU-8")]
    assert "WU-9" not in result.states


def test_fold_tracks_claim_mode_and_checkpoints() -> None:
    events = [
        make_event(
            WUEventType.CLAIM,
            "WU-4",
            when=at(0),
            claimed_mode="branch-pr",
            claimed_branch="lane/framework-core/wu-4",
        ),
        make_event(WUEventType.CHECKPOINT, "WU-4", when=at(5), note="tests green"),
    ]

    state = fold_events(events).states["WU-4"]

    assert state.is_branch_pr
    assert state.claimed_branch == "lane/framework-core/wu-4"
    assert state.last_checkpoint == at(5)
    assert state.last_checkpoint_note == "tests green"
    assert state.status is WUStatus.IN_PROGRESS


def test_unknown_claim_mode_defaults_to_workspace() -> None:
    state = fold_events([make_event(WUEventType.CLAIM, "WU-1", claimed_mode="teleport")]).states["WU-1"]
    assert state.claimed_mode is ClaimMode.WORKSPACE


_EVENT_TYPES = st.sampled_from(list(WUEventType))
_WU_IDS = st.sampled_from(["WU-1", "WU-2", "WU-3"])


@st.composite
def _event_streams(draw: st.DrawFn) -> list[WUEvent]:
    kinds = draw(st.lists(st.tuples(_EVENT_TYPES, _WU_IDS), max_size=25))
    return [make_event(kind, wu_id, when=at(index), note="n") for index, (kind, wu_id) in enumerate(kinds)]


@given(events=_event_streams())
@settings(max_examples=50, derandomize=True, deadline=None)
def test_property_fold_is_deterministic_and_total(events: list[WUEvent]) -> None:
    first = fold_events(events)
    second = fold_events(list(events))

    assert {key: value.to_dict() for key, value in first.states.items()} == {
        key: value.to_dict() for key, value in second.states.items()
    }
    assert first.issues == second.issues
    assert len(first.issues) <= len(events)


@given(events=_event_streams())
@settings(
    max_examples=25,
    derandomize=True,
    deadline=None,
    suppress_health_check=[HealthCheck.function_scoped_fixture],
)
def test_property_reload_from_disk_matches_in_memory_fold(events: list[WUEvent], tmp_path: Path) -> None:
    state_dir = tmp_path / "state"
    WUStateStore(state_dir).event_log.rewrite(events)

    reloaded = WUStateStore(state_dir).load().get_all()
    expected = fold_events(events).states

    assert {key: value.to_dict() for key, value in reloaded.items()} == {
        key: value.to_dict() for key, value in expected.items()
    }


def test_commands_append_and_update_projection(tmp_path: Path) -> None:
    store = WUStateStore(tmp_path / "state", clock=stepping_clock())

    store.claim("WU-1", lane="Framework: Core", title="Parser")
    store.block("WU-1", reason="needs review")
    store.unblock("WU-1")
    store.checkpoint("WU-1", note="wip", session_id="s-1", progress="50%", next_steps="tests")
    store.complete("WU-1")

    assert store.get("WU-1") is not None
    assert store.require("WU-1").status is WUStatus.DONE
    assert store.get_by_status("done") == ["WU-1"]
    assert store.get_by_lane("framework: core") == ["WU-1"]

    raw = [event.to_dict() for event in store.event_log.read()]
    assert [item["type"] for item in raw] == ["claim", "block", "unblock", "checkpoint", "complete"]
    assert raw[3]["session_id"] == "s-1"
    assert raw[3]["next_steps"] == "tests"

    fresh = WUStateStore(tmp_path / "state").load()
    assert fresh.require("WU-1").to_dict() == store.require("WU-1").to_dict()


def test_commands_enforce_transitions_without_appending(tmp_path: Path) -> None:
    store = WUStateStore(tmp_path / "state", clock=stepping_clock())
    store.claim("WU-1", lane="Framework: Core", title="Parser")
    store.complete("WU-1")
    before = store.event_log.path.read_bytes()

    with pytest.raises(InvalidTransitionError, match="terminal"):
        store.claim("WU-1", lane="Framework: Core", title="Parser again")
    with pytest.raises(InvalidTransitionError):
        store.block("WU-1")

    assert store.event_log.path.read_bytes() == before


def test_commands_on_unknown_wu_raise_not_found(tmp_path: Path) -> None:
    store = WUStateStore(tmp_path / "state")
    with pytest.raises(NotFoundError) as excinfo:
        store.block("WU-77")
    assert "lumenflow claim WU-77" in (excinfo.value.remediation or "")
    assert store.get_by_status("nonsense") == []


def test_branch_pr_claim_records_mode(tmp_path: Path) -> None:
    store = WUStateStore(tmp_path / "state", clock=stepping_clock())
    store.claim(
        "WU-2",
        lane="Framework: Core",
        title="Docs",
        claimed_mode=ClaimMode.BRANCH_PR,
        claimed_branch="feature/docs",
    )
    state = store.require("WU-2")
    assert state.is_branch_pr
    assert state.claimed_branch == "feature/docs"

    store.release("WU-2", reason="handing over")
    assert store.require("WU-2").claimed_mode is None
