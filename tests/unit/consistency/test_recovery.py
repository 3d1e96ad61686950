"""
lumenflow-core — unit tests for zombie claim recovery

File: tests/unit/consistency/test_recovery.py

Purpose
- Validate zombie detection, the JSON attempt counter and escalation once the
  attempt limit is reached.
"""

from __future__ import annotations

import json
from typing import TYPE_CHECKING

import pytest

from lumenflow_core.consistency.recovery import (
    ZOMBIE_RELEASE_REASON,
    RecoveryCounter,
    RecoveryError,
    RecoveryEscalationError,
    ZombieRecovery,
)
from lumenflow_core.domain.events import WUEventType
from lumenflow_core.domain.state_machine import WUStatus
from lumenflow_core.errors import ErrorCode, LumenFlowIOError
from lumenflow_core.layout import RepoLayout
from lumenflow_core.persistence.state_store import WUStateStore
from tests import at, make_event, make_layout, stepping_clock, write_document, write_events

if TYPE_CHECKING:
    from pathlib import Path


@pytest.fixture
def layout(tmp_path: Path) -> RepoLayout:
    repo = make_layout(tmp_path)
    write_events(repo, [make_event(WUEventType.CLAIM, "WU-6", when=at(0))])
    write_document(repo, "WU-6", status="in_progress")
    return repo


def test_counter_file_format(tmp_path: Path) -> None:
    counter = RecoveryCounter(tmp_path / "recovery")

    assert counter.read("WU-1") == 0
    assert counter.increment("WU-1", now=at(0)) == 1
    assert counter.increment("WU-1", now=at(5)) == 2

    payload = json.loads((tmp_path / "recovery" / "WU-1.recovery").read_text(encoding="utf-8"))
    assert payload == {"attempts": 2, "lastAttempt": "2026-03-01T12:00:05.000Z", "wuId": "WU-1"}
    assert counter.clear("WU-1")
    assert not counter.clear("WU-1")


def test_unreadable_counter_restarts_at_zero(tmp_path: Path) -> None:
    counter = RecoveryCounter(tmp_path)
    counter.path_for("WU-2").write_text("{oops", encoding="utf-8")
    assert counter.read("WU-2") == 0
    counter.path_for("WU-2").write_text('{"attempts": true}', encoding="utf-8")
    assert counter.read("WU-2") == 0


def test_zombie_detection(layout: RepoLayout) -> None:
    recovery = ZombieRecovery(layout)
    assert recovery.is_zombie("WU-6")
    assert recovery.max_attempts == 4

    (layout.worktrees_dir / "framework-core-wu-6").mkdir(parents=True)
    assert not recovery.is_zombie("WU-6")
    assert not recovery.is_zombie("WU-99")


def test_live_workspace_is_left_alone(layout: RepoLayout) -> None:
    (layout.worktrees_dir / "framework-core-wu-6").mkdir(parents=True)

    outcome = ZombieRecovery(layout).recover("WU-6")

    assert not outcome.released
    assert outcome.message == "not a zombie claim"
    assert layout.state_store().require("WU-6").status is WUStatus.IN_PROGRESS


def test_successful_recovery_releases_and_clears_counter(layout: RepoLayout) -> None:
    recovery = ZombieRecovery(layout, clock=stepping_clock(at(days=1)))

    outcome = recovery.recover("WU-6")

    assert outcome.to_dict() == {
        "wu_id": "WU-6",
        "attempt": 1,
        "released": True,
        "message": ZOMBIE_RELEASE_REASON,
        "commit_sha": None,
    }
    last = layout.state_store().event_log.read()[-1]
    assert (last.event_type, last.reason) == (WUEventType.RELEASE, ZOMBIE_RELEASE_REASON)
    assert layout.documents().load("WU-6").status is WUStatus.READY
    assert recovery.counter.read("WU-6") == 0


def test_failed_attempts_escalate_at_the_limit(layout: RepoLayout, monkeypatch: pytest.MonkeyPatch) -> None:
    def _failing_release(self: WUStateStore, wu_id: str, *, reason: str | None = None) -> None:
        raise LumenFlowIOError("disk full")

    monkeypatch.setattr(WUStateStore, "release", _failing_release)
    recovery = ZombieRecovery(layout, clock=stepping_clock())

    for attempt in range(1, 5):
        with pytest.raises(RecoveryError) as excinfo:
            recovery.recover("WU-6")
        assert excinfo.value.retryable
        assert f"attempt {attempt} failed: disk full" in excinfo.value.message

    with pytest.raises(RecoveryEscalationError) as escalated:
        recovery.recover("WU-6")

    error = escalated.value
    assert error.code is ErrorCode.RECOVERY_ESCALATED
    assert error.attempts == 4
    assert not error.retryable
    assert "lumenflow recover WU-6 --reset" in (error.remediation or "")
    assert recovery.counter.read("WU-6") == 4


def test_custom_attempt_limit(layout: RepoLayout) -> None:
    recovery = ZombieRecovery(layout, max_attempts=1)
    recovery.counter.increment("WU-6", now=at(0))

    with pytest.raises(RecoveryEscalationError, match=r"max 1"):
        recovery.recover("WU-6")

    recovery.counter.clear("WU-6")
    assert recovery.recover("WU-6").released
