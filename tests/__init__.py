"""Shared deterministic builders for lumenflow-core tests."""

from __future__ import annotations

import os
import subprocess
from collections.abc import Iterable, Iterator
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any, Final

import yaml

from lumenflow_core.domain.events import WUEvent, WUEventType
from lumenflow_core.layout import RepoLayout
from lumenflow_core.persistence.event_log import EventLog
from lumenflow_core.persistence.state_store import Clock

BASE_TS: Final[datetime] = datetime(2026, 3, 1, 12, 0, 0, tzinfo=UTC)


def at(seconds: int = 0, *, days: int = 0) -> datetime:
    return BASE_TS + timedelta(days=days, seconds=seconds)


def stepping_clock(start: datetime = BASE_TS, *, step: timedelta = timedelta(seconds=1)) -> Clock:
    """Clock returning ``start``, ``start + step``, ... on successive calls."""

    ticks: Iterator[int] = iter(range(1_000_000))

    def _now() -> datetime:
        return start + step * next(ticks)

    return _now


def make_event(
    event_type: WUEventType | str,
    wu_id: str,
    *,
    when: datetime | None = None,
    lane: str | None = None,
    title: str | None = None,
    reason: str | None = None,
    note: str | None = None,
    **extra: Any,
) -> WUEvent:
    kind = WUEventType(event_type)
    if kind in (WUEventType.CREATE, WUEventType.CLAIM):
        lane = lane or "Framework: Core"
        title = title or f"Title for {wu_id}"
    return WUEvent(
        event_type=kind,
        wu_id=wu_id,
        timestamp=when or BASE_TS,
        lane=lane,
        title=title,
        reason=reason,
        note=note,
        extra=dict(extra),
    )


def make_layout(tmp_path: Path, name: str = "repo") -> RepoLayout:
    root = tmp_path / name
    root.mkdir(parents=True, exist_ok=True)
    return RepoLayout.at(root)


def write_events(layout: RepoLayout, events: Iterable[WUEvent]) -> EventLog:
    log = layout.state_store().event_log
    for event in events:
        log.append(event)
    return log


def write_document(
    layout: RepoLayout,
    wu_id: str,
    *,
    filename: str | None = None,
    **fields: Any,
) -> Path:
    payload: dict[str, Any] = {"id": wu_id, "title": f"Title for {wu_id}", "lane": "Framework: Core"}
    payload.update(fields)
    path = layout.wu_dir / (filename or f"{wu_id}.yaml")
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(yaml.safe_dump(payload, sort_keys=False), encoding="utf-8")
    return path


def read_document(path: Path) -> dict[str, Any]:
    loaded = yaml.safe_load(path.read_text(encoding="utf-8"))
    assert isinstance(loaded, dict)
    return loaded


def write_yaml(path: Path, payload: object) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(yaml.safe_dump(payload, sort_keys=False), encoding="utf-8")
    return path


def run_git(cwd: Path, *args: str, check: bool = True) -> subprocess.CompletedProcess[str]:
    env = os.environ.copy()
    env["GIT_TERMINAL_PROMPT"] = "0"
    env.setdefault("GIT_CONFIG_NOSYSTEM", "1")
    completed = subprocess.run(
        ["git", *args],
        cwd=cwd,
        env=env,
        text=True,
        capture_output=True,
        check=False,
    )
    if check and completed.returncode != 0:
        msg = f"git command failed: git {' '.join(args)}\nstdout:\n{completed.stdout}\nstderr:\n{completed.stderr}"
        raise AssertionError(msg)
    return completed


def isolate_git_env(tmp_path: Path, monkeypatch: Any) -> None:
    home = tmp_path / "home"
    xdg = tmp_path / "xdg"
    home.mkdir(exist_ok=True)
    xdg.mkdir(exist_ok=True)

    monkeypatch.setenv("HOME", str(home))
    monkeypatch.setenv("XDG_CONFIG_HOME", str(xdg))
    monkeypatch.setenv("GIT_CONFIG_NOSYSTEM", "1")
    monkeypatch.setenv("GIT_TERMINAL_PROMPT", "0")
    monkeypatch.setenv("GIT_AUTHOR_NAME", "LumenFlow Test")
    monkeypatch.setenv("GIT_AUTHOR_EMAIL", "lumenflow-test@example.com")
    monkeypatch.setenv("GIT_COMMITTER_NAME", "LumenFlow Test")
    monkeypatch.setenv("GIT_COMMITTER_EMAIL", "lumenflow-test@example.com")


__all__ = [
    "BASE_TS",
    "at",
    "isolate_git_env",
    "make_event",
    "make_layout",
    "read_document",
    "run_git",
    "stepping_clock",
    "write_document",
    "write_events",
    "write_yaml",
]
