"""Unit tests for atomic writes and line appends."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from lumenflow_core.utils import append_line, append_lines, atomic_write

if TYPE_CHECKING:
    from pathlib import Path


def test_atomic_write_creates_parents_and_replaces(tmp_path: Path) -> None:
    target = tmp_path / "nested" / "state.json"

    atomic_write(target, "first\n")
    atomic_write(target, "second\n")

    assert target.read_text(encoding="utf-8") == "second\n"
    assert sorted(path.name for path in target.parent.iterdir()) == ["state.json"]


def test_atomic_write_accepts_bytes(tmp_path: Path) -> None:
    target = tmp_path / "blob.bin"
    atomic_write(target, b"\x00\x01")
    assert target.read_bytes() == b"\x00\x01"


def test_append_never_rewrites_prior_bytes(tmp_path: Path) -> None:
    target = tmp_path / "log" / "events.jsonl"

    append_line(target, '{"n":1}')
    append_lines(target, ['{"n":2}', '{"n":3}'])

    assert target.read_text(encoding="utf-8") == '{"n":1}\n{"n":2}\n{"n":3}\n'


@pytest.mark.parametrize("bad", ["a\nb", "trailing\r"])
def test_append_rejects_embedded_newlines(tmp_path: Path, bad: str) -> None:
    target = tmp_path / "events.jsonl"
    append_line(target, "ok")

    with pytest.raises(ValueError, match="must not contain newline"):
        append_lines(target, ["fine", bad])

    assert target.read_text(encoding="utf-8") == "ok\n"
