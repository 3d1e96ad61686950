"""Work unit document model.

The document is owned by external authoring tools; this core reads it and
rewrites only the lifecycle fields. Unknown keys are preserved verbatim.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path
from typing import Any

from lumenflow_core.domain.state_machine import WUStatus, parse_status


class ClaimMode(StrEnum):
    WORKSPACE = "workspace"
    BRANCH_PR = "branch-pr"


@dataclass(slots=True)
class WUDocument:
    """Structured per-unit document plus the file it was read from."""

    data: dict[str, Any]
    path: Path | None = None
    _original_id: str | None = field(default=None, repr=False)

    def __post_init__(self) -> None:
        if self._original_id is None:
            raw = self.data.get("id")
            self._original_id = raw if isinstance(raw, str) else None

    @property
    def id(self) -> str | None:
        raw = self.data.get("id")
        return raw if isinstance(raw, str) else None

    @property
    def title(self) -> str | None:
        return _optional_str(self.data.get("title"))

    @property
    def lane(self) -> str | None:
        return _optional_str(self.data.get("lane"))

    @property
    def status_raw(self) -> object:
        return self.data.get("status")

    @property
    def status(self) -> WUStatus | None:
        return parse_status(self.data.get("status"))

    @property
    def code_paths(self) -> tuple[str, ...]:
        raw = self.data.get("code_paths")
        if not isinstance(raw, list):
            return ()
        return tuple(item for item in raw if isinstance(item, str))

    @property
    def worktree_path(self) -> str | None:
        return _optional_str(self.data.get("worktree_path"))

    @property
    def claimed_mode(self) -> ClaimMode | None:
        raw = self.data.get("claimed_mode")
        if not isinstance(raw, str):
            return None
        try:
            return ClaimMode(raw)
        except ValueError:
            return None

    @property
    def claimed_branch(self) -> str | None:
        return _optional_str(self.data.get("claimed_branch"))

    @property
    def locked(self) -> bool:
        return self.data.get("locked") is True

    @property
    def claimed_at(self) -> str | None:
        return _optional_timestamp(self.data.get("claimed_at"))

    @property
    def completed_at(self) -> str | None:
        return _optional_timestamp(self.data.get("completed_at"))

    @property
    def original_id(self) -> str | None:
        return self._original_id

    def set_status(self, status: WUStatus) -> None:
        self.data["status"] = status.value

    def copy(self) -> WUDocument:
        return WUDocument(data=_deep_copy(self.data), path=self.path, _original_id=self._original_id)

    @classmethod
    def from_mapping(cls, payload: Mapping[str, Any], *, path: Path | None = None) -> WUDocument:
        return cls(data=_deep_copy(dict(payload)), path=path)


def _optional_str(value: object) -> str | None:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def _optional_timestamp(value: object) -> str | None:
    # PyYAML turns unquoted ISO timestamps into datetime objects.
    if value is None:
        return None
    if hasattr(value, "isoformat"):
        return str(value.isoformat())
    return _optional_str(value)


def _deep_copy(value: Any) -> Any:
    if isinstance(value, dict):
        return {key: _deep_copy(item) for key, item in value.items()}
    if isinstance(value, list):
        return [_deep_copy(item) for item in value]
    return value


__all__ = ["ClaimMode", "WUDocument"]
