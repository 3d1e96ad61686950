"""
lumenflow-core — lane registry.

File: src/lumenflow_core/lanes/registry.py

Purpose
- Normalize every accepted lane-config shape into one case-insensitive lookup.
- Answer per-lane WIP limit, lock policy and WIP-justification questions.

Accepted shapes (each with or without a top-level ``lanes:`` key)
- flat list: ``[{name: Core, wip_limit: 2}, ...]``
- definitions: ``{definitions: [...]}``
- legacy categories: ``{engineering: [...], business: [...]}``

Entries are mappings with ``name`` or bare lane-name strings.

Functional requirements
- ``wip_limit`` must be an integer >= 1 (default 1); anything else is rejected
  while normalizing, before any lookup happens.
- Unsupported ``lock_policy`` values fall back to ``all``.
- A missing ``wip_justification`` on a lane with WIP > 1 only ever warns.
"""

from __future__ import annotations

from collections.abc import Iterator, Mapping, Sequence
from dataclasses import dataclass
from enum import StrEnum
from pathlib import Path
from typing import Final

import yaml

from lumenflow_core.constants import DEFAULT_WIP_LIMIT, LANE_CONFIG_FILE
from lumenflow_core.errors import ErrorCode, SchemaError

LANE_DEFINITIONS_HINT: Final[str] = f"{LANE_CONFIG_FILE} lanes.definitions"
WIP_PHILOSOPHY: Final[str] = (
    "Philosophy: If you need WIP > 1, you need better lanes, not higher limits."
)


class LockPolicy(StrEnum):
    """Which statuses occupy a lane slot."""

    ALL = "all"
    ACTIVE = "active"
    NONE = "none"


DEFAULT_LOCK_POLICY: Final[LockPolicy] = LockPolicy.ALL


class LaneConfigError(SchemaError):
    """Lane configuration document has an invalid shape or value."""

    default_code = ErrorCode.LANE_CONFIG_INVALID


def extract_parent(lane: str) -> str:
    """``"Operations: Tooling"`` -> ``"Operations"``; parent-only lanes are returned trimmed."""

    trimmed = lane.strip()
    head, sep, _ = trimmed.partition(":")
    return head.strip() if sep else trimmed


def _lane_key(name: str) -> str:
    return name.strip().lower()


@dataclass(frozen=True, slots=True)
class LaneDefinition:
    name: str
    wip_limit: int = DEFAULT_WIP_LIMIT
    lock_policy: LockPolicy = DEFAULT_LOCK_POLICY
    wip_justification: str | None = None
    code_paths: tuple[str, ...] = ()

    @property
    def parent(self) -> str:
        return extract_parent(self.name)

    def to_dict(self) -> dict[str, object]:
        payload: dict[str, object] = {
            "name": self.name,
            "wip_limit": self.wip_limit,
            "lock_policy": self.lock_policy.value,
        }
        if self.wip_justification is not None:
            payload["wip_justification"] = self.wip_justification
        if self.code_paths:
            payload["code_paths"] = list(self.code_paths)
        return payload


@dataclass(frozen=True, slots=True)
class WipJustificationResult:
    valid: bool
    warning: str | None
    requires_justification: bool
    justification: str | None = None


class LaneRegistry:
    """Ordered lane definitions with case-insensitive lookup."""

    def __init__(self, definitions: Sequence[LaneDefinition] = ()) -> None:
        self._definitions = tuple(definitions)
        self._by_key: dict[str, LaneDefinition] = {}
        for definition in self._definitions:
            # First definition wins for duplicate names.
            self._by_key.setdefault(_lane_key(definition.name), definition)

    @classmethod
    def from_config(cls, payload: object) -> LaneRegistry:
        return cls(normalize_lane_config(payload))

    @classmethod
    def from_file(cls, path: str | Path) -> LaneRegistry:
        """Load the ``lanes`` section of a YAML config; a missing file yields an empty registry."""

        target = Path(path)
        if not target.is_file():
            return cls()
        try:
            payload = yaml.safe_load(target.read_text(encoding="utf-8"))
        except yaml.YAMLError as exc:
            raise LaneConfigError(f"{target}: invalid YAML: {exc}") from exc
        return cls.from_config(payload)

    @classmethod
    def coerce(cls, config: LaneRegistry | object) -> LaneRegistry:
        if isinstance(config, LaneRegistry):
            return config
        return cls.from_config(config)

    @property
    def definitions(self) -> tuple[LaneDefinition, ...]:
        return self._definitions

    def names(self) -> list[str]:
        return [definition.name for definition in self._definitions]

    def get(self, lane: str) -> LaneDefinition | None:
        return self._by_key.get(_lane_key(lane))

    def has_parent(self, parent: str) -> bool:
        key = _lane_key(parent)
        return any(_lane_key(definition.parent) == key for definition in self._definitions)

    def is_empty(self) -> bool:
        return not self._definitions

    def __contains__(self, lane: object) -> bool:
        return isinstance(lane, str) and _lane_key(lane) in self._by_key

    def __iter__(self) -> Iterator[LaneDefinition]:
        return iter(self._definitions)

    def __len__(self) -> int:
        return len(self._definitions)


def normalize_lane_config(payload: object) -> list[LaneDefinition]:
    """Flatten any accepted lane-config shape into ordered definitions."""

    if payload is None:
        return []
    if isinstance(payload, Mapping) and "lanes" in payload:
        payload = payload["lanes"]
        if payload is None:
            return []

    entries: list[tuple[str, object]] = []
    if isinstance(payload, list):
        entries.extend((f"lanes[{index}]", item) for index, item in enumerate(payload))
    elif isinstance(payload, Mapping):
        for key, value in payload.items():
            if key == "definitions":
                if not isinstance(value, list):
                    raise LaneConfigError(
                        "lanes.definitions must be a list",
                        expected="list of lane definitions",
                        found=type(value).__name__,
                    )
                entries.extend(
                    (f"lanes.definitions[{index}]", item) for index, item in enumerate(value)
                )
            elif isinstance(value, list):
                entries.extend((f"lanes.{key}[{index}]", item) for index, item in enumerate(value))
    else:
        raise LaneConfigError(
            "lane config must be a list or a mapping",
            expected="list, {definitions: [...]} or {<category>: [...]}",
            found=type(payload).__name__,
        )

    return [_parse_definition(path, item) for path, item in entries]


def _parse_definition(path: str, item: object) -> LaneDefinition:
    if isinstance(item, str):
        if not item.strip():
            raise LaneConfigError(f"{path}: lane name must not be empty")
        return LaneDefinition(name=item.strip())
    if not isinstance(item, Mapping):
        raise LaneConfigError(
            f"{path}: expected mapping or lane name",
            found=type(item).__name__,
        )

    name = item.get("name")
    if not isinstance(name, str) or not name.strip():
        raise LaneConfigError(f"{path}.name: lane name is required", found=repr(name))

    wip_limit = _parse_wip_limit(item.get("wip_limit"), f"{path}.wip_limit", name.strip())
    justification = item.get("wip_justification")
    if justification is not None and not isinstance(justification, str):
        raise LaneConfigError(
            f"{path}.wip_justification: expected string",
            found=type(justification).__name__,
        )
    raw_paths = item.get("code_paths") or []
    if not isinstance(raw_paths, list) or not all(isinstance(entry, str) for entry in raw_paths):
        raise LaneConfigError(f"{path}.code_paths: expected list of glob strings")

    return LaneDefinition(
        name=name.strip(),
        wip_limit=wip_limit,
        lock_policy=parse_lock_policy(item.get("lock_policy")),
        wip_justification=justification.strip() if isinstance(justification, str) else None,
        code_paths=tuple(raw_paths),
    )


def _parse_wip_limit(value: object, path: str, lane: str) -> int:
    if value is None:
        return DEFAULT_WIP_LIMIT
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        raise LaneConfigError(
            f"{path}: invalid wip_limit for lane {lane!r}",
            expected="integer >= 1",
            found=repr(value),
            remediation=f"Fix wip_limit under {LANE_DEFINITIONS_HINT}.",
        )
    return value


def parse_lock_policy(value: object) -> LockPolicy:
    if isinstance(value, str):
        try:
            return LockPolicy(value.strip().lower())
        except ValueError:
            return DEFAULT_LOCK_POLICY
    return DEFAULT_LOCK_POLICY


def get_wip_limit_for_lane(lane: str, config: LaneRegistry | object) -> int:
    definition = LaneRegistry.coerce(config).get(lane)
    return DEFAULT_WIP_LIMIT if definition is None else definition.wip_limit


def get_lock_policy_for_lane(lane: str, config: LaneRegistry | object) -> LockPolicy:
    definition = LaneRegistry.coerce(config).get(lane)
    return DEFAULT_LOCK_POLICY if definition is None else definition.lock_policy


def check_wip_justification(lane: str, config: LaneRegistry | object) -> WipJustificationResult:
    """Soft check: ``valid`` is always true; WIP > 1 without justification yields a warning."""

    definition = LaneRegistry.coerce(config).get(lane)
    if definition is None or definition.wip_limit <= 1:
        return WipJustificationResult(valid=True, warning=None, requires_justification=False)

    if definition.wip_justification:
        return WipJustificationResult(
            valid=True,
            warning=None,
            requires_justification=False,
            justification=definition.wip_justification,
        )

    warning = (
        f'Lane "{lane}" has WIP limit of {definition.wip_limit} but no wip_justification. '
        f"Add wip_justification under {LANE_DEFINITIONS_HINT} to suppress this warning. "
        f"{WIP_PHILOSOPHY}"
    )
    return WipJustificationResult(valid=True, warning=warning, requires_justification=True)


__all__ = [
    "DEFAULT_LOCK_POLICY",
    "LANE_DEFINITIONS_HINT",
    "LaneConfigError",
    "LaneDefinition",
    "LaneRegistry",
    "LockPolicy",
    "WIP_PHILOSOPHY",
    "WipJustificationResult",
    "check_wip_justification",
    "extract_parent",
    "get_lock_policy_for_lane",
    "get_wip_limit_for_lane",
    "normalize_lane_config",
    "parse_lock_policy",
]
