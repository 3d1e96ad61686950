"""
lumenflow-core — sub-lane taxonomy.

File: src/lumenflow_core/lanes/taxonomy.py

Purpose
- Load the ``Parent -> Sub-lane -> {code_paths, keywords}`` taxonomy.
- Validate lane strings of the form ``Parent`` or ``Parent: Sub``.

Rules
- At most one colon; exactly one space after it and none before it.
- Parent lookup is case-insensitive; sub-lane lookup is exact.
- When a taxonomy exists for a parent, a bare parent is rejected in strict
  mode and only logged in non-strict mode.
- Parents without a taxonomy accept bare usage and reject sub-lanes.
"""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Final

import structlog
import yaml

from lumenflow_core.constants import LANE_INFERENCE_FILE
from lumenflow_core.errors import ErrorCode, SchemaError
from lumenflow_core.lanes.registry import LANE_DEFINITIONS_HINT, LaneRegistry

LANE_SEPARATOR: Final[str] = ":"


class LaneFormatError(SchemaError):
    """Lane string is malformed or names an unknown lane."""

    default_code = ErrorCode.INVALID_LANE_FORMAT

    def __init__(
        self,
        message: str,
        *,
        lane: str,
        valid_sub_lanes: tuple[str, ...] = (),
        remediation: str | None = None,
    ) -> None:
        details: dict[str, object] = {"lane": lane}
        if valid_sub_lanes:
            details["valid_sub_lanes"] = list(valid_sub_lanes)
        super().__init__(
            message,
            expected='"Parent" or "Parent: Sub"',
            found=lane,
            remediation=remediation,
            details=details,
        )
        self.lane = lane
        self.valid_sub_lanes = valid_sub_lanes


@dataclass(frozen=True, slots=True)
class SubLaneRule:
    name: str
    code_paths: tuple[str, ...] = ()
    keywords: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class LaneValidation:
    valid: bool
    parent: str
    sub_lane: str | None = None
    warning: str | None = None


class LaneTaxonomy:
    """Ordered parent -> sub-lane rules."""

    def __init__(self, parents: Mapping[str, tuple[SubLaneRule, ...]] | None = None) -> None:
        self._parents: dict[str, tuple[SubLaneRule, ...]] = dict(parents or {})

    @classmethod
    def from_mapping(cls, payload: object) -> LaneTaxonomy:
        if payload is None:
            return cls()
        if not isinstance(payload, Mapping):
            raise LaneFormatError(
                f"lane taxonomy must be a mapping, got {type(payload).__name__}",
                lane="<taxonomy>",
            )
        parents: dict[str, tuple[SubLaneRule, ...]] = {}
        for parent, subs in payload.items():
            if not isinstance(parent, str):
                continue
            rules: list[SubLaneRule] = []
            if isinstance(subs, Mapping):
                for sub_name, rule in subs.items():
                    if not isinstance(sub_name, str):
                        continue
                    body = rule if isinstance(rule, Mapping) else {}
                    rules.append(
                        SubLaneRule(
                            name=sub_name.strip(),
                            code_paths=_str_tuple(body.get("code_paths")),
                            keywords=_str_tuple(body.get("keywords")),
                        )
                    )
            parents[parent.strip()] = tuple(rules)
        return cls(parents)

    @classmethod
    def from_file(cls, path: str | Path) -> LaneTaxonomy:
        target = Path(path)
        if not target.is_file():
            return cls()
        try:
            payload = yaml.safe_load(target.read_text(encoding="utf-8"))
        except yaml.YAMLError as exc:
            raise LaneFormatError(f"{target}: invalid YAML: {exc}", lane=str(target)) from exc
        return cls.from_mapping(payload)

    def find_parent(self, parent: str) -> str | None:
        key = parent.strip().lower()
        for name in self._parents:
            if name.lower() == key:
                return name
        return None

    def has_taxonomy(self, parent: str) -> bool:
        return self.find_parent(parent) is not None

    def sub_lanes(self, parent: str) -> tuple[str, ...]:
        name = self.find_parent(parent)
        if name is None:
            return ()
        return tuple(rule.name for rule in self._parents[name])

    def is_valid_sub_lane(self, parent: str, sub_lane: str) -> bool:
        return sub_lane.strip() in self.sub_lanes(parent)

    def iter_rules(self) -> Iterator[tuple[str, SubLaneRule]]:
        for parent, rules in self._parents.items():
            for rule in rules:
                yield parent, rule

    def __bool__(self) -> bool:
        return bool(self._parents)


def _str_tuple(value: object) -> tuple[str, ...]:
    if not isinstance(value, list):
        return ()
    return tuple(item for item in value if isinstance(item, str) and item.strip())


def validate_lane_format(
    lane: str,
    taxonomy: LaneTaxonomy,
    *,
    registry: LaneRegistry | None = None,
    strict: bool = True,
    logger: Any | None = None,
) -> LaneValidation:
    """Validate ``lane``; raise :class:`LaneFormatError` on rejection."""

    log = logger if logger is not None else structlog.get_logger(__name__)
    trimmed = lane.strip()
    if not trimmed:
        raise LaneFormatError("Invalid lane format: lane must not be empty", lane=lane)

    if trimmed.count(LANE_SEPARATOR) > 1:
        raise LaneFormatError(
            f'Invalid lane format: "{lane}" contains multiple colons. '
            'Expected format: "Parent: Subdomain" or "Parent"',
            lane=lane,
        )

    colon = trimmed.find(LANE_SEPARATOR)
    if colon == -1:
        return _validate_parent_only(trimmed, taxonomy, registry, strict, log)

    if colon > 0 and trimmed[colon - 1] == " ":
        raise LaneFormatError(
            f'Invalid lane format: "{lane}" has space before colon. '
            'Expected format: "Parent: Subdomain" (space AFTER colon only)',
            lane=lane,
        )
    if colon + 1 >= len(trimmed) or trimmed[colon + 1] != " ":
        raise LaneFormatError(
            f'Invalid lane format: "{lane}" is missing space after colon. '
            'Expected format: "Parent: Subdomain"',
            lane=lane,
        )

    parent = trimmed[:colon].strip()
    sub_lane = trimmed[colon + 2 :].strip()
    _require_known_parent(parent, registry)

    if not taxonomy.has_taxonomy(parent):
        raise LaneFormatError(
            f'Parent lane "{parent}" does not support sub-lanes. '
            f"Use parent-only format or extend {LANE_INFERENCE_FILE}.",
            lane=lane,
        )
    if not taxonomy.is_valid_sub_lane(parent, sub_lane):
        valid = taxonomy.sub_lanes(parent)
        raise LaneFormatError(
            f'Unknown sub-lane: "{sub_lane}" for parent lane "{parent}". '
            f"Valid sub-lanes: {', '.join(valid)}",
            lane=lane,
            valid_sub_lanes=valid,
        )
    return LaneValidation(valid=True, parent=parent, sub_lane=sub_lane)


def _validate_parent_only(
    parent: str,
    taxonomy: LaneTaxonomy,
    registry: LaneRegistry | None,
    strict: bool,
    log: Any,
) -> LaneValidation:
    _require_known_parent(parent, registry)
    if not taxonomy.has_taxonomy(parent):
        return LaneValidation(valid=True, parent=parent)

    valid = taxonomy.sub_lanes(parent)
    message = (
        f'Parent-only lane "{parent}" blocked. Sub-lane required. '
        f"Valid: {', '.join(valid)}. "
        f'Format: "{parent}: <sublane>"'
    )
    if strict:
        raise LaneFormatError(message, lane=parent, valid_sub_lanes=valid)
    log.warning("parent_only_lane", lane=parent, valid_sub_lanes=list(valid))
    return LaneValidation(valid=True, parent=parent, warning=message)


def _require_known_parent(parent: str, registry: LaneRegistry | None) -> None:
    if registry is None or registry.is_empty():
        return
    if registry.has_parent(parent):
        return
    raise LaneFormatError(
        f'Unknown parent lane: "{parent}". Check {LANE_DEFINITIONS_HINT} for valid lanes.',
        lane=parent,
    )


__all__ = [
    "LANE_SEPARATOR",
    "LaneFormatError",
    "LaneTaxonomy",
    "LaneValidation",
    "SubLaneRule",
    "validate_lane_format",
]
