"""
lumenflow-core — lane registry and admission control

File: src/lumenflow_core/lanes/__init__.py

Purpose
- WIP limits, lock policies, sub-lane taxonomy and suggestion-only inference.
"""

from lumenflow_core.lanes.admission import (
    LaneCheckResult,
    LaneOccupiedError,
    assert_lane_free,
    check_lane_free,
)
from lumenflow_core.lanes.inference import LaneSuggestion, infer_sub_lane
from lumenflow_core.lanes.registry import (
    LaneConfigError,
    LaneDefinition,
    LaneRegistry,
    LockPolicy,
    check_wip_justification,
    extract_parent,
    get_lock_policy_for_lane,
    get_wip_limit_for_lane,
)
from lumenflow_core.lanes.taxonomy import (
    LaneFormatError,
    LaneTaxonomy,
    LaneValidation,
    validate_lane_format,
)

__all__ = [
    "LaneCheckResult",
    "LaneConfigError",
    "LaneDefinition",
    "LaneFormatError",
    "LaneOccupiedError",
    "LaneRegistry",
    "LaneSuggestion",
    "LaneTaxonomy",
    "LaneValidation",
    "LockPolicy",
    "assert_lane_free",
    "check_lane_free",
    "check_wip_justification",
    "extract_parent",
    "get_lock_policy_for_lane",
    "get_wip_limit_for_lane",
    "infer_sub_lane",
    "validate_lane_format",
]
