"""Lane admission control: WIP occupancy per lock policy.

The check is optimistic and advisory. Two truly simultaneous claims can both
observe a free lane; the push to the shared main line is what serializes them.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass

from lumenflow_core.domain.state_machine import WUStatus
from lumenflow_core.errors import ErrorCode, PolicyError
from lumenflow_core.lanes.registry import (
    LaneRegistry,
    LockPolicy,
    get_lock_policy_for_lane,
    get_wip_limit_for_lane,
)
from lumenflow_core.persistence.state_store import WUState

_COUNTED_STATUSES: dict[LockPolicy, tuple[WUStatus, ...]] = {
    LockPolicy.ALL: (WUStatus.IN_PROGRESS, WUStatus.BLOCKED),
    LockPolicy.ACTIVE: (WUStatus.IN_PROGRESS,),
    LockPolicy.NONE: (),
}


@dataclass(frozen=True, slots=True)
class LaneCheckResult:
    lane: str
    free: bool
    current_count: int
    wip_limit: int
    occupied_by: str | None
    in_progress_wus: tuple[str, ...]
    lock_policy: LockPolicy

    def to_dict(self) -> dict[str, object]:
        return {
            "lane": self.lane,
            "free": self.free,
            "current_count": self.current_count,
            "wip_limit": self.wip_limit,
            "occupied_by": self.occupied_by,
            "in_progress_wus": list(self.in_progress_wus),
            "lock_policy": self.lock_policy.value,
        }


class LaneOccupiedError(PolicyError):
    """The lane is at its WIP limit."""

    default_code = ErrorCode.LANE_OCCUPIED

    def __init__(self, result: LaneCheckResult, candidate_id: str) -> None:
        occupants = ", ".join(result.in_progress_wus)
        super().__init__(
            f"Lane {result.lane!r} is at capacity ({result.current_count}/{result.wip_limit}); "
            f"cannot admit {candidate_id}",
            expected=f"fewer than {result.wip_limit} occupying WU(s)",
            found=occupants or "none",
            remediation=(
                f"Finish or block one of: {occupants}\n"
                f"  lumenflow complete <WU-ID> | lumenflow block <WU-ID> --reason <text>\n"
                f"or claim {candidate_id} in a different lane."
            ),
            details=result.to_dict(),
        )
        self.result = result


def check_lane_free(
    snapshot: Mapping[str, WUState],
    lane: str,
    candidate_id: str,
    config: LaneRegistry | object,
) -> LaneCheckResult:
    """Count WUs occupying ``lane`` under its lock policy, excluding ``candidate_id``."""

    registry = LaneRegistry.coerce(config)
    wip_limit = get_wip_limit_for_lane(lane, registry)
    policy = get_lock_policy_for_lane(lane, registry)

    if policy is LockPolicy.NONE:
        return LaneCheckResult(
            lane=lane,
            free=True,
            current_count=0,
            wip_limit=wip_limit,
            occupied_by=None,
            in_progress_wus=(),
            lock_policy=policy,
        )

    target = lane.strip().lower()
    counted: list[str] = []
    for status in _COUNTED_STATUSES[policy]:
        for wu_id, state in snapshot.items():
            if wu_id == candidate_id or state.status is not status:
                continue
            if state.lane is not None and state.lane.strip().lower() == target:
                counted.append(wu_id)

    free = len(counted) < wip_limit
    return LaneCheckResult(
        lane=lane,
        free=free,
        current_count=len(counted),
        wip_limit=wip_limit,
        occupied_by=None if free or not counted else counted[0],
        in_progress_wus=tuple(counted),
        lock_policy=policy,
    )


def assert_lane_free(
    snapshot: Mapping[str, WUState],
    lane: str,
    candidate_id: str,
    config: LaneRegistry | object,
) -> LaneCheckResult:
    result = check_lane_free(snapshot, lane, candidate_id, config)
    if not result.free:
        raise LaneOccupiedError(result, candidate_id)
    return result


__all__ = [
    "LaneCheckResult",
    "LaneOccupiedError",
    "assert_lane_free",
    "check_lane_free",
]
