"""Write enforcement: one pure policy, three surfaces."""

from lumenflow_core.enforcement.hook import EXIT_ALLOW, EXIT_BLOCK, run_hook
from lumenflow_core.enforcement.policy import (
    WRITE_TOOLS,
    BranchPrClaim,
    Decision,
    DecisionRule,
    EnforcementState,
    WriteRequest,
    decide,
)
from lumenflow_core.enforcement.remote import TOOL_DESCRIPTOR, call_remote_tool
from lumenflow_core.enforcement.surfaces import (
    check_in_process,
    check_subprocess,
    collect_enforcement_state,
)

__all__ = [
    "BranchPrClaim",
    "Decision",
    "DecisionRule",
    "EXIT_ALLOW",
    "EXIT_BLOCK",
    "EnforcementState",
    "TOOL_DESCRIPTOR",
    "WRITE_TOOLS",
    "WriteRequest",
    "call_remote_tool",
    "check_in_process",
    "check_subprocess",
    "collect_enforcement_state",
    "decide",
    "run_hook",
]
