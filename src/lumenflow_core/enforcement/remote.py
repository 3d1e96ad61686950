"""Remote enforcement surface for agent-tooling protocols.

Only the tool definition and its handler live here; hosting a protocol server
is left to the embedding application.
"""

from __future__ import annotations

from collections.abc import Mapping
from pathlib import Path
from typing import Final

from lumenflow_core.config.schema import Settings
from lumenflow_core.enforcement.policy import Decision, DecisionRule, WriteRequest, decide
from lumenflow_core.enforcement.surfaces import (
    BranchLookup,
    collect_enforcement_state,
    git_branch_lookup,
)

TOOL_NAME: Final[str] = "lumenflow_check_write"

TOOL_DESCRIPTOR: Final[dict[str, object]] = {
    "name": TOOL_NAME,
    "description": (
        "Check whether a file write is allowed under LumenFlow worktree discipline. "
        "Returns allowed=false with a reason and next step when the write must move into a WU worktree."
    ),
    "inputSchema": {
        "type": "object",
        "properties": {
            "tool_name": {"type": "string", "description": "Tool about to run, e.g. Write or Edit."},
            "file_path": {"type": "string", "description": "Target path, absolute or repository-relative."},
        },
        "required": ["tool_name"],
    },
}


def call_remote_tool(
    arguments: Mapping[str, object],
    *,
    repo_root: Path | str,
    settings: Settings | None = None,
    branch_lookup: BranchLookup | None = None,
) -> dict[str, object]:
    """Handle one ``lumenflow_check_write`` call and return a JSON-ready result."""

    tool_name = arguments.get("tool_name")
    file_path = arguments.get("file_path")
    if not isinstance(tool_name, str) or not tool_name.strip():
        return Decision(
            allowed=False,
            rule=DecisionRule.MALFORMED_INPUT,
            reason="tool_name is required",
        ).to_dict()

    root = Path(repo_root).resolve()
    state = collect_enforcement_state(root, settings)
    lookup = branch_lookup if branch_lookup is not None else git_branch_lookup(settings)
    request = WriteRequest(
        tool_name=tool_name.strip(),
        file_path=file_path if isinstance(file_path, str) else None,
    )
    return decide(request, state, branch=lookup(root)).to_dict()


__all__ = ["TOOL_DESCRIPTOR", "TOOL_NAME", "call_remote_tool"]
