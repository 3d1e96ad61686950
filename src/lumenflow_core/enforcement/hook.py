"""Out-of-process enforcement hook (``lumenflow-enforce``).

Reads ``{"tool_name": ..., "tool_input": {"file_path": ...}}`` from stdin and
exits 0 to allow or 2 to block, with the reason on stderr. Unparseable input
exits 0 so unrelated tooling is never blocked by a broken payload; so does a
failure to read the enforcement state (git or filesystem errors), reported on
stderr.
"""

from __future__ import annotations

import json
import os
import sys
from pathlib import Path
from typing import TextIO

from lumenflow_core.config.loader import ConfigLoadError, load_settings
from lumenflow_core.config.schema import ConfigValidationError, Settings
from lumenflow_core.enforcement.surfaces import BranchLookup, check_subprocess
from lumenflow_core.errors import LumenFlowError
from lumenflow_core.observability.logging import configure_logging, get_logger

EXIT_ALLOW = 0
EXIT_BLOCK = 2
PROJECT_DIR_ENV = "LUMENFLOW_PROJECT_DIR"

logger = get_logger(__name__)


def run_hook(
    stdin_text: str,
    *,
    project_dir: Path | str,
    stderr: TextIO | None = None,
    settings: Settings | None = None,
    branch_lookup: BranchLookup | None = None,
) -> int:
    err = stderr if stderr is not None else sys.stderr
    try:
        payload = json.loads(stdin_text) if stdin_text.strip() else None
    except json.JSONDecodeError:
        logger.debug("hook_input_unparseable")
        return EXIT_ALLOW

    try:
        decision = check_subprocess(
            payload,
            repo_root=project_dir,
            settings=settings,
            branch_lookup=branch_lookup,
        )
    except (LumenFlowError, OSError, UnicodeDecodeError) as exc:
        logger.warning("hook_state_unreadable", error=str(exc))
        err.write(f"lumenflow-enforce: unable to read enforcement state, allowing: {exc}\n")
        return EXIT_ALLOW
    if decision.allowed:
        logger.debug("hook_allowed", rule=decision.rule.value)
        return EXIT_ALLOW

    logger.info("hook_blocked", rule=decision.rule.value, reason=decision.reason)
    err.write(f"BLOCKED: {decision.reason}\n")
    if decision.suggestion:
        err.write(f"{decision.suggestion}\n")
    return EXIT_BLOCK


def main() -> int:
    project_dir = Path(os.environ.get(PROJECT_DIR_ENV) or Path.cwd())
    configure_logging("WARNING", json_output=True)
    try:
        settings = load_settings(repo_root=project_dir)
    except (ConfigLoadError, ConfigValidationError) as exc:
        logger.warning("hook_config_invalid", error=str(exc))
        settings = None
    if settings is not None:
        configure_logging(settings.log_level, json_output=settings.log_json)
    return run_hook(sys.stdin.read(), project_dir=project_dir, settings=settings)


if __name__ == "__main__":
    raise SystemExit(main())


__all__ = ["EXIT_ALLOW", "EXIT_BLOCK", "PROJECT_DIR_ENV", "main", "run_hook"]
