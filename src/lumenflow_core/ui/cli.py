"""Command-line interface router for lumenflow-core."""

from __future__ import annotations

import argparse
import json
import sys
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path, PurePosixPath

from lumenflow_core.config.loader import dump_effective_config, load_config
from lumenflow_core.config.schema import Settings
from lumenflow_core.consistency import (
    ConsistencyChecker,
    RecoveryCounter,
    RepairEngine,
    ZombieRecovery,
    remediate_duplicates,
)
from lumenflow_core.domain.events import WUEvent, format_timestamp
from lumenflow_core.domain.ids import validate_wu_id
from lumenflow_core.domain.models import ClaimMode, WUDocument
from lumenflow_core.domain.state_machine import WUStatus, parse_status
from lumenflow_core.enforcement import check_in_process
from lumenflow_core.integration_plane import (
    GitEngine,
    GitEngineError,
    RepoContext,
    assert_write_allowed,
    default_lane_branch,
    default_worktree_path,
    resolve_workspace_context,
)
from lumenflow_core.lanes import (
    LaneOccupiedError,
    LaneRegistry,
    LaneTaxonomy,
    check_lane_free,
    check_wip_justification,
    infer_sub_lane,
    validate_lane_format,
)
from lumenflow_core.layout import RepoLayout
from lumenflow_core.observability.logging import configure_logging, correlation_scope
from lumenflow_core.persistence.archival import archive_wu_events
from lumenflow_core.persistence.event_log import repair_state_file
from lumenflow_core.persistence.state_store import WUStateStore


@dataclass(frozen=True, slots=True)
class CLIError(RuntimeError):
    """Typed CLI failure with an explicit process exit code."""

    message: str
    exit_code: int = 1

    def __str__(self) -> str:
        return self.message


# ----- Parser


def build_parser() -> argparse.ArgumentParser:
    """Build the argparse command router for all supported CLI workflows."""

    parser = argparse.ArgumentParser(
        prog="lumenflow",
        description=(
            "lumenflow-core: work-unit coordination for parallel agents.\n\n"
            "Common workflows:\n"
            "  lumenflow claim WU-12 --lane 'Framework: Core' --title 'Add parser'\n"
            "  lumenflow status               Show derived WU state\n"
            "  lumenflow check                Audit log, documents and stamps\n"
            "  lumenflow repair               Fix drift in one micro-worktree commit\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--repo-root",
        default=".",
        help="Repository root directory (default: current working directory).",
    )
    common.add_argument(
        "--config",
        dest="config_path",
        default=None,
        help="Path to lumenflow TOML config (default: ./lumenflow.toml if present).",
    )
    common.add_argument(
        "--log-level",
        default=None,
        help="Override logging.level for this invocation.",
    )
    common.add_argument("--json", action="store_true", default=False, help="Emit JSON output.")

    subparsers = parser.add_subparsers(dest="command", required=True)

    # status --------------------------------------------------------------
    status_parser = subparsers.add_parser(
        "status",
        parents=[common],
        help="Show derived WU state from the event log",
        description=(
            "Replay the event log and print the current status of each WU.\n\n"
            "Examples:\n"
            "  lumenflow status\n"
            "  lumenflow status WU-12\n"
            "  lumenflow status --lane 'Framework: Core' --status in_progress\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    status_parser.add_argument("wu_id", nargs="?", default=None)
    status_parser.add_argument("--status", dest="status_filter", default=None)
    status_parser.add_argument("--lane", default=None)
    status_parser.set_defaults(handler=_cmd_status)

    # claim ---------------------------------------------------------------
    claim_parser = subparsers.add_parser(
        "claim",
        parents=[common],
        help="Claim a WU in a lane",
        description=(
            "Validate the lane, check its WIP limit and append a claim event.\n\n"
            "Examples:\n"
            "  lumenflow claim WU-12 --lane 'Framework: Core' --title 'Add parser'\n"
            "  lumenflow claim WU-12 --mode branch-pr\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    claim_parser.add_argument("wu_id")
    claim_parser.add_argument("--lane", default=None)
    claim_parser.add_argument("--title", default=None)
    claim_parser.add_argument(
        "--mode",
        choices=[mode.value for mode in ClaimMode],
        default=ClaimMode.WORKSPACE.value,
    )
    claim_parser.add_argument("--branch", default=None, help="Branch recorded for branch-pr claims.")
    claim_parser.add_argument(
        "--force",
        action="store_true",
        default=False,
        help="Claim even when the lane is at its WIP limit.",
    )
    claim_parser.set_defaults(handler=_cmd_claim)

    # block / unblock / complete / release ---------------------------------
    block_parser = subparsers.add_parser("block", parents=[common], help="Block an in-progress WU")
    block_parser.add_argument("wu_id")
    block_parser.add_argument("--reason", default=None)
    block_parser.set_defaults(handler=_cmd_block)

    unblock_parser = subparsers.add_parser("unblock", parents=[common], help="Resume a blocked WU")
    unblock_parser.add_argument("wu_id")
    unblock_parser.set_defaults(handler=_cmd_unblock)

    complete_parser = subparsers.add_parser(
        "complete",
        parents=[common],
        help="Mark a WU done, write its stamp and lock its document",
    )
    complete_parser.add_argument("wu_id")
    complete_parser.set_defaults(handler=_cmd_complete)

    release_parser = subparsers.add_parser(
        "release",
        parents=[common],
        help="Return an in-progress WU to ready",
    )
    release_parser.add_argument("wu_id")
    release_parser.add_argument("--reason", default=None)
    release_parser.set_defaults(handler=_cmd_release)

    checkpoint_parser = subparsers.add_parser(
        "checkpoint",
        parents=[common],
        help="Record a progress checkpoint without changing status",
    )
    checkpoint_parser.add_argument("wu_id")
    checkpoint_parser.add_argument("--note", required=True)
    checkpoint_parser.add_argument("--session-id", default=None)
    checkpoint_parser.add_argument("--progress", default=None)
    checkpoint_parser.add_argument("--next-steps", default=None)
    checkpoint_parser.set_defaults(handler=_cmd_checkpoint)

    # lane ----------------------------------------------------------------
    lane_parser = subparsers.add_parser(
        "lane",
        help="Lane admission, format validation and inference",
        description=(
            "Examples:\n"
            "  lumenflow lane check 'Framework: Core'\n"
            "  lumenflow lane validate 'Framework: Core'\n"
            "  lumenflow lane suggest --path src/parser.py --description 'parser fix'\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    lane_commands = lane_parser.add_subparsers(dest="lane_command", required=True)

    lane_check = lane_commands.add_parser("check", parents=[common], help="Report lane occupancy")
    lane_check.add_argument("lane")
    lane_check.add_argument("--candidate", default=None, help="WU id excluded from the count.")
    lane_check.set_defaults(handler=_cmd_lane_check)

    lane_validate = lane_commands.add_parser("validate", parents=[common], help="Validate lane format")
    lane_validate.add_argument("lane")
    lane_validate.set_defaults(handler=_cmd_lane_validate)

    lane_suggest = lane_commands.add_parser("suggest", parents=[common], help="Suggest a sub-lane")
    lane_suggest.add_argument("--path", dest="paths", action="append", default=[])
    lane_suggest.add_argument("--description", default="")
    lane_suggest.set_defaults(handler=_cmd_lane_suggest)

    # context / guard -----------------------------------------------------
    context_parser = subparsers.add_parser(
        "context",
        parents=[common],
        help="Resolve the WU workspace for a directory",
    )
    context_parser.add_argument("--cwd", default=None, help="Directory to resolve (default: cwd).")
    context_parser.set_defaults(handler=_cmd_context)

    guard_parser = subparsers.add_parser(
        "guard",
        parents=[common],
        help="Fail unless writes are allowed from the current checkout",
        description=(
            "Exit 0 inside a WU worktree or on a non-protected branch, 3 on main/master.\n\n"
            "Examples:\n"
            "  lumenflow guard --operation 'wu:edit'\n"
            "  lumenflow guard --tool Write --file-path README.md\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    guard_parser.add_argument("--operation", default="this operation")
    guard_parser.add_argument("--cwd", default=None)
    guard_parser.add_argument("--tool", default=None, help="Evaluate the write guard for this tool.")
    guard_parser.add_argument("--file-path", default=None)
    guard_parser.set_defaults(handler=_cmd_guard)

    # consistency ---------------------------------------------------------
    check_parser = subparsers.add_parser(
        "check",
        parents=[common],
        help="Detect divergence between log, documents and stamps",
        description=(
            "Exit 0 when consistent, 1 when violations are found.\n\n"
            "Examples:\n"
            "  lumenflow check\n"
            "  lumenflow check WU-12 --json\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    check_parser.add_argument("wu_id", nargs="?", default=None)
    check_parser.set_defaults(handler=_cmd_check)

    repair_parser = subparsers.add_parser(
        "repair",
        parents=[common],
        help="Repair detected violations",
    )
    repair_parser.add_argument("wu_id", nargs="?", default=None)
    repair_parser.add_argument(
        "--in-place",
        action="store_true",
        default=False,
        help="Write fixes into the current checkout instead of a micro-worktree commit.",
    )
    repair_parser.set_defaults(handler=_cmd_repair)

    dedupe_parser = subparsers.add_parser(
        "dedupe",
        parents=[common],
        help="Remap duplicate WU ids (dry run unless --apply)",
    )
    dedupe_parser.add_argument("--apply", action="store_true", default=False)
    dedupe_parser.set_defaults(handler=_cmd_dedupe)

    recover_parser = subparsers.add_parser(
        "recover",
        parents=[common],
        help="Release a zombie claim whose workspace is gone",
    )
    recover_parser.add_argument("wu_id")
    recover_parser.add_argument(
        "--reset",
        action="store_true",
        default=False,
        help="Clear the recovery attempt counter instead of recovering.",
    )
    recover_parser.add_argument(
        "--in-place",
        action="store_true",
        default=False,
        help="Release in the current checkout instead of a micro-worktree commit.",
    )
    recover_parser.set_defaults(handler=_cmd_recover)

    # maintenance ---------------------------------------------------------
    archive_parser = subparsers.add_parser(
        "archive",
        parents=[common],
        help="Move old done-WU events into monthly archive buckets",
        description=(
            "Examples:\n"
            "  lumenflow archive --dry-run\n"
            "  lumenflow archive --archive-after 30d\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    archive_parser.add_argument("--archive-after", default=None)
    archive_parser.add_argument("--dry-run", action="store_true", default=False)
    archive_parser.set_defaults(handler=_cmd_archive)

    doctor_parser = subparsers.add_parser(
        "doctor-state",
        parents=[common],
        help="Back up the event log and drop malformed lines",
    )
    doctor_parser.set_defaults(handler=_cmd_doctor_state)

    config_parser = subparsers.add_parser(
        "config",
        parents=[common],
        help="Print the effective configuration",
    )
    config_parser.set_defaults(handler=_cmd_config)

    return parser


def run_cli(argv: Sequence[str] | None = None) -> int:
    """Parse argv, route to a command handler, and return process exit code."""

    parser = build_parser()
    namespace = parser.parse_args(list(argv) if argv is not None else None)
    handler = getattr(namespace, "handler", None)
    if not callable(handler):
        parser.print_help(sys.stderr)
        return 2

    try:
        result = handler(namespace)
    except CLIError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return exc.exit_code
    return int(result)


# ----- Command handlers


def _cmd_status(args: argparse.Namespace) -> int:
    layout = _layout(args)
    store = layout.state_store().load()

    wu_id = _optional_str(getattr(args, "wu_id", None))
    if wu_id is not None:
        states = [store.require(validate_wu_id(wu_id))]
    else:
        states = [store.get_all()[key] for key in sorted(store.get_all())]
        status_filter = _optional_str(getattr(args, "status_filter", None))
        if status_filter is not None:
            wanted = parse_status(status_filter)
            if wanted is None:
                raise CLIError(f"unknown status: {status_filter}", exit_code=2)
            states = [state for state in states if state.status is wanted]
        lane = _optional_str(getattr(args, "lane", None))
        if lane is not None:
            states = [state for state in states if state.lane is not None and state.lane.lower() == lane.lower()]

    if _flag(args, "json"):
        _emit_json(
            {
                "command": "status",
                "wus": [state.to_dict() for state in states],
                "replay_issues": [issue.to_dict() for issue in store.replay_issues],
            }
        )
        return 0

    if not states:
        print("No WUs recorded.")
    for state in states:
        print(f"{state.wu_id:<10} {state.status.value:<12} {state.lane or '-':<28} {state.title or ''}")
    for issue in store.replay_issues:
        print(f"warning: skipped event {issue.index} for {issue.wu_id}: {issue.message}", file=sys.stderr)
    return 0


def _cmd_claim(args: argparse.Namespace) -> int:
    layout = _layout(args)
    wu_id = validate_wu_id(_require_str(args.wu_id, "wu_id"))
    repository = layout.documents()
    document = repository.find(wu_id)

    lane = _optional_str(getattr(args, "lane", None)) or (document.lane if document is not None else None)
    title = _optional_str(getattr(args, "title", None)) or (document.title if document is not None else None)
    if lane is None or title is None:
        raise CLIError(f"{wu_id}: --lane and --title are required when no WU document provides them", exit_code=2)

    registry = LaneRegistry.from_file(layout.lane_config)
    validation = validate_lane_format(
        lane,
        LaneTaxonomy.from_file(layout.lane_inference),
        registry=registry,
        strict=layout.settings.strict_taxonomy,
    )
    justification = check_wip_justification(lane, registry)

    with correlation_scope(wu_id=wu_id, operation="claim"):
        store = layout.state_store().load()
        admission = check_lane_free(store.snapshot(), lane, wu_id, registry)
        if not admission.free and not _flag(args, "force"):
            raise LaneOccupiedError(admission, wu_id)

        mode = ClaimMode(args.mode)
        branch = _optional_str(getattr(args, "branch", None))
        engine: GitEngine | None = None
        workspace: _Workspace | None = None
        if mode is ClaimMode.BRANCH_PR:
            if branch is None:
                branch = default_lane_branch(lane, wu_id)
        else:
            engine = _git_engine(layout)
            if engine is None:
                raise CLIError(f"{wu_id}: workspace claims need a git repository; use --mode branch-pr", exit_code=2)
            workspace = _open_workspace(engine, layout, lane, wu_id)

        try:
            event = store.claim(wu_id, lane=lane, title=title, claimed_mode=mode, claimed_branch=branch)
        except Exception:
            if engine is not None and workspace is not None:
                _discard_workspace(engine, layout, workspace)
            raise

        worktree = None if workspace is None else workspace.path
        if document is not None:
            document.set_status(WUStatus.IN_PROGRESS)
            document.data["lane"] = lane
            document.data["claimed_at"] = format_timestamp(event.timestamp)
            document.data["claimed_mode"] = mode.value
            if worktree is not None:
                document.data["worktree_path"] = worktree.as_posix()
            if branch is not None:
                document.data["claimed_branch"] = branch
            repository.save(document)

    warnings = [item for item in (validation.warning, justification.warning) if item]
    if not admission.free:
        warnings.append(f"lane {lane!r} over its WIP limit ({admission.current_count}/{admission.wip_limit})")

    if _flag(args, "json"):
        _emit_json(
            {
                "command": "claim",
                "wu_id": wu_id,
                "lane": lane,
                "claimed_mode": mode.value,
                "claimed_branch": branch,
                "worktree_path": None if worktree is None else worktree.as_posix(),
                "admission": admission.to_dict(),
                "warnings": warnings,
            }
        )
        return 0

    for warning in warnings:
        print(f"warning: {warning}", file=sys.stderr)
    print(f"{wu_id} claimed in {lane} ({mode.value})")
    if worktree is not None:
        print(f"Workspace: {worktree.as_posix()}")
    elif branch is not None:
        print(f"Branch: {branch}")
    return 0


def _cmd_block(args: argparse.Namespace) -> int:
    return _transition(args, WUStatus.BLOCKED, lambda store, wu_id: store.block(wu_id, reason=args.reason))


def _cmd_unblock(args: argparse.Namespace) -> int:
    return _transition(args, WUStatus.IN_PROGRESS, lambda store, wu_id: store.unblock(wu_id))


def _cmd_release(args: argparse.Namespace) -> int:
    return _transition(
        args,
        WUStatus.READY,
        lambda store, wu_id: store.release(wu_id, reason=args.reason),
        close_workspace=True,
    )


def _cmd_complete(args: argparse.Namespace) -> int:
    layout = _layout(args)
    wu_id = validate_wu_id(_require_str(args.wu_id, "wu_id"))
    with correlation_scope(wu_id=wu_id, operation="complete"):
        store = layout.state_store().load()
        event = store.complete(wu_id)
        state = store.require(wu_id)
        stamp = layout.stamps().create(wu_id, state.title, now=event.timestamp)

        repository = layout.documents()
        document = repository.find(wu_id)
        if document is not None:
            document.set_status(WUStatus.DONE)
            document.data["locked"] = True
            document.data["completed_at"] = format_timestamp(event.timestamp)
            repository.save(document)
        workspace_warning = _close_workspace(layout, wu_id, state.lane, document)

    if workspace_warning is not None:
        print(f"warning: {workspace_warning}", file=sys.stderr)

    if _flag(args, "json"):
        _emit_json(
            {
                "command": "complete",
                "wu_id": wu_id,
                "status": WUStatus.DONE.value,
                "stamp": None if stamp is None else layout.relative(stamp),
            }
        )
        return 0
    print(f"{wu_id} -> done")
    return 0


def _cmd_checkpoint(args: argparse.Namespace) -> int:
    layout = _layout(args)
    wu_id = validate_wu_id(_require_str(args.wu_id, "wu_id"))
    store = layout.state_store().load()
    event = store.checkpoint(
        wu_id,
        note=_require_str(args.note, "note"),
        session_id=_optional_str(args.session_id),
        progress=_optional_str(args.progress),
        next_steps=_optional_str(args.next_steps),
    )
    if _flag(args, "json"):
        _emit_json({"command": "checkpoint", "event": event.to_dict()})
        return 0
    print(f"{wu_id} checkpoint recorded at {format_timestamp(event.timestamp)}")
    return 0


def _cmd_lane_check(args: argparse.Namespace) -> int:
    layout = _layout(args)
    lane = _require_str(args.lane, "lane")
    registry = LaneRegistry.from_file(layout.lane_config)
    candidate = _optional_str(getattr(args, "candidate", None)) or ""
    result = check_lane_free(layout.state_store().load().snapshot(), lane, candidate, registry)
    justification = check_wip_justification(lane, registry)

    if _flag(args, "json"):
        payload = result.to_dict()
        payload["warning"] = justification.warning
        _emit_json({"command": "lane check", "result": payload})
    else:
        state = "free" if result.free else f"occupied by {result.occupied_by}"
        print(f"{lane}: {state} ({result.current_count}/{result.wip_limit}, policy {result.lock_policy.value})")
        if justification.warning:
            print(f"warning: {justification.warning}", file=sys.stderr)
    return 0 if result.free else 1


def _cmd_lane_validate(args: argparse.Namespace) -> int:
    layout = _layout(args)
    validation = validate_lane_format(
        _require_str(args.lane, "lane"),
        LaneTaxonomy.from_file(layout.lane_inference),
        registry=LaneRegistry.from_file(layout.lane_config),
        strict=layout.settings.strict_taxonomy,
    )
    if _flag(args, "json"):
        _emit_json(
            {
                "command": "lane validate",
                "valid": validation.valid,
                "parent": validation.parent,
                "sub_lane": validation.sub_lane,
                "warning": validation.warning,
            }
        )
        return 0
    if validation.warning:
        print(f"warning: {validation.warning}", file=sys.stderr)
    print(f"valid: {args.lane}")
    return 0


def _cmd_lane_suggest(args: argparse.Namespace) -> int:
    layout = _layout(args)
    suggestion = infer_sub_lane(
        list(args.paths),
        args.description or "",
        LaneTaxonomy.from_file(layout.lane_inference),
    )
    if _flag(args, "json"):
        _emit_json(
            {
                "command": "lane suggest",
                "suggestion": None if suggestion is None else suggestion.to_dict(),
            }
        )
        return 0 if suggestion is not None else 1
    if suggestion is None:
        print("No lane suggestion: nothing in the taxonomy matched.")
        return 1
    confidence = "" if suggestion.confident else " (low confidence, parent only)"
    print(f"{suggestion.lane} score={suggestion.score}{confidence}")
    return 0


def _cmd_context(args: argparse.Namespace) -> int:
    repo_root = _repo_root(args)
    ctx = _repo_context(args, repo_root)
    resolved = resolve_workspace_context(ctx)
    if _flag(args, "json"):
        _emit_json(
            {
                "command": "context",
                "branch": ctx.branch,
                "context": None if resolved is None else resolved.to_dict(),
            }
        )
        return 0 if resolved is not None else 1
    if resolved is None:
        print(f"No WU context (branch: {ctx.branch or 'unknown'})")
        return 1
    print(f"{resolved.wu_id} lane={resolved.lane} source={resolved.source.value}")
    if resolved.workspace_path is not None:
        print(f"Workspace: {resolved.workspace_path}")
    return 0


def _cmd_guard(args: argparse.Namespace) -> int:
    tool = _optional_str(getattr(args, "tool", None))
    if tool is not None:
        layout = _layout(args)
        decision = check_in_process(
            tool,
            _optional_str(getattr(args, "file_path", None)),
            repo_root=layout.root,
            settings=layout.settings,
        )
        if _flag(args, "json"):
            _emit_json({"command": "guard", "decision": decision.to_dict()})
        elif not decision.allowed:
            print(f"BLOCKED: {decision.reason}", file=sys.stderr)
            if decision.suggestion:
                print(decision.suggestion, file=sys.stderr)
        return 0 if decision.allowed else 3

    repo_root = _repo_root(args)
    resolved = assert_write_allowed(_repo_context(args, repo_root), _require_str(args.operation, "operation"))
    if _flag(args, "json"):
        _emit_json(
            {
                "command": "guard",
                "allowed": True,
                "context": None if resolved is None else resolved.to_dict(),
            }
        )
    return 0


def _cmd_check(args: argparse.Namespace) -> int:
    layout = _layout(args)
    checker = ConsistencyChecker(layout)
    wu_id = _optional_str(getattr(args, "wu_id", None))
    report = checker.check(validate_wu_id(wu_id)) if wu_id is not None else checker.check_all()

    if _flag(args, "json"):
        _emit_json({"command": "check", "report": report.to_dict()})
        return 0 if report.valid else 1
    if report.valid:
        print(f"{wu_id or 'repository'}: consistent")
        return 0
    for violation in report.violations:
        marker = "auto" if violation.auto_repairable else "manual"
        print(f"[{violation.type.value}/{violation.kind.value}] {violation.affected_id}: {violation.description} ({marker})")
    return 1


def _cmd_repair(args: argparse.Namespace) -> int:
    layout = _layout(args)
    checker = ConsistencyChecker(layout)
    wu_id = _optional_str(getattr(args, "wu_id", None))
    report = checker.check(validate_wu_id(wu_id)) if wu_id is not None else checker.check_all()
    if report.valid:
        if _flag(args, "json"):
            _emit_json({"command": "repair", "result": {"success": True, "repaired": [], "errors": []}})
        else:
            print("Nothing to repair.")
        return 0

    engine = RepairEngine(layout, engine=_git_engine(layout))
    result = engine.repair(report, in_place=_flag(args, "in_place"))
    if _flag(args, "json"):
        _emit_json({"command": "repair", "result": result.to_dict()})
        return 0 if result.success else 1
    for line in result.repaired:
        print(f"repaired: {line}")
    for line in result.errors:
        print(f"error: {line}", file=sys.stderr)
    if result.commit_sha:
        print(f"Commit: {result.commit_sha}")
    return 0 if result.success else 1


def _cmd_dedupe(args: argparse.Namespace) -> int:
    layout = _layout(args)
    report = remediate_duplicates(layout, apply=_flag(args, "apply"))
    if _flag(args, "json"):
        _emit_json({"command": "dedupe", "report": report.to_dict()})
        return 0
    if not report.remaps:
        print("No duplicate WU ids.")
        return 0
    verb = "remapped" if report.applied else "would remap"
    for remap in report.remaps:
        print(f"{verb} {remap.old_id} ({layout.relative(remap.old_path)}) -> {remap.new_id}")
    if not report.applied:
        print("Dry run: re-run with --apply to write changes.")
    return 0


def _cmd_recover(args: argparse.Namespace) -> int:
    layout = _layout(args)
    wu_id = validate_wu_id(_require_str(args.wu_id, "wu_id"))
    if _flag(args, "reset"):
        cleared = RecoveryCounter(layout.recovery_dir).clear(wu_id)
        if _flag(args, "json"):
            _emit_json({"command": "recover", "wu_id": wu_id, "reset": cleared})
        else:
            print(f"{wu_id}: recovery counter {'cleared' if cleared else 'was not set'}")
        return 0

    recovery = ZombieRecovery(layout, engine=_git_engine(layout))
    outcome = recovery.recover(wu_id, in_place=_flag(args, "in_place"))
    if _flag(args, "json"):
        _emit_json({"command": "recover", "outcome": outcome.to_dict()})
        return 0
    print(f"{wu_id}: {outcome.message}")
    if outcome.commit_sha:
        print(f"Commit: {outcome.commit_sha}")
    return 0


def _cmd_archive(args: argparse.Namespace) -> int:
    layout = _layout(args)
    result = archive_wu_events(
        layout.state_dir,
        layout.archive_dir,
        archive_after=_optional_str(getattr(args, "archive_after", None)) or layout.settings.archive_after,
        dry_run=_flag(args, "dry_run"),
    )
    if _flag(args, "json"):
        _emit_json({"command": "archive", "result": result.to_dict()})
        return 0
    prefix = "Would archive" if result.dry_run else "Archived"
    print(f"{prefix} {len(result.archived_wu_ids)} WU(s), {result.archived_event_count} event(s)")
    print(f"Retained {len(result.retained_wu_ids)} WU(s), {result.retained_event_count} event(s)")
    return 0


def _cmd_doctor_state(args: argparse.Namespace) -> int:
    layout = _layout(args)
    path = layout.state_store().event_log.path
    result = repair_state_file(path)
    if _flag(args, "json"):
        _emit_json({"command": "doctor-state", "result": result.to_dict()})
        return 0
    print(f"{layout.relative(path)}: kept {result.lines_kept}, removed {result.lines_removed}")
    if result.backup_path is not None:
        print(f"Backup: {layout.relative(result.backup_path)}")
    for warning in result.warnings:
        print(f"  {warning}")
    return 0


def _cmd_config(args: argparse.Namespace) -> int:
    repo_root = _repo_root(args)
    config = load_config(
        _optional_str(getattr(args, "config_path", None)),
        repo_root=repo_root,
        cli_overrides=_cli_overrides(args),
    )
    if _flag(args, "json"):
        print(dump_effective_config(config))
        return 0
    print(json.dumps(config, indent=2, sort_keys=True, ensure_ascii=False))
    return 0


# ----- Helpers


def _transition(
    args: argparse.Namespace,
    target: WUStatus,
    record: Callable[[WUStateStore, str], WUEvent],
    *,
    close_workspace: bool = False,
) -> int:
    layout = _layout(args)
    wu_id = validate_wu_id(_require_str(args.wu_id, "wu_id"))
    workspace_warning: str | None = None
    with correlation_scope(wu_id=wu_id, operation=args.command):
        store = layout.state_store().load()
        event = record(store, wu_id)
        repository = layout.documents()
        document = repository.find(wu_id)
        if document is not None:
            document.set_status(target)
            repository.save(document)
        if close_workspace:
            workspace_warning = _close_workspace(layout, wu_id, store.require(wu_id).lane, document)

    if workspace_warning is not None:
        print(f"warning: {workspace_warning}", file=sys.stderr)
    if _flag(args, "json"):
        _emit_json({"command": args.command, "wu_id": wu_id, "status": target.value, "event": event.to_dict()})
        return 0
    print(f"{wu_id} -> {target.value}")
    return 0


@dataclass(frozen=True, slots=True)
class _Workspace:
    path: PurePosixPath
    branch: str
    created_branch: bool
    created_worktree: bool


def _open_workspace(engine: GitEngine, layout: RepoLayout, lane: str, wu_id: str) -> _Workspace:
    """Create the lane branch and its worktree, reusing either when already present."""

    relative = default_worktree_path(lane, wu_id, worktrees_dir=layout.settings.worktrees_dir)
    target = layout.root / relative
    branch = default_lane_branch(lane, wu_id)
    created_branch = not engine.branch_exists(branch)
    if created_branch:
        engine.create_branch(branch, engine.main_branch)
    if any(entry.path == target.resolve() for entry in engine.list_worktrees()):
        return _Workspace(relative, branch, created_branch, created_worktree=False)
    try:
        engine.add_worktree(target, branch)
    except GitEngineError:
        if created_branch:
            engine.delete_branch(branch)
        raise
    return _Workspace(relative, branch, created_branch, created_worktree=True)


def _discard_workspace(engine: GitEngine, layout: RepoLayout, workspace: _Workspace) -> None:
    if workspace.created_worktree:
        engine.remove_worktree(layout.root / workspace.path)
    if workspace.created_branch:
        engine.delete_branch(workspace.branch)


def _close_workspace(layout: RepoLayout, wu_id: str, lane: str | None, document: WUDocument | None) -> str | None:
    """Remove the WU's registered worktree when clean; return a warning when it stays."""

    engine = _git_engine(layout)
    if engine is None:
        return None
    path = layout.find_workspace(wu_id, lane=lane, document=document)
    if path is None or path.resolve() not in {entry.path for entry in engine.list_worktrees()}:
        return None
    try:
        engine.remove_worktree(path, force=False)
    except GitEngineError as exc:
        return f"workspace {layout.relative(path)} left in place: {exc}"
    return None


def _emit_json(payload: Mapping[str, object]) -> None:
    print(json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False))


def _repo_root(args: argparse.Namespace) -> Path:
    raw = _optional_str(getattr(args, "repo_root", None)) or "."
    path = Path(raw).expanduser().resolve()
    if not path.is_dir():
        raise CLIError(f"repository root does not exist or is not a directory: {path}", exit_code=2)
    return path


def _cli_overrides(args: argparse.Namespace) -> dict[str, object]:
    overrides: dict[str, object] = {}
    level = _optional_str(getattr(args, "log_level", None))
    if level is not None:
        overrides["logging.level"] = level.upper()
    return overrides


def _layout(args: argparse.Namespace) -> RepoLayout:
    repo_root = _repo_root(args)
    settings = Settings.from_config(
        load_config(
            _optional_str(getattr(args, "config_path", None)),
            repo_root=repo_root,
            cli_overrides=_cli_overrides(args),
        )
    )
    configure_logging(settings.log_level, json_output=settings.log_json)
    return RepoLayout.at(repo_root, settings)


def _git_engine(layout: RepoLayout) -> GitEngine | None:
    if not (layout.root / ".git").exists():
        return None
    return GitEngine(
        layout.root,
        main_branch=layout.settings.main_branch,
        remote=layout.settings.remote,
    )


def _repo_context(args: argparse.Namespace, repo_root: Path) -> RepoContext:
    cwd_arg = _optional_str(getattr(args, "cwd", None))
    cwd = Path(cwd_arg).expanduser().resolve() if cwd_arg is not None else Path.cwd()
    engine = GitEngine(repo_root)
    return RepoContext(cwd=cwd, repo_root=repo_root, branch_reader=engine.current_branch)


def _require_str(value: object, name: str) -> str:
    if isinstance(value, str) and value.strip():
        return value.strip()
    raise CLIError(f"missing required argument: {name}", exit_code=2)


def _optional_str(value: object) -> str | None:
    if isinstance(value, str):
        stripped = value.strip()
        if stripped:
            return stripped
    return None


def _flag(args: argparse.Namespace, name: str) -> bool:
    return bool(getattr(args, name, False))


__all__ = ["CLIError", "build_parser", "run_cli"]
