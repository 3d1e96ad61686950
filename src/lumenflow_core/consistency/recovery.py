"""Zombie claim recovery with a bounded per-WU attempt counter.

A zombie is an ``in_progress`` WU, not in branch-pr mode, whose workspace no
longer exists. Recovery appends a ``release`` event (``in_progress -> ready``)
and resets the document status. With a git engine both writes land on main as
one micro-worktree commit; ``in_place`` (or no engine) writes the current
checkout. Each attempt is counted in ``<recovery_dir>/<WU-ID>.recovery``;
once the configured maximum is reached the next attempt escalates instead of
retrying. A successful recovery clears the counter.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import structlog

from lumenflow_core.constants import MAX_RECOVERY_ATTEMPTS, RECOVERY_SUFFIX
from lumenflow_core.domain.events import format_timestamp
from lumenflow_core.domain.ids import validate_wu_id
from lumenflow_core.domain.state_machine import WUStatus
from lumenflow_core.errors import ConsistencyError, ErrorCode, LumenFlowError, LumenFlowIOError
from lumenflow_core.integration_plane.git_engine import GitEngine, PushRejectedError
from lumenflow_core.integration_plane.micro_worktree import MicroWorktreeChange, run_micro_worktree
from lumenflow_core.layout import RepoLayout
from lumenflow_core.persistence.state_store import Clock
from lumenflow_core.utils.fs import atomic_write

ZOMBIE_RELEASE_REASON = "zombie recovery: workspace missing"


class RecoveryError(ConsistencyError):
    """A recovery attempt failed; it may be retried until the attempt limit."""

    default_code = ErrorCode.RECOVERY_FAILED
    retryable = True


class RecoveryEscalationError(ConsistencyError):
    """The attempt limit was reached; a human has to intervene."""

    default_code = ErrorCode.RECOVERY_ESCALATED

    def __init__(self, wu_id: str, attempts: int, max_attempts: int) -> None:
        super().__init__(
            f"{wu_id}: recovery attempted {attempts} times (max {max_attempts}); manual intervention required",
            expected=f"fewer than {max_attempts} recovery attempts",
            found=str(attempts),
            remediation=(
                f"Inspect {wu_id} by hand, then either:\n"
                f"  lumenflow release {wu_id} --reason <text>\n"
                f"or recreate its worktree and reset the counter:\n"
                f"  lumenflow recover {wu_id} --reset"
            ),
            details={"wu_id": wu_id, "attempts": attempts, "max_attempts": max_attempts},
        )
        self.wu_id = wu_id
        self.attempts = attempts


@dataclass(frozen=True, slots=True)
class RecoveryOutcome:
    wu_id: str
    attempt: int
    released: bool
    message: str
    commit_sha: str | None = None

    def to_dict(self) -> dict[str, object]:
        return {
            "wu_id": self.wu_id,
            "attempt": self.attempt,
            "released": self.released,
            "message": self.message,
            "commit_sha": self.commit_sha,
        }


class RecoveryCounter:
    """JSON attempt counters: ``{"attempts": n, "lastAttempt": ts, "wuId": id}``."""

    def __init__(self, recovery_dir: str | Path) -> None:
        self._dir = Path(recovery_dir)

    def path_for(self, wu_id: str) -> Path:
        return self._dir / f"{validate_wu_id(wu_id)}{RECOVERY_SUFFIX}"

    def read(self, wu_id: str) -> int:
        path = self.path_for(wu_id)
        if not path.is_file():
            return 0
        try:
            payload = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError):
            # An unreadable counter restarts at zero rather than blocking recovery forever.
            return 0
        attempts = payload.get("attempts") if isinstance(payload, dict) else None
        return attempts if isinstance(attempts, int) and not isinstance(attempts, bool) and attempts > 0 else 0

    def increment(self, wu_id: str, *, now: datetime) -> int:
        attempts = self.read(wu_id) + 1
        payload = {"attempts": attempts, "lastAttempt": format_timestamp(now), "wuId": wu_id}
        try:
            atomic_write(self.path_for(wu_id), json.dumps(payload, indent=2) + "\n")
        except OSError as exc:
            raise LumenFlowIOError(f"unable to write recovery counter for {wu_id}: {exc}") from exc
        return attempts

    def clear(self, wu_id: str) -> bool:
        path = self.path_for(wu_id)
        if not path.exists():
            return False
        path.unlink()
        return True


def _utc_now() -> datetime:
    return datetime.now(tz=UTC)


class ZombieRecovery:
    def __init__(
        self,
        layout: RepoLayout,
        *,
        engine: GitEngine | None = None,
        clock: Clock | None = None,
        max_attempts: int | None = None,
        logger: Any | None = None,
    ) -> None:
        self._layout = layout
        self._engine = engine
        self._clock = clock if clock is not None else _utc_now
        self._max_attempts = (
            max_attempts
            if max_attempts is not None
            else layout.settings.max_recovery_attempts or MAX_RECOVERY_ATTEMPTS
        )
        self._logger = logger if logger is not None else structlog.get_logger(__name__)
        self.counter = RecoveryCounter(layout.recovery_dir)

    @property
    def max_attempts(self) -> int:
        return self._max_attempts

    def is_zombie(self, wu_id: str) -> bool:
        state = self._layout.state_store(logger=self._logger).get(validate_wu_id(wu_id))
        if state is None or state.status is not WUStatus.IN_PROGRESS or state.is_branch_pr:
            return False
        document = self._layout.documents(logger=self._logger).find(wu_id)
        return self._layout.find_workspace(wu_id, lane=state.lane, document=document) is None

    def recover(self, wu_id: str, *, in_place: bool = False) -> RecoveryOutcome:
        """Release a zombie claim, counting the attempt; escalate past the limit.

        A rejected push propagates as :class:`PushRejectedError` once main is
        rolled back; the attempt still counts.
        """

        validate_wu_id(wu_id)
        attempts = self.counter.read(wu_id)
        if attempts >= self._max_attempts:
            self._logger.error("recovery_escalated", wu_id=wu_id, attempts=attempts)
            raise RecoveryEscalationError(wu_id, attempts, self._max_attempts)

        if not self.is_zombie(wu_id):
            return RecoveryOutcome(wu_id=wu_id, attempt=attempts, released=False, message="not a zombie claim")

        attempt = self.counter.increment(wu_id, now=self._clock())
        self._logger.info("recovery_attempt", wu_id=wu_id, attempt=attempt, max_attempts=self._max_attempts)
        try:
            commit_sha = self._release(wu_id, in_place=in_place)
        except PushRejectedError:
            raise
        except LumenFlowError as exc:
            self._logger.warning("recovery_attempt_failed", wu_id=wu_id, attempt=attempt, error=exc.message)
            raise RecoveryError(
                f"{wu_id}: recovery attempt {attempt} failed: {exc.message}",
                remediation=f"Retry with `lumenflow recover {wu_id}` ({self._max_attempts - attempt} attempt(s) left).",
                details={"wu_id": wu_id, "attempt": attempt},
            ) from exc

        self.counter.clear(wu_id)
        self._logger.info("recovery_succeeded", wu_id=wu_id, attempt=attempt, commit=commit_sha)
        return RecoveryOutcome(
            wu_id=wu_id,
            attempt=attempt,
            released=True,
            message=ZOMBIE_RELEASE_REASON,
            commit_sha=commit_sha,
        )

    def _release(self, wu_id: str, *, in_place: bool) -> str | None:
        if in_place or self._engine is None:
            self._release_in(self._layout, wu_id)
            return None

        def execute(worktree: Path) -> MicroWorktreeChange:
            touched = self._release_in(self._layout.rebase(worktree), wu_id)
            return MicroWorktreeChange.of(f"fix(recover): release zombie claim {wu_id}", touched)

        result = run_micro_worktree(
            self._engine,
            operation="recover",
            wu_id=wu_id,
            execute=execute,
            push=None if self._layout.settings.push else False,
            logger=self._logger,
        )
        return result.commit_sha

    def _release_in(self, layout: RepoLayout, wu_id: str) -> list[str]:
        store = layout.state_store(clock=self._clock, logger=self._logger)
        store.release(wu_id, reason=ZOMBIE_RELEASE_REASON)
        touched = [layout.relative(store.event_log.path)]
        repository = layout.documents(logger=self._logger)
        document = repository.find(wu_id)
        if document is not None:
            document.set_status(WUStatus.READY)
            touched.append(layout.relative(repository.save(document)))
        return touched


__all__ = [
    "RecoveryCounter",
    "RecoveryError",
    "RecoveryEscalationError",
    "RecoveryOutcome",
    "ZOMBIE_RELEASE_REASON",
    "ZombieRecovery",
]
