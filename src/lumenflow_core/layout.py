"""Resolved on-disk layout of one repository checkout."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any

from lumenflow_core.config.schema import Settings
from lumenflow_core.domain.models import WUDocument
from lumenflow_core.integration_plane.workspace_context import default_worktree_path
from lumenflow_core.persistence.stamps import StampStore
from lumenflow_core.persistence.state_store import Clock, WUStateStore
from lumenflow_core.persistence.wu_documents import WUDocumentRepository


@dataclass(frozen=True, slots=True)
class RepoLayout:
    """Settings bound to a checkout root.

    ``rebase`` keeps the settings and swaps the root, so the same repair code can
    run against the main checkout or a throwaway micro-worktree.
    """

    root: Path
    settings: Settings = field(default_factory=Settings.defaults)

    @classmethod
    def at(cls, root: Path | str, settings: Settings | None = None) -> RepoLayout:
        return cls(root=Path(root).resolve(), settings=settings if settings is not None else Settings.defaults())

    def rebase(self, root: Path | str) -> RepoLayout:
        return replace(self, root=Path(root))

    @property
    def state_dir(self) -> Path:
        return self.settings.resolve(self.root, self.settings.state_dir)

    @property
    def stamps_dir(self) -> Path:
        return self.settings.resolve(self.root, self.settings.stamps_dir)

    @property
    def archive_dir(self) -> Path:
        return self.settings.resolve(self.root, self.settings.archive_dir)

    @property
    def recovery_dir(self) -> Path:
        return self.settings.resolve(self.root, self.settings.recovery_dir)

    @property
    def wu_dir(self) -> Path:
        return self.settings.resolve(self.root, self.settings.wu_dir)

    @property
    def worktrees_dir(self) -> Path:
        return self.settings.resolve(self.root, self.settings.worktrees_dir)

    @property
    def lane_config(self) -> Path:
        return self.settings.resolve(self.root, self.settings.lane_config)

    @property
    def lane_inference(self) -> Path:
        return self.settings.resolve(self.root, self.settings.lane_inference)

    def relative(self, path: Path) -> str:
        """Repository-relative POSIX path, or the absolute path when outside the root."""

        try:
            return path.relative_to(self.root).as_posix()
        except ValueError:
            return path.as_posix()

    def state_store(self, *, clock: Clock | None = None, logger: Any | None = None) -> WUStateStore:
        return WUStateStore(self.state_dir, clock=clock, logger=logger)

    def documents(self, *, logger: Any | None = None) -> WUDocumentRepository:
        return WUDocumentRepository(self.wu_dir, logger=logger)

    def stamps(self) -> StampStore:
        return StampStore(self.stamps_dir)

    def find_workspace(self, wu_id: str, *, lane: str | None = None, document: WUDocument | None = None) -> Path | None:
        """Locate the live workspace directory for ``wu_id``, if any."""

        candidates: list[Path] = []
        if document is not None and document.worktree_path:
            recorded = Path(document.worktree_path)
            candidates.append(recorded if recorded.is_absolute() else self.root / recorded)
        if lane:
            candidates.append(
                self.root / default_worktree_path(lane, wu_id, worktrees_dir=self.settings.worktrees_dir)
            )
        for candidate in candidates:
            if candidate.is_dir():
                return candidate

        suffix = f"-{wu_id.lower()}"
        if self.worktrees_dir.is_dir():
            for entry in sorted(self.worktrees_dir.iterdir()):
                if entry.is_dir() and entry.name.endswith(suffix):
                    return entry
        return None


__all__ = ["RepoLayout"]
