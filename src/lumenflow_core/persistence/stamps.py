"""Completion stamp markers (``<WU-ID>.done``)."""

from __future__ import annotations

from datetime import UTC, datetime
from pathlib import Path

from lumenflow_core.constants import STAMP_SUFFIX
from lumenflow_core.domain.ids import is_wu_id, validate_wu_id
from lumenflow_core.utils.fs import atomic_write


def stamp_body(wu_id: str, title: str | None, *, now: datetime | None = None) -> str:
    completed = (now or datetime.now(tz=UTC)).date().isoformat()
    return f"WU {wu_id} - {title or f'WU {wu_id}'}\nCompleted: {completed}\n"


class StampStore:
    def __init__(self, stamps_dir: str | Path) -> None:
        self._dir = Path(stamps_dir)

    @property
    def directory(self) -> Path:
        return self._dir

    def path_for(self, wu_id: str) -> Path:
        return self._dir / f"{validate_wu_id(wu_id)}{STAMP_SUFFIX}"

    def exists(self, wu_id: str) -> bool:
        return self.path_for(wu_id).is_file()

    def create(self, wu_id: str, title: str | None = None, *, now: datetime | None = None) -> Path | None:
        """Write the stamp unless it already exists; return the new path or ``None``."""

        path = self.path_for(wu_id)
        if path.exists():
            return None
        atomic_write(path, stamp_body(wu_id, title, now=now))
        return path

    def remove(self, wu_id: str) -> bool:
        path = self.path_for(wu_id)
        if not path.exists():
            return False
        path.unlink()
        return True

    def stamped_ids(self) -> list[str]:
        if not self._dir.is_dir():
            return []
        found = [path.name[: -len(STAMP_SUFFIX)] for path in self._dir.glob(f"*{STAMP_SUFFIX}")]
        return sorted(wu_id for wu_id in found if is_wu_id(wu_id))


__all__ = ["StampStore", "stamp_body"]
