"""
lumenflow-core — WU document repository.

File: src/lumenflow_core/persistence/wu_documents.py

Purpose
- Read and write per-WU YAML documents under the configured WU directory.

Functional requirements
- ``yaml.safe_load`` / ``yaml.safe_dump`` only; key order is preserved on dump.
- Unknown keys round-trip untouched.
- Writes are atomic whole-file replacements.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import structlog
import yaml

from lumenflow_core.constants import WU_DOC_SUFFIX
from lumenflow_core.domain.ids import validate_wu_id
from lumenflow_core.domain.models import WUDocument
from lumenflow_core.errors import ErrorCode, LumenFlowIOError, NotFoundError, SchemaError
from lumenflow_core.utils.fs import atomic_write


class WUDocumentError(SchemaError):
    """A WU document is not a YAML mapping."""

    default_code = ErrorCode.INVALID_DOCUMENT


def parse_document(text: str, *, path: Path | None = None) -> WUDocument:
    try:
        payload = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise WUDocumentError(f"{path or '<document>'}: invalid YAML: {exc}") from exc
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise WUDocumentError(
            f"{path or '<document>'}: expected a mapping",
            expected="YAML mapping",
            found=type(payload).__name__,
        )
    return WUDocument(data=payload, path=path)


def dump_document(document: WUDocument) -> str:
    return yaml.safe_dump(
        document.data,
        sort_keys=False,
        allow_unicode=True,
        default_flow_style=False,
    )


class WUDocumentRepository:
    """Filesystem-backed store of ``<WU-ID>.yaml`` documents."""

    def __init__(self, wu_dir: str | Path, *, logger: Any | None = None) -> None:
        self._dir = Path(wu_dir)
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    @property
    def directory(self) -> Path:
        return self._dir

    def path_for(self, wu_id: str) -> Path:
        return self._dir / f"{validate_wu_id(wu_id)}{WU_DOC_SUFFIX}"

    def exists(self, wu_id: str) -> bool:
        return self.path_for(wu_id).is_file()

    def load(self, wu_id: str) -> WUDocument:
        path = self.path_for(wu_id)
        if not path.is_file():
            raise NotFoundError(
                f"WU document not found: {path}",
                code=ErrorCode.DOCUMENT_NOT_FOUND,
                expected=str(path),
                found="missing file",
                remediation=f"Create the document for {wu_id} before claiming it.",
            )
        return self.load_path(path)

    def find(self, wu_id: str) -> WUDocument | None:
        path = self.path_for(wu_id)
        if not path.is_file():
            return None
        return self.load_path(path)

    def load_path(self, path: Path) -> WUDocument:
        try:
            text = path.read_text(encoding="utf-8")
        except OSError as exc:
            raise LumenFlowIOError(f"unable to read {path}: {exc}") from exc
        return parse_document(text, path=path)

    def list_documents(self) -> list[WUDocument]:
        """All parseable documents in filename order; unparseable files are logged and skipped."""

        if not self._dir.is_dir():
            return []
        documents: list[WUDocument] = []
        for path in sorted(self._dir.glob(f"*{WU_DOC_SUFFIX}")):
            if not path.is_file():
                continue
            try:
                documents.append(self.load_path(path))
            except WUDocumentError as exc:
                self._logger.warning("wu_document_unreadable", path=str(path), error=exc.message)
        return documents

    def save(self, document: WUDocument, *, path: Path | None = None) -> Path:
        target = path or document.path
        if target is None:
            if document.id is None:
                raise WUDocumentError("cannot save a document without an id or a path")
            target = self.path_for(document.id)
        try:
            atomic_write(target, dump_document(document))
        except OSError as exc:
            raise LumenFlowIOError(f"unable to write {target}: {exc}") from exc
        document.path = target
        self._logger.debug("wu_document_saved", wu_id=document.id, path=str(target))
        return target


__all__ = [
    "WUDocumentError",
    "WUDocumentRepository",
    "dump_document",
    "parse_document",
]
