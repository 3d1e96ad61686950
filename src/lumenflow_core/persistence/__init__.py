"""
lumenflow-core — persistence layer

File: src/lumenflow_core/persistence/__init__.py

Purpose
- Event log, derived state, WU documents, stamp markers and archival.
"""

from lumenflow_core.persistence.archival import (
    ArchiveResult,
    archive_wu_events,
    parse_archive_after,
)
from lumenflow_core.persistence.event_log import (
    EventLog,
    EventLogCorruptError,
    StateFileRepairResult,
    repair_state_file,
)
from lumenflow_core.persistence.stamps import StampStore
from lumenflow_core.persistence.state_store import (
    ReplayIssue,
    WUState,
    WUStateStore,
    fold_events,
)
from lumenflow_core.persistence.wu_documents import WUDocumentError, WUDocumentRepository

__all__ = [
    "ArchiveResult",
    "EventLog",
    "EventLogCorruptError",
    "ReplayIssue",
    "StampStore",
    "StateFileRepairResult",
    "WUDocumentError",
    "WUDocumentRepository",
    "WUState",
    "WUStateStore",
    "archive_wu_events",
    "fold_events",
    "parse_archive_after",
    "repair_state_file",
]
