"""
lumenflow-core — domain layer

File: src/lumenflow_core/domain/__init__.py

Purpose
- Identifiers, lifecycle statuses, the transition table, events and the WU
  document model shared across planes.

Functional requirements
- Domain layer stays free of I/O side effects.
"""

from lumenflow_core.domain.events import (
    EVENT_TARGET_STATUS,
    EventValidationError,
    WUEvent,
    WUEventType,
)
from lumenflow_core.domain.ids import (
    InvalidWUIdError,
    next_available_id,
    normalize_wu_id,
    validate_wu_id,
)
from lumenflow_core.domain.models import ClaimMode, WUDocument
from lumenflow_core.domain.state_machine import (
    ACTIVE_STATUSES,
    TERMINAL_STATUSES,
    InvalidTransitionError,
    WUStatus,
    assert_transition,
    is_valid_transition,
)

__all__ = [
    "ACTIVE_STATUSES",
    "EVENT_TARGET_STATUS",
    "TERMINAL_STATUSES",
    "ClaimMode",
    "EventValidationError",
    "InvalidTransitionError",
    "InvalidWUIdError",
    "WUDocument",
    "WUEvent",
    "WUEventType",
    "WUStatus",
    "assert_transition",
    "is_valid_transition",
    "next_available_id",
    "normalize_wu_id",
    "validate_wu_id",
]
