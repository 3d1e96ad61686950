"""
lumenflow-core — error taxonomy

File: src/lumenflow_core/errors.py

Purpose
- One base exception with a stable code, a category and a remediation hint.
- Category bases mirror how failures propagate:
  schema / not-found / state / policy errors are raised to the caller and never
  retried; consistency errors are recoverable by the repair engine; I/O errors
  surface the underlying filesystem or git failure verbatim.

Contract
- ``str(exc)`` is the one-line message.
- ``format_error(exc)`` renders message, expected/found and the next step for
  user-visible output.
"""

from __future__ import annotations

from collections.abc import Mapping
from enum import StrEnum


class ErrorCategory(StrEnum):
    """Failure families used for routing and exit codes."""

    SCHEMA = "schema"
    NOT_FOUND = "not_found"
    STATE = "state"
    POLICY = "policy"
    CONSISTENCY = "consistency"
    IO = "io"


class ErrorCode(StrEnum):
    """Stable machine-readable error codes."""

    INVALID_WU_ID = "INVALID_WU_ID"
    INVALID_EVENT = "INVALID_EVENT"
    EVENT_LOG_CORRUPT = "EVENT_LOG_CORRUPT"
    INVALID_LANE_FORMAT = "INVALID_LANE_FORMAT"
    LANE_CONFIG_INVALID = "LANE_CONFIG_INVALID"
    INVALID_DOCUMENT = "INVALID_DOCUMENT"
    INVALID_DURATION = "INVALID_DURATION"
    WU_NOT_FOUND = "WU_NOT_FOUND"
    DOCUMENT_NOT_FOUND = "DOCUMENT_NOT_FOUND"
    WORKSPACE_NOT_FOUND = "WORKSPACE_NOT_FOUND"
    INVALID_TRANSITION = "INVALID_TRANSITION"
    TERMINAL_STATE = "TERMINAL_STATE"
    WRITE_BLOCKED = "WRITE_BLOCKED"
    LANE_OCCUPIED = "LANE_OCCUPIED"
    CONSISTENCY_VIOLATION = "CONSISTENCY_VIOLATION"
    DUPLICATE_ID = "DUPLICATE_ID"
    RECOVERY_FAILED = "RECOVERY_FAILED"
    RECOVERY_ESCALATED = "RECOVERY_ESCALATED"
    GIT_ERROR = "GIT_ERROR"
    PUSH_REJECTED = "PUSH_REJECTED"
    FILESYSTEM_ERROR = "FILESYSTEM_ERROR"


class LumenFlowError(RuntimeError):
    """Base error carrying a stable code and a human remediation hint."""

    category: ErrorCategory = ErrorCategory.IO
    default_code: ErrorCode = ErrorCode.FILESYSTEM_ERROR
    retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        code: ErrorCode | None = None,
        remediation: str | None = None,
        expected: str | None = None,
        found: str | None = None,
        details: Mapping[str, object] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code if code is not None else self.default_code
        self.remediation = remediation
        self.expected = expected
        self.found = found
        self.details: dict[str, object] = dict(details or {})

    def to_dict(self) -> dict[str, object]:
        payload: dict[str, object] = {
            "code": self.code.value,
            "category": self.category.value,
            "message": self.message,
            "retryable": self.retryable,
        }
        if self.expected is not None:
            payload["expected"] = self.expected
        if self.found is not None:
            payload["found"] = self.found
        if self.remediation is not None:
            payload["remediation"] = self.remediation
        if self.details:
            payload["details"] = {key: self.details[key] for key in sorted(self.details)}
        return payload


class SchemaError(LumenFlowError, ValueError):
    """Malformed config, lane string, identifier or event shape."""

    category = ErrorCategory.SCHEMA
    default_code = ErrorCode.INVALID_EVENT


class NotFoundError(LumenFlowError):
    """A referenced WU, document or workspace does not exist."""

    category = ErrorCategory.NOT_FOUND
    default_code = ErrorCode.WU_NOT_FOUND


class StateError(LumenFlowError):
    """Invalid lifecycle transition or operation on a terminal WU."""

    category = ErrorCategory.STATE
    default_code = ErrorCode.INVALID_TRANSITION


class PolicyError(LumenFlowError):
    """Operation refused by write enforcement or lane admission."""

    category = ErrorCategory.POLICY
    default_code = ErrorCode.WRITE_BLOCKED


class ConsistencyError(LumenFlowError):
    """Divergence between event log, documents and markers."""

    category = ErrorCategory.CONSISTENCY
    default_code = ErrorCode.CONSISTENCY_VIOLATION


class LumenFlowIOError(LumenFlowError):
    """Underlying filesystem or git failure."""

    category = ErrorCategory.IO
    default_code = ErrorCode.FILESYSTEM_ERROR


def format_error(exc: BaseException) -> str:
    """Render a user-facing failure: what was expected, what was found, what to run next."""

    if not isinstance(exc, LumenFlowError):
        return str(exc).strip() or exc.__class__.__name__

    lines = [f"[{exc.code.value}] {exc.message}"]
    if exc.expected is not None:
        lines.append(f"  expected: {exc.expected}")
    if exc.found is not None:
        lines.append(f"  found:    {exc.found}")
    if exc.remediation:
        lines.append("")
        lines.append("Next step:")
        lines.extend(f"  {line}" for line in exc.remediation.splitlines())
    return "\n".join(lines)


__all__ = [
    "ConsistencyError",
    "ErrorCategory",
    "ErrorCode",
    "LumenFlowError",
    "LumenFlowIOError",
    "NotFoundError",
    "PolicyError",
    "SchemaError",
    "StateError",
    "format_error",
]
