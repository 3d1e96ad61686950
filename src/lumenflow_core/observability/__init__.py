"""Observability: structured logging configuration and correlation helpers."""

from lumenflow_core.observability.logging import (
    configure_logging,
    correlation_scope,
    get_logger,
    redact,
)

__all__ = ["configure_logging", "correlation_scope", "get_logger", "redact"]
