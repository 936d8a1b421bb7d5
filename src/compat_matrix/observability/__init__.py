"""Run log: JSON-lines events and correlation fields for one matrix run."""

from compat_matrix.observability.logging import (
    LOG_FILE_NAME,
    REDACTED,
    RunLog,
    configure_structlog,
    correlation_scope,
    get_correlation_context,
    redact_event,
    redact_mapping,
    setup_logging,
    shutdown_logging,
)

__all__ = [
    "LOG_FILE_NAME",
    "REDACTED",
    "RunLog",
    "configure_structlog",
    "correlation_scope",
    "get_correlation_context",
    "redact_event",
    "redact_mapping",
    "setup_logging",
    "shutdown_logging",
]
