"""Observability helpers."""

from gooseherd.observability.otel import (
    initialize,
    is_enabled,
    shutdown,
    start_span,
    record_log_read_failure,
    record_parse,
)

__all__ = [
    "initialize",
    "is_enabled",
    "shutdown",
    "start_span",
    "record_log_read_failure",
    "record_parse",
]
