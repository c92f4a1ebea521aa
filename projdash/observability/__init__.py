"""Observability helpers."""

from projdash.observability.otel import (
    initialize,
    shutdown,
    start_span,
    record_scan,
    record_command_failure,
)

__all__ = [
    "initialize",
    "shutdown",
    "start_span",
    "record_scan",
    "record_command_failure",
]
