"""Observability helpers."""

from devarchive.observability.otel import (
    initialize,
    shutdown,
    start_span,
    record_sync,
    record_sync_failure,
)

__all__ = [
    "initialize",
    "shutdown",
    "start_span",
    "record_sync",
    "record_sync_failure",
]
