"""Observability helpers."""

from sessionlens.observability.otel import (
    initialize,
    shutdown,
    start_span,
    record_reconstruction,
    record_parse_diagnostic,
    record_tool_result,
    record_token_cost,
)

__all__ = [
    "initialize",
    "shutdown",
    "start_span",
    "record_reconstruction",
    "record_parse_diagnostic",
    "record_tool_result",
    "record_token_cost",
]
