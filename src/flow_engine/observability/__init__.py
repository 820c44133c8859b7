"""Observability package."""
from flow_engine.observability.logging import (
    ContextAdapter,
    get_logger,
    setup_logging,
    with_trace_context,
)

__all__ = ["ContextAdapter", "get_logger", "setup_logging", "with_trace_context"]
