"""
Node SDK - Executor-side contract of the flow engine.

This package provides:
- Item / ItemMeta: immutable data units flowing between nodes
- ExecutionContext: run-scoped state shared by one run's nodes
- BaseNode: abstract base class for node executors
- NodeExecutionResult / ExecutionLogEntry / LogBuffer: executor output
- retry_call: per-executor retry for transient collaborator failures
"""

from .items import Item, ItemMeta, now_ms
from .logs import ExecutionLogEntry, LogBuffer, LogLevel
from .context import ExecutionContext, TriggerType
from .basenode import BaseNode, EmptyConfig, NodeCategory, NodeExecutionResult
from .errors import HandoffSlotOccupiedError, NodeApiError, NodeOperationError
from .retry import retry_call

__all__ = [
    # Items
    "Item",
    "ItemMeta",
    "now_ms",
    # Logs
    "ExecutionLogEntry",
    "LogBuffer",
    "LogLevel",
    # Context
    "ExecutionContext",
    "TriggerType",
    # Base class
    "BaseNode",
    "EmptyConfig",
    "NodeCategory",
    "NodeExecutionResult",
    # Errors
    "HandoffSlotOccupiedError",
    "NodeApiError",
    "NodeOperationError",
    # Retry
    "retry_call",
]
