"""
Execution logs - per-node debug entries shown to flow authors.

Entries are append-only and kept in emission order. A LogBuffer also
mirrors every entry to the python logger so operators see the same
events in the service logs.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from .items import now_ms


LogLevel = Literal["debug", "info", "warn", "error"]

_PY_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "error": logging.ERROR,
}


class ExecutionLogEntry(BaseModel):
    """Log entry for execution debugging."""
    model_config = ConfigDict(extra="forbid", frozen=True)

    timestamp: int = Field(default_factory=now_ms, description="Epoch ms")
    level: LogLevel = Field("info", description="Severity")
    message: str = Field(..., description="Human-readable message")
    data: Optional[Dict[str, Any]] = Field(None, description="Structured details")


class LogBuffer:
    """
    Collects the log entries of one node execution.

    Usage:
        logs = LogBuffer(logger, node="MESSAGE")
        logs.info("Sending DM", messagePreview=text[:50])
        return NodeExecutionResult.ok(items, "DM sent", logs=logs.entries)
    """

    def __init__(
        self,
        logger: Optional[logging.Logger] = None,
        **context: Any,
    ) -> None:
        self._entries: List[ExecutionLogEntry] = []
        self._logger = logger
        self._context = {k: v for k, v in context.items() if v is not None}

    def add(self, level: LogLevel, message: str, **data: Any) -> ExecutionLogEntry:
        entry = ExecutionLogEntry(level=level, message=message, data=data or None)
        self._entries.append(entry)
        if self._logger is not None:
            self._logger.log(
                _PY_LEVELS[level],
                message,
                extra={**self._context, **({"data": data} if data else {})},
            )
        return entry

    def debug(self, message: str, **data: Any) -> ExecutionLogEntry:
        return self.add("debug", message, **data)

    def info(self, message: str, **data: Any) -> ExecutionLogEntry:
        return self.add("info", message, **data)

    def warn(self, message: str, **data: Any) -> ExecutionLogEntry:
        return self.add("warn", message, **data)

    def error(self, message: str, **data: Any) -> ExecutionLogEntry:
        return self.add("error", message, **data)

    @property
    def entries(self) -> List[ExecutionLogEntry]:
        """Snapshot of the collected entries."""
        return list(self._entries)

    def __len__(self) -> int:
        return len(self._entries)
