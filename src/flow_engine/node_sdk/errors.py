"""
Node errors.

Executors raise these internally and convert them into failed
NodeExecutionResults before returning; an exception that escapes
``execute()`` is treated by the runner as a fatal run error.
"""

from __future__ import annotations

from typing import Optional


class NodeOperationError(Exception):
    """Error during node operation."""

    def __init__(
        self,
        message: str,
        sub_type: Optional[str] = None,
        item_index: Optional[int] = None,
    ) -> None:
        self.message = message
        self.sub_type = sub_type
        self.item_index = item_index
        super().__init__(message)


class NodeApiError(NodeOperationError):
    """Error from an external capability call."""

    def __init__(
        self,
        message: str,
        sub_type: Optional[str] = None,
        status_code: Optional[int] = None,
        response_body: Optional[str] = None,
    ) -> None:
        super().__init__(message, sub_type)
        self.status_code = status_code
        self.response_body = response_body

    @property
    def is_transient(self) -> bool:
        """Rate limits and server errors are worth retrying."""
        return self.status_code is not None and (
            self.status_code == 429 or self.status_code >= 500
        )


class HandoffSlotOccupiedError(NodeOperationError):
    """A second producer tried to fill the generated-text slot."""

    def __init__(self, message: str, producer_node_id: Optional[str] = None) -> None:
        super().__init__(message)
        self.producer_node_id = producer_node_id
