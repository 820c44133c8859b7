"""
Shared pieces for the built-in executors.
"""

from __future__ import annotations

import time
from typing import Any, Callable, Dict, List, Optional, Tuple

from pydantic import BaseModel, ValidationError

from flow_engine.config import get_settings
from flow_engine.node_sdk import (
    BaseNode,
    ExecutionContext,
    Item,
    LogBuffer,
    NodeExecutionResult,
)
from flow_engine.services.capabilities import SendResult


def pass_through(items: List[Item]) -> List[Item]:
    """Input items, or one empty item so children still run."""
    return list(items) if items else [Item()]


def preview(text: Optional[str], limit: int = 50) -> str:
    if not text:
        return ""
    return text if len(text) <= limit else text[:limit] + "..."


def first_error(e: ValidationError) -> str:
    err = e.errors()[0]
    location = ".".join(str(part) for part in err.get("loc", ())) or "config"
    return f"{location}: {err.get('msg', 'invalid value')}"


class ActionNode(BaseNode):
    """
    Base for nodes that perform one outbound platform call.

    ``send()`` handles the parts every action shares: the optional
    typing indicator, retry, converting the SendResult or an exception
    into a node result.
    """

    def show_typing(
        self,
        config: Dict[str, Any],
        context: ExecutionContext,
        logs: LogBuffer,
    ) -> None:
        """Best-effort typing indicator before a send, when configured."""
        if not config.get("typingIndicator"):
            return
        try:
            messaging = context.services.require("messaging")
            messaging.send_sender_action(context.page_id, context.sender_id, "typing_on", context.token)
            delay = get_settings().typing_indicator_delay_s
            if delay > 0:
                time.sleep(delay)
            logs.debug("Typing indicator shown")
        except Exception as e:
            logs.warn("Could not show typing indicator", error=str(e))

    def send(
        self,
        call: Callable[[], SendResult],
        logs: LogBuffer,
        failure_message: str,
    ) -> Tuple[Optional[SendResult], Optional[NodeExecutionResult]]:
        """
        Run an outbound call with retry.

        Returns (result, None) on success, or (None, failed node result).
        """
        try:
            result = self.call_with_retry(call)
        except Exception as e:
            logs.error(f"Exception: {failure_message}", error=str(e), errorType=type(e).__name__)
            return None, NodeExecutionResult.fail(f"{failure_message}: {e}", logs=logs.entries)

        if not result.success:
            logs.error(failure_message, error=result.error)
            return None, NodeExecutionResult.fail(result.error or failure_message, logs=logs.entries)
        return result, None

    def parse_or_fail(
        self,
        config: Dict[str, Any],
        logs: LogBuffer,
    ) -> Tuple[Optional[BaseModel], Optional[NodeExecutionResult]]:
        try:
            return self.parse_config(config), None
        except ValidationError as e:
            logs.error("Invalid configuration", errors=e.error_count(), detail=first_error(e))
            return None, NodeExecutionResult.fail(
                f"Invalid {self.sub_type} configuration: {first_error(e)}",
                logs=logs.entries,
            )
