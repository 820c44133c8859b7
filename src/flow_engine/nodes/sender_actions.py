"""
Sender action executors: typing indicators and read receipts.
"""

from __future__ import annotations

from typing import Any, Dict, List

from flow_engine.node_sdk import (
    EmptyConfig,
    ExecutionContext,
    Item,
    NodeExecutionResult,
)

from .base import ActionNode, pass_through


class SenderActionNode(ActionNode):
    config_model = EmptyConfig
    action: str = ""
    done_message: str = ""

    def execute(
        self,
        config: Dict[str, Any],
        items: List[Item],
        context: ExecutionContext,
    ) -> NodeExecutionResult:
        logs = self.new_log_buffer(context)
        logs.debug("Sending sender action", action=self.action, recipientId=context.sender_id)

        def call():
            messaging = context.services.require("messaging")
            return messaging.send_sender_action(
                context.page_id, context.sender_id, self.action, context.token
            )

        _, failed = self.send(call, logs, f"Failed to send {self.action}")
        if failed:
            return failed

        logs.info(self.done_message)
        return NodeExecutionResult.ok(pass_through(items), self.done_message, logs=logs.entries)


class TypingOnNode(SenderActionNode):
    sub_type = "TYPING_ON"
    description = "Show the typing indicator"
    action = "typing_on"
    done_message = "Typing indicator shown"


class TypingOffNode(SenderActionNode):
    sub_type = "TYPING_OFF"
    description = "Hide the typing indicator"
    action = "typing_off"
    done_message = "Typing indicator hidden"


class MarkSeenNode(SenderActionNode):
    sub_type = "MARK_SEEN"
    description = "Mark the conversation as seen"
    action = "mark_seen"
    done_message = "Message marked as seen"
