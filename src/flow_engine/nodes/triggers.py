"""
Trigger executors.

The runner starts at the trigger node without invoking it; these exist
so every subtype a flow can contain resolves in the registry.
"""

from __future__ import annotations

from typing import Any, Dict, List

from flow_engine.node_sdk import (
    BaseNode,
    ExecutionContext,
    Item,
    NodeCategory,
    NodeExecutionResult,
)


class TriggerNode(BaseNode):
    category = NodeCategory.TRIGGER

    def execute(
        self,
        config: Dict[str, Any],
        items: List[Item],
        context: ExecutionContext,
    ) -> NodeExecutionResult:
        return NodeExecutionResult.ok(list(items), "Trigger processed")


class DMTriggerNode(TriggerNode):
    sub_type = "DM"
    description = "Start the flow on a direct message"


class CommentTriggerNode(TriggerNode):
    sub_type = "COMMENT"
    description = "Start the flow on a comment"


class StoryReplyTriggerNode(TriggerNode):
    sub_type = "STORY_REPLY"
    description = "Start the flow on a story reply"


class MentionTriggerNode(TriggerNode):
    sub_type = "MENTION"
    description = "Start the flow on a story mention"
