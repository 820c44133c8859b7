"""
Public reply executors: comment replies and story-mention replies.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

from flow_engine.node_sdk import (
    ExecutionContext,
    Item,
    LogBuffer,
    NodeExecutionResult,
)

from .base import ActionNode, pass_through, preview


class ReplyCommentConfig(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    comment_reply: Optional[str] = Field(None, alias="commentReply", max_length=2200)


class ReplyMentionConfig(BaseModel):
    model_config = ConfigDict(extra="allow")

    message: Optional[str] = Field(None, max_length=1000)


class ReplyNode(ActionNode):
    consumes_generated_text = True

    def reply_text(
        self,
        static_text: Optional[str],
        context: ExecutionContext,
        logs: LogBuffer,
    ) -> Tuple[Optional[str], Optional[NodeExecutionResult]]:
        text = context.take_generated_text() or static_text
        if not (text and text.strip()):
            logs.error("No reply text available")
            return None, NodeExecutionResult.fail("No reply text", logs=logs.entries)
        return text, None


class ReplyCommentNode(ReplyNode):
    sub_type = "REPLY_COMMENT"
    description = "Reply publicly to the triggering comment"
    config_model = ReplyCommentConfig
    text_config_keys = ("commentReply",)

    def execute(
        self,
        config: Dict[str, Any],
        items: List[Item],
        context: ExecutionContext,
    ) -> NodeExecutionResult:
        logs = self.new_log_buffer(context)

        parsed, failed = self.parse_or_fail(config, logs)
        if failed:
            return failed

        if not context.comment_id:
            logs.error("No comment to reply to")
            return NodeExecutionResult.fail("No comment ID in context", logs=logs.entries)

        text, failed = self.reply_text(parsed.comment_reply, context, logs)
        if failed:
            return failed

        logs.info("Replying to comment", commentId=context.comment_id, replyPreview=preview(text))

        def call():
            messaging = context.services.require("messaging")
            return messaging.reply_to_comment(context.comment_id, text, context.token)

        result, failed = self.send(call, logs, "Failed to reply to comment")
        if failed:
            return failed

        logs.info("Comment reply sent", replyId=result.message_id)
        out = [
            item.evolve({"commentReplied": True, "replyId": result.message_id})
            for item in pass_through(items)
        ]
        return NodeExecutionResult.ok(out, "Comment reply sent", logs=logs.entries)


class ReplyMentionNode(ReplyNode):
    """
    Reply to a story mention.

    The platform threads the reply under the mentioned media, or under
    the mentioning comment when the trigger carried one.
    """

    sub_type = "REPLY_MENTION"
    description = "Reply to a story mention"
    config_model = ReplyMentionConfig
    text_config_keys = ("message",)

    def execute(
        self,
        config: Dict[str, Any],
        items: List[Item],
        context: ExecutionContext,
    ) -> NodeExecutionResult:
        logs = self.new_log_buffer(context)

        parsed, failed = self.parse_or_fail(config, logs)
        if failed:
            return failed

        if not context.media_id:
            logs.error("No media to reply to")
            return NodeExecutionResult.fail("No media ID in context", logs=logs.entries)

        text, failed = self.reply_text(parsed.message, context, logs)
        if failed:
            return failed

        logs.info(
            "Replying to mention",
            mediaId=context.media_id,
            commentId=context.comment_id,
            replyPreview=preview(text),
        )

        def call():
            messaging = context.services.require("messaging")
            return messaging.reply_to_mention(
                context.page_id, context.media_id, text, context.token, context.comment_id
            )

        result, failed = self.send(call, logs, "Failed to reply to mention")
        if failed:
            return failed

        logs.info("Mention reply sent", replyId=result.message_id)
        out = [
            item.evolve({"mentionReplied": True, "replyId": result.message_id})
            for item in pass_through(items)
        ]
        return NodeExecutionResult.ok(out, "Mention reply sent", logs=logs.entries)
