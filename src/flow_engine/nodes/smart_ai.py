"""
SMARTAI - AI response generation.

The node never sends anything itself. It writes the generated text into
the run's handoff slot, and the next text-sending node downstream
(MESSAGE, REPLY_COMMENT, REPLY_MENTION) delivers it.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from flow_engine.config import get_settings
from flow_engine.node_sdk import (
    BaseNode,
    ExecutionContext,
    HandoffSlotOccupiedError,
    Item,
    LogBuffer,
    NodeCategory,
    NodeExecutionResult,
)
from flow_engine.services.capabilities import ChatTurn

from .base import first_error, pass_through, preview


AI_CAPABILITY = "ai"


class SmartAIConfig(BaseModel):
    model_config = ConfigDict(extra="allow")

    message: Optional[str] = Field(None, description="System prompt")
    prompt: Optional[str] = Field(None, description="Alias of message")

    @model_validator(mode="after")
    def require_prompt(self) -> "SmartAIConfig":
        if not ((self.message or "").strip() or (self.prompt or "").strip()):
            raise ValueError("message or prompt is required")
        return self

    @property
    def system_prompt(self) -> str:
        return ((self.message or "").strip() or (self.prompt or "")).strip()


class SmartAINode(BaseNode):
    category = NodeCategory.ACTION
    sub_type = "SMARTAI"
    description = "Generate an AI response for the next message node"
    config_model = SmartAIConfig

    produces_generated_text = True

    def execute(
        self,
        config: Dict[str, Any],
        items: List[Item],
        context: ExecutionContext,
    ) -> NodeExecutionResult:
        logs = self.new_log_buffer(context)

        try:
            parsed = self.parse_config(config)
        except ValidationError as e:
            detail = first_error(e)
            logs.error("Invalid AI configuration", detail=detail)
            return NodeExecutionResult.fail(f"Invalid SMARTAI configuration: {detail}", logs=logs.entries)

        user_message = context.message_text or ""
        prompt = parsed.system_prompt

        limiter = context.services.rate_limiter
        if limiter is not None:
            try:
                allowed = limiter.acquire(context.sender_id, AI_CAPABILITY)
            except Exception as e:
                logs.error("Rate limiter unavailable", error=str(e))
                return NodeExecutionResult.fail(f"Rate limiter unavailable: {e}", logs=logs.entries)
            if not allowed:
                logs.warn("AI rate limit reached", senderId=context.sender_id)
                return NodeExecutionResult.fail("AI rate limited", logs=logs.entries)

        history = self.load_history(context, logs)
        logs.info(
            "Generating AI response",
            promptPreview=preview(prompt),
            messagePreview=preview(user_message),
            historyTurns=len(history),
        )

        try:
            ai = context.services.require("ai")
            text = self.call_with_retry(lambda: ai.generate(prompt, user_message, history))
        except Exception as e:
            logs.error("AI generation failed", error=str(e), errorType=type(e).__name__)
            return NodeExecutionResult.fail(f"AI generation failed: {e}", logs=logs.entries)

        if not (isinstance(text, str) and text.strip()):
            logs.error("AI returned an empty response")
            return NodeExecutionResult.fail("AI returned an empty response", logs=logs.entries)

        try:
            context.put_generated_text(text, context.current_node_id)
        except HandoffSlotOccupiedError as e:
            logs.error("Generated text slot occupied", producerNodeId=e.producer_node_id)
            return NodeExecutionResult.fail(str(e), logs=logs.entries)

        logs.info("AI response ready", responsePreview=preview(text), length=len(text))
        self.save_history(context, user_message, text, logs)

        out = [
            item.evolve({"aiResponse": text, "prompt": prompt, "userMessage": user_message})
            for item in pass_through(items)
        ]
        return NodeExecutionResult.ok(out, "AI response generated", logs=logs.entries)

    def load_history(self, context: ExecutionContext, logs: LogBuffer) -> List[ChatTurn]:
        store = context.services.chat_history
        if store is None:
            return []
        try:
            return list(store.get_history(
                context.page_id, context.sender_id, get_settings().chat_history_limit
            ))
        except Exception as e:
            logs.warn("Could not load chat history", error=str(e))
            return []

    def save_history(
        self,
        context: ExecutionContext,
        user_message: str,
        response: str,
        logs: LogBuffer,
    ) -> None:
        store = context.services.chat_history
        if store is None:
            return
        try:
            if user_message:
                store.append(
                    context.automation_id, context.page_id, context.sender_id,
                    ChatTurn(role="user", text=user_message),
                )
            store.append(
                context.automation_id, context.page_id, context.sender_id,
                ChatTurn(role="model", text=response),
            )
        except Exception as e:
            logs.warn("Could not save chat history", error=str(e))
