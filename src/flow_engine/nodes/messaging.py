"""
Direct-message executors: plain text and the structured templates.
"""

from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from flow_engine.node_sdk import (
    ExecutionContext,
    Item,
    NodeCategory,
    NodeExecutionResult,
)

from .base import ActionNode, pass_through, preview


# ==============================================================================
# Config models
# ==============================================================================

class MessageConfig(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    message: Optional[str] = Field(None, description="Static text; the AI handoff wins when filled")
    typing_indicator: bool = Field(False, alias="typingIndicator")


class TemplateButton(BaseModel):
    model_config = ConfigDict(extra="allow")

    type: Literal["web_url", "postback"] = "postback"
    title: str = Field(..., min_length=1, max_length=20)
    url: Optional[str] = None
    payload: Optional[str] = None

    @model_validator(mode="after")
    def check_target(self) -> "TemplateButton":
        if self.type == "web_url" and not self.url:
            raise ValueError("web_url button requires url")
        if self.type == "postback" and not self.payload:
            raise ValueError("postback button requires payload")
        return self


class CarouselElement(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    title: str = Field(..., min_length=1, max_length=80)
    subtitle: Optional[str] = Field(None, max_length=80)
    image_url: Optional[str] = Field(None, alias="imageUrl")
    default_action: Optional[Dict[str, Any]] = Field(None, alias="defaultAction")
    buttons: List[TemplateButton] = Field(default_factory=list, max_length=3)

    def to_payload(self) -> Dict[str, Any]:
        element: Dict[str, Any] = {"title": self.title}
        if self.subtitle:
            element["subtitle"] = self.subtitle
        if self.image_url:
            element["image_url"] = self.image_url
        if self.default_action:
            element["default_action"] = self.default_action
        if self.buttons:
            element["buttons"] = [b.model_dump(exclude_none=True) for b in self.buttons]
        return element


class CarouselConfig(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    elements: List[CarouselElement] = Field(..., min_length=1, max_length=10)
    typing_indicator: bool = Field(False, alias="typingIndicator")


class ButtonTemplateConfig(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    text: str = Field(..., min_length=1, max_length=640)
    buttons: List[TemplateButton] = Field(..., min_length=1, max_length=3)
    typing_indicator: bool = Field(False, alias="typingIndicator")

    @model_validator(mode="before")
    @classmethod
    def accept_message_key(cls, data: Any) -> Any:
        # Older flows store the template text under "message".
        if isinstance(data, dict) and not data.get("text") and data.get("message"):
            data = {**data, "text": data["message"]}
        return data


class QuickReply(BaseModel):
    model_config = ConfigDict(extra="allow")

    content_type: Literal["text", "user_phone_number", "user_email"] = "text"
    title: Optional[str] = Field(None, max_length=20)
    payload: Optional[str] = Field(None, max_length=1000)
    image_url: Optional[str] = None

    @model_validator(mode="after")
    def text_reply_needs_title(self) -> "QuickReply":
        if self.content_type == "text" and not (self.title and self.payload):
            raise ValueError("text quick reply requires title and payload")
        return self


class QuickRepliesConfig(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    text: str = Field(..., min_length=1, max_length=2000)
    quick_replies: List[QuickReply] = Field(..., alias="quickReplies", min_length=1, max_length=13)
    typing_indicator: bool = Field(False, alias="typingIndicator")

    @field_validator("text")
    @classmethod
    def text_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("text must not be blank")
        return v


# ==============================================================================
# Executors
# ==============================================================================

class MessageNode(ActionNode):
    """
    Send a direct message.

    Text source, first non-empty wins: the generated-text handoff slot,
    the ``message`` config, the first input item's ``message`` field.
    """

    category = NodeCategory.ACTION
    sub_type = "MESSAGE"
    description = "Send a direct message"
    config_model = MessageConfig

    consumes_generated_text = True
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

        text = context.take_generated_text()
        source = "generated"
        if not text:
            text, source = parsed.message, "config"
        if not (text and text.strip()) and items:
            text, source = items[0].get("message"), "item"
        if not (isinstance(text, str) and text.strip()):
            logs.error("No message text available")
            return NodeExecutionResult.fail("No message text", logs=logs.entries)

        logs.info("Sending DM", recipientId=context.sender_id, messagePreview=preview(text), source=source)
        self.show_typing(config, context, logs)

        def call():
            messaging = context.services.require("messaging")
            return messaging.send_text(context.page_id, context.sender_id, text, context.token)

        result, failed = self.send(call, logs, "Failed to send message")
        if failed:
            return failed

        logs.info("DM sent", messageId=result.message_id)
        out = [
            item.evolve({"messageSent": text, "messageId": result.message_id})
            for item in pass_through(items)
        ]
        return NodeExecutionResult.ok(out, "Message sent", logs=logs.entries)


class CarouselNode(ActionNode):
    sub_type = "CAROUSEL"
    description = "Send a carousel of up to 10 cards"
    config_model = CarouselConfig

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

        elements = [e.to_payload() for e in parsed.elements]
        logs.info("Sending carousel", elementCount=len(elements))
        self.show_typing(config, context, logs)

        def call():
            messaging = context.services.require("messaging")
            return messaging.send_carousel(context.page_id, context.sender_id, elements, context.token)

        result, failed = self.send(call, logs, "Failed to send carousel")
        if failed:
            return failed

        logs.info("Carousel sent", messageId=result.message_id)
        out = [
            item.evolve({"carouselSent": True, "messageId": result.message_id})
            for item in pass_through(items)
        ]
        return NodeExecutionResult.ok(out, f"Carousel sent with {len(elements)} elements", logs=logs.entries)


class ButtonTemplateNode(ActionNode):
    sub_type = "BUTTON_TEMPLATE"
    description = "Send a text message with up to 3 buttons"
    config_model = ButtonTemplateConfig

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

        buttons = [b.model_dump(exclude_none=True) for b in parsed.buttons]
        logs.info("Sending button template", buttonCount=len(buttons), messagePreview=preview(parsed.text))
        self.show_typing(config, context, logs)

        def call():
            messaging = context.services.require("messaging")
            return messaging.send_button_template(
                context.page_id, context.sender_id, parsed.text, buttons, context.token
            )

        result, failed = self.send(call, logs, "Failed to send button template")
        if failed:
            return failed

        logs.info("Button template sent", messageId=result.message_id)
        out = [
            item.evolve({"buttonTemplateSent": True, "messageId": result.message_id})
            for item in pass_through(items)
        ]
        return NodeExecutionResult.ok(out, "Button template sent", logs=logs.entries)


class QuickRepliesNode(ActionNode):
    sub_type = "QUICK_REPLIES"
    description = "Send a message with quick reply chips"
    config_model = QuickRepliesConfig

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

        replies = [r.model_dump(exclude_none=True) for r in parsed.quick_replies]
        logs.info("Sending quick replies", replyCount=len(replies))
        self.show_typing(config, context, logs)

        def call():
            messaging = context.services.require("messaging")
            return messaging.send_quick_replies(
                context.page_id, context.sender_id, parsed.text, replies, context.token
            )

        result, failed = self.send(call, logs, "Failed to send quick replies")
        if failed:
            return failed

        logs.info("Quick replies sent", messageId=result.message_id)
        out = [
            item.evolve({"quickRepliesSent": True, "messageId": result.message_id})
            for item in pass_through(items)
        ]
        return NodeExecutionResult.ok(out, "Quick replies sent", logs=logs.entries)
