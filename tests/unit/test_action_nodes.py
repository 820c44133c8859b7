"""Tests for action executors."""
from unittest.mock import Mock

import pytest

from flow_engine.node_sdk import Item
from flow_engine.nodes import (
    ButtonTemplateNode,
    CarouselNode,
    DelayNode,
    MarkSeenNode,
    MessageNode,
    QuickRepliesNode,
    ReplyCommentNode,
    ReplyMentionNode,
    SmartAINode,
    TypingOffNode,
    TypingOnNode,
)
from flow_engine.services import InMemoryRateLimiter, RecordingMessenger, ScriptedAIGenerator


@pytest.fixture
def items():
    return [Item.from_dict({"messageText": "hello"})]


class TestMessageNode:
    def test_sends_configured_text(self, make_context, messenger, items):
        result = MessageNode().execute({"message": "Thanks!"}, items, make_context())

        assert result.success
        assert messenger.sent_texts == ["Thanks!"]
        assert messenger.calls[0].recipient_id == "user-1"
        assert result.items[0]["messageSent"] == "Thanks!"
        assert result.items[0]["messageId"] == "dry-1"

    def test_generated_text_wins_and_is_consumed(self, make_context, messenger, items):
        context = make_context()
        context.put_generated_text("From the AI", "ai")

        MessageNode().execute({"message": "Static"}, items, context)

        assert messenger.sent_texts == ["From the AI"]
        assert not context.has_generated_text

    def test_falls_back_to_item_message(self, make_context, messenger):
        MessageNode().execute({}, [Item.from_dict({"message": "from item"})], make_context())

        assert messenger.sent_texts == ["from item"]

    def test_no_text_is_a_failure(self, make_context, messenger, items):
        result = MessageNode().execute({}, items, make_context())

        assert not result.success
        assert result.message == "No message text"
        assert messenger.calls == []

    def test_rejected_send_is_a_failure(self, make_context, services, items):
        services.messaging = RecordingMessenger(fail_kinds={"text"})

        result = MessageNode().execute({"message": "hi"}, items, make_context())

        assert not result.success
        assert result.message == "text rejected"
        assert result.items == []

    def test_missing_messaging_capability(self, make_context, services, items):
        services.messaging = None

        result = MessageNode().execute({"message": "hi"}, items, make_context())

        assert not result.success
        assert "messaging" in result.message

    def test_typing_indicator_is_opt_in(self, make_context, messenger, items):
        MessageNode().execute({"message": "hi", "typingIndicator": True}, items, make_context())

        assert [c.kind for c in messenger.calls] == ["sender_action", "text"]
        assert messenger.calls[0].payload["action"] == "typing_on"

    def test_typing_indicator_failure_does_not_block_send(self, make_context, services, items):
        messenger = RecordingMessenger(fail_kinds={"sender_action"})
        services.messaging = messenger

        result = MessageNode().execute({"message": "hi", "typingIndicator": True}, items, make_context())

        assert result.success
        assert messenger.sent_texts == ["hi"]


class TestTemplateNodes:
    def test_carousel(self, make_context, messenger, items):
        config = {
            "elements": [
                {
                    "title": "Shoes",
                    "imageUrl": "https://example.com/shoes.png",
                    "buttons": [{"type": "web_url", "title": "Buy", "url": "https://example.com"}],
                },
                {"title": "Hats", "subtitle": "Warm"},
            ]
        }

        result = CarouselNode().execute(config, items, make_context())

        assert result.success
        elements = messenger.calls_of("carousel")[0].payload["elements"]
        assert elements[0]["image_url"] == "https://example.com/shoes.png"
        assert elements[0]["buttons"][0]["title"] == "Buy"
        assert elements[1] == {"title": "Hats", "subtitle": "Warm"}

    @pytest.mark.parametrize("config", [
        {"elements": []},
        {"elements": [{"title": "x"}] * 11},
        {"elements": [{"title": "x", "buttons": [{"type": "postback", "title": "b", "payload": "p"}] * 4}]},
        {"elements": [{"title": "x", "buttons": [{"type": "web_url", "title": "no url"}]}]},
    ])
    def test_invalid_carousel(self, make_context, messenger, items, config):
        result = CarouselNode().execute(config, items, make_context())

        assert not result.success
        assert result.message.startswith("Invalid CAROUSEL configuration")
        assert messenger.calls == []

    def test_button_template(self, make_context, messenger, items):
        config = {"text": "Pick one", "buttons": [{"type": "postback", "title": "A", "payload": "PICK_A"}]}

        result = ButtonTemplateNode().execute(config, items, make_context())

        assert result.success
        call = messenger.calls_of("button_template")[0]
        assert call.text == "Pick one"
        assert call.payload["buttons"] == [{"type": "postback", "title": "A", "payload": "PICK_A"}]

    def test_button_template_accepts_message_key(self, make_context, messenger, items):
        config = {"message": "Pick", "buttons": [{"type": "postback", "title": "A", "payload": "A"}]}

        assert ButtonTemplateNode().execute(config, items, make_context()).success

    def test_button_template_text_limit(self, make_context, items):
        config = {"text": "x" * 641, "buttons": [{"type": "postback", "title": "A", "payload": "A"}]}

        assert not ButtonTemplateNode().execute(config, items, make_context()).success

    def test_quick_replies(self, make_context, messenger, items):
        config = {
            "text": "Size?",
            "quickReplies": [
                {"content_type": "text", "title": "Small", "payload": "S"},
                {"content_type": "user_phone_number"},
            ],
        }

        result = QuickRepliesNode().execute(config, items, make_context())

        assert result.success
        assert len(messenger.calls_of("quick_replies")[0].payload["quick_replies"]) == 2

    def test_too_many_quick_replies(self, make_context, items):
        config = {"text": "?", "quickReplies": [{"title": "a", "payload": "a"}] * 14}

        assert not QuickRepliesNode().execute(config, items, make_context()).success


class TestReplyNodes:
    def test_reply_comment(self, make_context, messenger, items):
        context = make_context(trigger_type="COMMENT", comment_id="c-1")

        result = ReplyCommentNode().execute({"commentReply": "Check your DMs"}, items, context)

        assert result.success
        call = messenger.calls_of("comment_reply")[0]
        assert call.text == "Check your DMs"
        assert call.payload["comment_id"] == "c-1"

    def test_reply_comment_needs_comment_id(self, make_context, messenger, items):
        result = ReplyCommentNode().execute({"commentReply": "hi"}, items, make_context())

        assert not result.success
        assert messenger.calls == []

    def test_reply_comment_uses_generated_text(self, make_context, messenger, items):
        context = make_context(comment_id="c-1")
        context.put_generated_text("AI reply", "ai")

        ReplyCommentNode().execute({}, items, context)

        assert messenger.sent_texts == ["AI reply"]

    def test_reply_mention(self, make_context, messenger, items):
        context = make_context(trigger_type="MENTION", media_id="m-1", comment_id="c-2")

        result = ReplyMentionNode().execute({"message": "Thanks for the mention"}, items, context)

        assert result.success
        call = messenger.calls_of("mention_reply")[0]
        assert call.payload["media_id"] == "m-1"
        assert call.payload["comment_id"] == "c-2"

    def test_reply_mention_needs_media_id(self, make_context, items):
        assert not ReplyMentionNode().execute({"message": "x"}, items, make_context()).success

    def test_reply_mention_text_limit(self, make_context, items):
        context = make_context(media_id="m-1")

        assert not ReplyMentionNode().execute({"message": "x" * 1001}, items, context).success


class TestSmartAINode:
    def test_generates_into_handoff_slot(self, make_context, services, messenger, items):
        context = make_context(message_text="Do you ship abroad?")
        context.enter_node("ai-1")

        result = SmartAINode().execute({"message": "You are a shop assistant"}, items, context)

        assert result.success
        assert context.peek_generated_text() == "Generated reply"
        assert result.items[0]["aiResponse"] == "Generated reply"
        assert result.items[0]["userMessage"] == "Do you ship abroad?"
        assert messenger.calls == []
        prompt, user_message, history = services.ai.prompts[0]
        assert prompt == "You are a shop assistant"
        assert user_message == "Do you ship abroad?"
        assert history == []

    def test_history_is_saved_and_replayed(self, make_context, services, items):
        SmartAINode().execute({"prompt": "Be brief"}, items, make_context(message_text="first"))
        SmartAINode().execute({"prompt": "Be brief"}, items, make_context(message_text="second"))

        history = services.ai.prompts[1][2]
        assert [(t.role, t.text) for t in history] == [("user", "first"), ("model", "Generated reply")]

    def test_history_limit_from_settings(self, make_context, services, items, monkeypatch):
        monkeypatch.setenv("FLOW_ENGINE_CHAT_HISTORY_LIMIT", "1")
        from flow_engine.config import reset_settings

        reset_settings()
        SmartAINode().execute({"prompt": "x"}, items, make_context(message_text="one"))
        SmartAINode().execute({"prompt": "x"}, items, make_context(message_text="two"))

        assert len(services.ai.prompts[1][2]) == 1

    def test_rate_limited(self, make_context, services, items):
        services.rate_limiter = InMemoryRateLimiter(limit=1, window_s=60)

        first = SmartAINode().execute({"prompt": "x"}, items, make_context())
        second = SmartAINode().execute({"prompt": "x"}, items, make_context())

        assert first.success
        assert not second.success
        assert second.message == "AI rate limited"

    def test_generation_failure(self, make_context, services, items):
        services.ai = ScriptedAIGenerator(error=RuntimeError("model overloaded"))
        context = make_context()

        result = SmartAINode().execute({"prompt": "x"}, items, context)

        assert not result.success
        assert "model overloaded" in result.message
        assert not context.has_generated_text

    def test_occupied_slot_is_a_failure(self, make_context, items):
        context = make_context()
        context.put_generated_text("earlier", "ai-0")

        result = SmartAINode().execute({"prompt": "x"}, items, context)

        assert not result.success
        assert context.peek_generated_text() == "earlier"

    def test_prompt_required(self, make_context, items):
        result = SmartAINode().execute({"message": "  "}, items, make_context())

        assert not result.success
        assert "message or prompt" in result.message


class TestSenderActionNodes:
    @pytest.mark.parametrize("node_class,action", [
        (TypingOnNode, "typing_on"),
        (TypingOffNode, "typing_off"),
        (MarkSeenNode, "mark_seen"),
    ])
    def test_sends_action(self, make_context, messenger, items, node_class, action):
        result = node_class().execute({}, items, make_context())

        assert result.success
        assert result.items == items
        assert messenger.calls[0].kind == "sender_action"
        assert messenger.calls[0].payload["action"] == action

    def test_failure(self, make_context, services, items):
        services.messaging = RecordingMessenger(fail_kinds={"sender_action"})

        assert not MarkSeenNode().execute({}, items, make_context()).success


class TestDelayNode:
    def test_sleeps_for_configured_seconds(self, make_context, items):
        slept = []

        result = DelayNode(sleep=slept.append).execute({"delay": 2}, items, make_context())

        assert result.success
        assert result.items == items
        assert slept == [2.0]

    def test_seconds_alias(self, make_context, items):
        slept = []

        DelayNode(sleep=slept.append).execute({"seconds": 1.5}, items, make_context())

        assert slept == [1.5]

    def test_capped_by_settings(self, make_context, items, monkeypatch):
        monkeypatch.setenv("FLOW_ENGINE_MAX_DELAY_S", "3")
        from flow_engine.config import reset_settings

        reset_settings()
        slept = []

        result = DelayNode(sleep=slept.append).execute({"delay": 60}, items, make_context())

        assert slept == [3.0]
        assert any(e.message == "Delay capped" for e in result.logs)

    def test_zero_delay_does_not_sleep(self, make_context, items):
        sleep = Mock()

        DelayNode(sleep=sleep).execute({"delay": 0}, items, make_context())

        sleep.assert_not_called()

    @pytest.mark.parametrize("config", [{}, {"delay": -1}, {"delay": "soon"}])
    def test_invalid_delay(self, make_context, items, config):
        assert not DelayNode().execute(config, items, make_context()).success
