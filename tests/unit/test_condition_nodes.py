"""Tests for condition executors."""
import pytest

from flow_engine.node_sdk import Item
from flow_engine.nodes import HasTagNode, IsFollowerNode, KeywordsNode, NoNode, YesNode
from flow_engine.services import InMemoryFlagCache, StaticContentQuery


@pytest.fixture
def items():
    return [Item.from_dict({"messageText": "hello"})]


class TestKeywordsNode:
    def test_match_is_case_insensitive_substring(self, make_context, items):
        context = make_context(message_text="What is the PRICE of this?")

        result = KeywordsNode().execute({"keywords": ["price"]}, items, context)

        assert result.success
        assert len(result.items) == 1
        assert result.items[0]["keyword_matched_word"] == "price"
        assert result.items[0]["keywordMatched"] is True
        assert result.outcome == "yes"

    def test_first_configured_keyword_wins(self, make_context, items):
        context = make_context(message_text="price and discount")

        result = KeywordsNode().execute({"keywords": ["discount", "price"]}, items, context)

        assert result.items[0]["keyword_matched_word"] == "discount"

    def test_no_match_stops_branch_without_failure(self, make_context, items):
        context = make_context(message_text="hello there")

        result = KeywordsNode().execute({"keywords": ["price"]}, items, context)

        assert result.success
        assert result.items == []

    @pytest.mark.parametrize("config", [{}, {"keywords": []}, {"keywords": None}, {"keywords": ["", "  "]}])
    def test_empty_keywords_never_match(self, make_context, items, config):
        context = make_context(message_text="anything")

        result = KeywordsNode().execute(config, items, context)

        assert result.success
        assert result.items == []

    def test_missing_message_text(self, make_context, items):
        result = KeywordsNode().execute({"keywords": ["price"]}, items, make_context(message_text=None))

        assert result.success
        assert result.items == []

    def test_invalid_config_does_not_raise(self, make_context, items):
        result = KeywordsNode().execute({"keywords": "price"}, items, make_context(message_text="price"))

        assert result.success
        assert result.items == []

    def test_logs_are_returned(self, make_context, items):
        result = KeywordsNode().execute({"keywords": ["hi"]}, items, make_context(message_text="hi"))

        assert any(e.message == "Keyword matched" for e in result.logs)


class TestIsFollowerNode:
    def test_follower(self, make_context, items):
        result = IsFollowerNode().execute({}, items, make_context(sender_id="follower-1"))

        assert result.success
        assert result.outcome == "yes"
        assert result.items[0]["conditionResult"] is True
        assert result.items[0]["conditionType"] == "IS_FOLLOWER"

    def test_not_follower(self, make_context, items):
        result = IsFollowerNode().execute({}, items, make_context(sender_id="stranger"))

        assert result.success
        assert result.outcome == "no"
        assert result.message == "User is not a follower"

    def test_live_value_is_cached(self, make_context, services, items):
        IsFollowerNode().execute({}, items, make_context(sender_id="follower-1"))

        assert services.flags.get_flag("follower:page-1:follower-1") is True

    def test_lookup_failure_uses_last_known_value(self, make_context, services, items):
        services.content = StaticContentQuery(error=ConnectionError("api down"))
        services.flags = InMemoryFlagCache({"follower:page-1:user-1": True})

        result = IsFollowerNode().execute({}, items, make_context())

        assert result.success
        assert result.outcome == "yes"
        assert "cache" in result.message
        assert any(e.level == "warn" for e in result.logs)

    def test_lookup_failure_without_cache_defaults_to_false(self, make_context, services, items):
        services.content = StaticContentQuery(error=ConnectionError("api down"))

        result = IsFollowerNode().execute({}, items, make_context())

        assert result.success
        assert result.outcome == "no"
        assert "default" in result.message

    def test_transient_failures_are_retried(self, make_context, services, items):
        query = StaticContentQuery(error=ConnectionError("reset"))
        services.content = query

        IsFollowerNode().execute({}, items, make_context())

        assert query.lookups == 3

    def test_missing_capability_defaults_to_false(self, make_context, services, items):
        services.content = None

        result = IsFollowerNode().execute({}, items, make_context())

        assert result.success
        assert result.outcome == "no"

    def test_empty_input_still_routes(self, make_context):
        result = IsFollowerNode().execute({}, [], make_context(sender_id="follower-1"))

        assert len(result.items) == 1
        assert result.outcome == "yes"


class TestHasTagNode:
    def test_tags_in_message_text(self, make_context, items):
        context = make_context(message_text="Loving the #Sale today")

        result = HasTagNode().execute({"tags": ["sale"]}, items, context)

        assert result.outcome == "yes"
        assert result.items[0]["matchedTags"] == ["sale"]
        assert result.items[0]["foundTags"] == ["sale"]

    def test_any_of_by_default(self, make_context, items):
        context = make_context(message_text="#sale")

        result = HasTagNode().execute({"tags": ["#new", "#sale"]}, items, context)

        assert result.outcome == "yes"

    def test_match_all(self, make_context, items):
        context = make_context(message_text="#sale only")

        result = HasTagNode().execute({"tags": ["sale", "new"], "matchAll": True}, items, context)

        assert result.outcome == "no"
        assert result.message == "Tags not found"

    def test_media_hashtags_when_text_has_none(self, make_context, items):
        context = make_context(message_text="nice post", media_id="media-1")

        result = HasTagNode().execute({"tags": ["new", "sale"], "matchAll": True}, items, context)

        assert result.outcome == "yes"
        assert sorted(result.items[0]["foundTags"]) == ["new", "sale"]

    def test_media_lookup_failure_falls_back_to_cache(self, make_context, services, items):
        services.content = StaticContentQuery(error=TimeoutError("slow"))
        services.flags = InMemoryFlagCache({"has_tag:media-1:any:sale": True})
        context = make_context(message_text="no tags", media_id="media-1")

        result = HasTagNode().execute({"tags": ["sale"]}, items, context)

        assert result.outcome == "yes"

    def test_no_tags_anywhere(self, make_context, items):
        result = HasTagNode().execute({"tags": ["sale"]}, items, make_context(message_text="plain"))

        assert result.success
        assert result.outcome == "no"

    def test_invalid_config_is_outcome_false(self, make_context, items):
        result = HasTagNode().execute({}, items, make_context(message_text="#sale"))

        assert result.success
        assert result.outcome == "no"


class TestBranchNodes:
    @pytest.mark.parametrize("node_class", [YesNode, NoNode])
    def test_pass_through(self, node_class, make_context, items):
        result = node_class().execute({}, items, make_context())

        assert result.success
        assert result.items == items
