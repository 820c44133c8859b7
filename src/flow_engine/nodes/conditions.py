"""
Condition executors.

A condition reports its outcome through the branch label on its output
items ("yes"/"no"), which the runner matches against edge labels.
KEYWORDS is the exception: no match means no output at all, which stops
the branch.
"""

from __future__ import annotations

import re
from typing import Any, Callable, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from flow_engine.node_sdk import (
    BaseNode,
    EmptyConfig,
    ExecutionContext,
    Item,
    LogBuffer,
    NodeCategory,
    NodeExecutionResult,
)

from .base import first_error, pass_through, preview


HASHTAG_PATTERN = re.compile(r"#\w+")


def branch_items(items: List[Item], result: bool, **data: Any) -> List[Item]:
    """Copy items with the condition outcome in data and meta."""
    branch = "yes" if result else "no"
    return [
        item.evolve({"conditionResult": result, **data}, branch=branch)
        for item in pass_through(items)
    ]


def normalize_tag(tag: str) -> str:
    return tag.strip().lower().lstrip("#")


# ==============================================================================
# Config models
# ==============================================================================

class KeywordsConfig(BaseModel):
    model_config = ConfigDict(extra="allow")

    keywords: List[str] = Field(..., min_length=1)

    @field_validator("keywords", mode="before")
    @classmethod
    def drop_non_strings(cls, v: Any) -> Any:
        if v is None:
            return []
        if isinstance(v, list):
            return [k for k in v if isinstance(k, str) and k.strip()]
        return v


class HasTagConfig(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    tags: List[str] = Field(..., min_length=1)
    match_all: bool = Field(False, alias="matchAll", description="AND instead of OR")

    @field_validator("tags")
    @classmethod
    def tags_not_blank(cls, v: List[str]) -> List[str]:
        if any(not normalize_tag(t) for t in v):
            raise ValueError("tags must not be blank")
        return v


# ==============================================================================
# Executors
# ==============================================================================

class ConditionNode(BaseNode):
    category = NodeCategory.CONDITION

    def lookup_with_fallback(
        self,
        cache_key: str,
        lookup: Callable[[], bool],
        context: ExecutionContext,
        logs: LogBuffer,
    ) -> Tuple[bool, str]:
        """
        Live lookup with retry; on failure use the last known value from
        the flag cache; without one, default to False.

        Returns (value, source) where source is live, cache or default.
        """
        flags = context.services.flags
        try:
            value = bool(self.call_with_retry(lookup))
        except Exception as e:
            logs.warn("Lookup failed", error=str(e), errorType=type(e).__name__)
            cached: Optional[bool] = None
            if flags is not None:
                try:
                    cached = flags.get_flag(cache_key)
                except Exception as cache_error:
                    logs.warn("Flag cache unavailable", error=str(cache_error))
            if cached is not None:
                logs.warn("Using last known value", value=cached)
                return cached, "cache"
            logs.warn("No last known value - defaulting to false")
            return False, "default"

        if flags is not None:
            try:
                flags.set_flag(cache_key, value)
            except Exception as e:
                logs.debug("Could not store last known value", error=str(e))
        return value, "live"


class KeywordsNode(ConditionNode):
    """
    Case-insensitive substring match of the configured keywords against
    the message text. The first keyword (in configured order) that
    matches wins.
    """

    sub_type = "KEYWORDS"
    description = "Filter messages based on keyword matches"
    config_model = KeywordsConfig

    def match(self, keywords: List[str], text: Optional[str]) -> Optional[str]:
        if not text:
            return None
        lowered = text.lower()
        for keyword in keywords:
            if keyword.lower() in lowered:
                return keyword
        return None

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
            logs.error("Invalid keyword configuration", detail=first_error(e))
            return NodeExecutionResult.ok([], "Invalid keyword configuration", logs=logs.entries)

        keywords = parsed.keywords
        text = context.message_text or ""
        logs.debug(
            "Checking keywords",
            messagePreview=preview(text),
            keywordCount=len(keywords),
            keywords=keywords[:5],
        )

        matched = self.match(keywords, text)
        if matched is None:
            logs.info("No keyword matched - branch ends")
            return NodeExecutionResult.ok([], "No keyword matched", logs=logs.entries)

        logs.info("Keyword matched", matchedKeyword=matched)
        out = [
            item.evolve(
                {"keywordMatched": True, "keyword_matched_word": matched},
                branch="yes",
            )
            for item in pass_through(items)
        ]
        return NodeExecutionResult.ok(out, f"Keyword matched: {matched}", logs=logs.entries)


class IsFollowerNode(ConditionNode):
    sub_type = "IS_FOLLOWER"
    description = "Check if the sender follows the page"
    config_model = EmptyConfig

    def execute(
        self,
        config: Dict[str, Any],
        items: List[Item],
        context: ExecutionContext,
    ) -> NodeExecutionResult:
        logs = self.new_log_buffer(context)
        logs.info("Checking if user is follower", senderId=context.sender_id)

        def lookup() -> bool:
            content = context.services.require("content")
            return content.is_follower(context.page_id, context.sender_id, context.token)

        is_follower, source = self.lookup_with_fallback(
            f"follower:{context.page_id}:{context.sender_id}",
            lookup,
            context,
            logs,
        )
        logs.info(f"Follower check complete: {is_follower}", isFollower=is_follower, source=source)

        out = branch_items(items, is_follower, conditionType=self.sub_type)
        message = "User is a follower" if is_follower else "User is not a follower"
        if source != "live":
            message += f" ({source} value)"
        return NodeExecutionResult.ok(out, message, logs=logs.entries)


class HasTagNode(ConditionNode):
    """
    Hashtag condition.

    Tags come from the message text first; when the text carries none,
    the media's hashtags are looked up. ``matchAll`` switches from
    any-of to all-of.
    """

    sub_type = "HAS_TAG"
    description = "Check if content contains specific hashtags"
    config_model = HasTagConfig

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
            logs.error("Invalid tag configuration", detail=first_error(e))
            out = branch_items(items, False, conditionType=self.sub_type)
            return NodeExecutionResult.ok(
                out, "Invalid tag configuration - defaulting to false", logs=logs.entries
            )

        wanted = [normalize_tag(t) for t in parsed.tags]
        logs.debug("Checking for tags", tags=wanted, matchAll=parsed.match_all)

        found = [normalize_tag(t) for t in HASHTAG_PATTERN.findall(context.message_text or "")]
        source = "text"

        if not found and context.media_id:
            def lookup() -> bool:
                content = context.services.require("content")
                media_tags = {
                    normalize_tag(t)
                    for t in content.get_media_hashtags(context.media_id, context.token)
                }
                found.extend(sorted(media_tags))
                return self._matches(wanted, media_tags, parsed.match_all)

            mode = "all" if parsed.match_all else "any"
            has_tag, source = self.lookup_with_fallback(
                f"has_tag:{context.media_id}:{mode}:{','.join(sorted(wanted))}",
                lookup,
                context,
                logs,
            )
        else:
            has_tag = self._matches(wanted, set(found), parsed.match_all)

        matched = [t for t in wanted if t in found]
        logs.info(f"Tag check complete: {has_tag}", hasTag=has_tag, matchedTags=matched, source=source)

        out = branch_items(
            items,
            has_tag,
            conditionType=self.sub_type,
            foundTags=list(found),
            matchedTags=matched,
        )
        return NodeExecutionResult.ok(out, "Tags found" if has_tag else "Tags not found", logs=logs.entries)

    @staticmethod
    def _matches(wanted: List[str], found: set, match_all: bool) -> bool:
        if match_all:
            return all(t in found for t in wanted)
        return any(t in found for t in wanted)


class BranchNode(ConditionNode):
    """YES/NO pass-through; routing happens on the edge into this node."""

    config_model = EmptyConfig

    def execute(
        self,
        config: Dict[str, Any],
        items: List[Item],
        context: ExecutionContext,
    ) -> NodeExecutionResult:
        return NodeExecutionResult.ok(pass_through(items), "Branch node")


class YesNode(BranchNode):
    sub_type = "YES"
    description = "Branch taken when the condition is true"


class NoNode(BranchNode):
    sub_type = "NO"
    description = "Branch taken when the condition is false"
