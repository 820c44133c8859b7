"""
Built-in node executors.

NODE_EXECUTORS is the explicit subtype table; ``build_node_registry``
instantiates each executor once and returns a frozen registry.
"""

from typing import List, Type

from flow_engine.node_registry import NodeRegistry
from flow_engine.node_sdk import BaseNode

from .triggers import (
    CommentTriggerNode,
    DMTriggerNode,
    MentionTriggerNode,
    StoryReplyTriggerNode,
)
from .conditions import HasTagNode, IsFollowerNode, KeywordsNode, NoNode, YesNode
from .messaging import ButtonTemplateNode, CarouselNode, MessageNode, QuickRepliesNode
from .replies import ReplyCommentNode, ReplyMentionNode
from .smart_ai import SmartAINode
from .sender_actions import MarkSeenNode, TypingOffNode, TypingOnNode
from .utility import DelayNode


NODE_EXECUTORS: List[Type[BaseNode]] = [
    # Triggers
    DMTriggerNode,
    CommentTriggerNode,
    StoryReplyTriggerNode,
    MentionTriggerNode,
    # Conditions
    KeywordsNode,
    IsFollowerNode,
    HasTagNode,
    YesNode,
    NoNode,
    # Actions
    MessageNode,
    SmartAINode,
    ReplyCommentNode,
    ReplyMentionNode,
    CarouselNode,
    ButtonTemplateNode,
    QuickRepliesNode,
    TypingOnNode,
    TypingOffNode,
    MarkSeenNode,
    DelayNode,
]


def build_node_registry() -> NodeRegistry:
    """Registry holding one instance of every built-in executor."""
    registry = NodeRegistry()
    for node_class in NODE_EXECUTORS:
        registry.register(node_class())
    return registry.freeze()


__all__ = [
    "NODE_EXECUTORS",
    "build_node_registry",
    "ButtonTemplateNode",
    "CarouselNode",
    "CommentTriggerNode",
    "DMTriggerNode",
    "DelayNode",
    "HasTagNode",
    "IsFollowerNode",
    "KeywordsNode",
    "MarkSeenNode",
    "MentionTriggerNode",
    "MessageNode",
    "NoNode",
    "QuickRepliesNode",
    "ReplyCommentNode",
    "ReplyMentionNode",
    "SmartAINode",
    "StoryReplyTriggerNode",
    "TypingOffNode",
    "TypingOnNode",
    "YesNode",
]
