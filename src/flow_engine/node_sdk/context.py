"""
Execution Context - run-scoped state shared by every node of one run.

The context is created once from the inbound event and passed by
reference through the whole traversal; branches do not get copies.
Apart from the trigger fields it holds exactly one inter-node channel:
the generated-text handoff slot, written by an AI generation node and
consumed (read and cleared) by the next text-sending node downstream of
it. Text pending on one branch is invisible to its sibling branches.
"""

from __future__ import annotations

import uuid
from enum import Enum
from typing import Dict, FrozenSet, Iterable, List, Optional

from pydantic import BaseModel, ConfigDict, Field, PrivateAttr

from flow_engine.services.capabilities import Capabilities

from .errors import HandoffSlotOccupiedError
from .items import Item, ItemMeta, now_ms


class TriggerType(str, Enum):
    """Inbound event kinds that can start a flow."""
    DM = "DM"
    COMMENT = "COMMENT"
    STORY_REPLY = "STORY_REPLY"
    MENTION = "MENTION"


class ExecutionContext(BaseModel):
    """
    Runtime context available to all node executors.

    Contains authentication, account identifiers, the triggering event
    and the collaborator capabilities the executors call.
    """
    model_config = ConfigDict(
        arbitrary_types_allowed=True,
        populate_by_name=True,
        use_enum_values=True,
        validate_default=True,
    )

    run_id: str = Field(default_factory=lambda: str(uuid.uuid4()), alias="runId")

    # Automation identifiers
    automation_id: Optional[str] = Field(None, alias="automationId")
    user_id: Optional[str] = Field(None, alias="userId")

    # Platform credentials and account
    token: str = Field("", description="Platform access token")
    page_id: str = Field("", alias="pageId")
    sender_id: str = Field("", alias="senderId")

    # Trigger data
    trigger_type: TriggerType = Field(TriggerType.DM, alias="triggerType")
    message_text: Optional[str] = Field(None, alias="messageText")
    comment_id: Optional[str] = Field(None, alias="commentId")
    media_id: Optional[str] = Field(None, alias="mediaId")
    is_story_reply: bool = Field(False, alias="isStoryReply")

    # Feature gating
    subscription: Optional[str] = Field(None, alias="userSubscription")

    dry_run: bool = Field(False, alias="dryRun")

    services: Capabilities = Field(default_factory=Capabilities, exclude=True)

    _generated: Dict[str, str] = PrivateAttr(default_factory=dict)
    _current_node_id: Optional[str] = PrivateAttr(default=None)
    _current_scope: Optional[FrozenSet[str]] = PrivateAttr(default=None)

    # ==== Current node ====

    @property
    def current_node_id(self) -> Optional[str]:
        """ID of the node the runner is executing right now."""
        return self._current_node_id

    def enter_node(self, node_id: Optional[str], ancestors: Optional[Iterable[str]] = None) -> None:
        """
        Set by the runner before each executor call.

        ``ancestors`` limits the handoff slot to text generated upstream
        of the node. Without it every pending text is visible.
        """
        self._current_node_id = node_id
        self._current_scope = frozenset(ancestors) if ancestors is not None else None

    # ==== Generated-text handoff slot ====

    def _visible_producers(self) -> List[str]:
        if self._current_scope is None:
            return list(self._generated)
        return [p for p in self._generated if p in self._current_scope]

    def put_generated_text(self, text: str, producer_node_id: Optional[str] = None) -> None:
        """
        Fill the handoff slot for the producing node's downstream branch.

        Raises:
            HandoffSlotOccupiedError: if upstream text was never consumed
        """
        visible = self._visible_producers()
        if visible:
            earlier = visible[-1] or None
            raise HandoffSlotOccupiedError(
                f"Generated text from node '{earlier}' was never consumed",
                producer_node_id=earlier,
            )
        producer = producer_node_id or self._current_node_id or ""
        self._generated.pop(producer, None)
        self._generated[producer] = text

    def take_generated_text(self) -> Optional[str]:
        """Read and clear the newest text generated upstream of the current node."""
        visible = self._visible_producers()
        if not visible:
            return None
        return self._generated.pop(visible[-1])

    def peek_generated_text(self) -> Optional[str]:
        """Read the handoff slot without consuming it."""
        visible = self._visible_producers()
        return self._generated[visible[-1]] if visible else None

    def discard_generated_text(self, producer_node_id: str) -> Optional[str]:
        """Drop a producer's pending text; returns it, or None if nothing was pending."""
        return self._generated.pop(producer_node_id, None)

    @property
    def pending_producers(self) -> List[str]:
        """Producers whose text has not been consumed, oldest first."""
        return list(self._generated)

    @property
    def has_generated_text(self) -> bool:
        return bool(self._generated)

    # ==== Item stream ====

    def initial_items(self) -> List[Item]:
        """Default item stream derived from the triggering event."""
        return [
            Item(
                json_data={
                    "messageText": self.message_text,
                    "senderId": self.sender_id,
                    "commentId": self.comment_id,
                    "mediaId": self.media_id,
                    "triggerType": self.trigger_type,
                },
                meta=ItemMeta(source_node_id=None, timestamp=now_ms()),
            )
        ]
