"""External capabilities consumed by node executors.

The engine never talks to a platform API directly. Executors call the
protocols below through ``context.services``; the host application wires
concrete clients in, tests and dry runs wire in the in-memory versions.
"""
from dataclasses import dataclass
from typing import Any, Literal, Protocol, runtime_checkable

from pydantic import BaseModel, Field

SenderAction = Literal["typing_on", "typing_off", "mark_seen"]


class CapabilityUnavailableError(Exception):
    """Raised when an executor needs a capability the host did not provide."""

    def __init__(self, capability: str):
        self.capability = capability
        super().__init__(f"Capability not configured: {capability}")


class SendResult(BaseModel):
    """Outcome of one outbound platform call."""

    success: bool = Field(..., description="Whether the platform accepted the call")
    message_id: str | None = Field(default=None, description="Platform message/reply ID")
    error: str | None = Field(default=None, description="Platform error message")


class ChatTurn(BaseModel):
    """One turn of conversation history passed to AI generation."""

    role: Literal["user", "model"] = Field(..., description="Who spoke")
    text: str = Field(..., description="What was said")


@runtime_checkable
class MessagingClient(Protocol):
    """Message-send capability (direct messages, templates, sender state)."""

    def send_text(self, page_id: str, recipient_id: str, text: str, token: str) -> SendResult: ...

    def send_carousel(
        self, page_id: str, recipient_id: str, elements: list[dict[str, Any]], token: str
    ) -> SendResult: ...

    def send_button_template(
        self,
        page_id: str,
        recipient_id: str,
        text: str,
        buttons: list[dict[str, Any]],
        token: str,
    ) -> SendResult: ...

    def send_quick_replies(
        self,
        page_id: str,
        recipient_id: str,
        text: str,
        quick_replies: list[dict[str, Any]],
        token: str,
    ) -> SendResult: ...

    def send_product_template(
        self, page_id: str, recipient_id: str, product_ids: list[str], token: str
    ) -> SendResult: ...

    def send_sender_action(
        self, page_id: str, recipient_id: str, action: SenderAction, token: str
    ) -> SendResult: ...

    def reply_to_comment(self, comment_id: str, text: str, token: str) -> SendResult: ...

    def reply_to_mention(
        self,
        page_id: str,
        media_id: str,
        text: str,
        token: str,
        comment_id: str | None = None,
    ) -> SendResult: ...

    def set_ice_breakers(self, ice_breakers: list[dict[str, Any]], token: str) -> SendResult: ...

    def set_persistent_menu(self, menu_items: list[dict[str, Any]], token: str) -> SendResult: ...


@runtime_checkable
class ContentQueryClient(Protocol):
    """Content-query capability (follower status, hashtags, profiles)."""

    def is_follower(self, page_id: str, user_id: str, token: str) -> bool: ...

    def get_media_hashtags(self, media_id: str, token: str) -> list[str]: ...

    def get_profile(self, user_id: str, token: str) -> dict[str, Any]: ...


@runtime_checkable
class AIGenerator(Protocol):
    """AI-generation capability: prompt + short history -> text."""

    def generate(self, prompt: str, user_message: str, history: list[ChatTurn]) -> str: ...


@runtime_checkable
class ChatHistoryStore(Protocol):
    """Persistence of per-conversation chat history."""

    def get_history(self, page_id: str, sender_id: str, limit: int) -> list[ChatTurn]: ...

    def append(
        self, automation_id: str | None, page_id: str, sender_id: str, turn: ChatTurn
    ) -> None: ...


@runtime_checkable
class FlagCache(Protocol):
    """Last-known values of condition lookups (e.g. follower status)."""

    def get_flag(self, key: str) -> bool | None: ...

    def set_flag(self, key: str, value: bool) -> None: ...


@runtime_checkable
class RateLimiter(Protocol):
    """Rate limiter keyed by (subject, capability).

    Implementations must be safe when several runs for the same subject
    call ``acquire`` at the same time.
    """

    def acquire(self, subject: str, capability: str) -> bool: ...


@runtime_checkable
class SheetsExporter(Protocol):
    """Spreadsheet row export used by the LOG_TO_SHEETS node."""

    def append_row(
        self,
        user_id: str | None,
        spreadsheet_id: str,
        sheet_name: str,
        headers: list[str],
        row: list[Any],
    ) -> SendResult: ...


@runtime_checkable
class AuditStore(Protocol):
    """Persistence of run results for audit and analytics."""

    def record(self, record: dict[str, Any]) -> None: ...

    def get(self, run_id: str) -> dict[str, Any] | None: ...


@dataclass
class Capabilities:
    """Bundle of collaborators available to one run."""

    messaging: MessagingClient | None = None
    content: ContentQueryClient | None = None
    ai: AIGenerator | None = None
    chat_history: ChatHistoryStore | None = None
    flags: FlagCache | None = None
    rate_limiter: RateLimiter | None = None
    sheets: SheetsExporter | None = None

    def require(self, name: str) -> Any:
        """
        Get a capability by attribute name.

        Raises:
            CapabilityUnavailableError: If the host did not provide it
        """
        capability = getattr(self, name, None)
        if capability is None:
            raise CapabilityUnavailableError(name)
        return capability
