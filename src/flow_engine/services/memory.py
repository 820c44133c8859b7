"""In-memory capability implementations.

Used for dry runs (the test-run endpoint and CLI) and in tests. The
recording messenger keeps every outbound call instead of sending it.
"""
import threading
import time
from collections import defaultdict
from typing import Any, Callable

from pydantic import BaseModel, Field

from flow_engine.services.capabilities import ChatTurn, SendResult, SenderAction


class OutboundCall(BaseModel):
    """One call the recording messenger received."""

    kind: str = Field(..., description="Messaging operation name")
    recipient_id: str | None = Field(default=None, description="Recipient, if any")
    text: str | None = Field(default=None, description="Text sent, if any")
    payload: dict[str, Any] = Field(default_factory=dict, description="Remaining arguments")


class RecordingMessenger:
    """MessagingClient that records calls instead of sending them."""

    def __init__(self, fail_kinds: set[str] | None = None):
        """
        Initialize messenger.

        Args:
            fail_kinds: Operation names that should report failure
        """
        self.calls: list[OutboundCall] = []
        self._fail_kinds = fail_kinds or set()
        self._lock = threading.Lock()
        self._counter = 0

    def _record(
        self,
        kind: str,
        recipient_id: str | None = None,
        text: str | None = None,
        **payload: Any,
    ) -> SendResult:
        with self._lock:
            self.calls.append(
                OutboundCall(kind=kind, recipient_id=recipient_id, text=text, payload=payload)
            )
            self._counter += 1
            message_id = f"dry-{self._counter}"
        if kind in self._fail_kinds:
            return SendResult(success=False, error=f"{kind} rejected")
        return SendResult(success=True, message_id=message_id)

    @property
    def sent_texts(self) -> list[str]:
        """Texts of user-visible messages and replies, in send order."""
        return [
            call.text
            for call in self.calls
            if call.text is not None and call.kind != "sender_action"
        ]

    def calls_of(self, kind: str) -> list[OutboundCall]:
        return [call for call in self.calls if call.kind == kind]

    def send_text(self, page_id: str, recipient_id: str, text: str, token: str) -> SendResult:
        return self._record("text", recipient_id, text, page_id=page_id)

    def send_carousel(
        self, page_id: str, recipient_id: str, elements: list[dict[str, Any]], token: str
    ) -> SendResult:
        return self._record("carousel", recipient_id, page_id=page_id, elements=elements)

    def send_button_template(
        self,
        page_id: str,
        recipient_id: str,
        text: str,
        buttons: list[dict[str, Any]],
        token: str,
    ) -> SendResult:
        return self._record("button_template", recipient_id, text, page_id=page_id, buttons=buttons)

    def send_quick_replies(
        self,
        page_id: str,
        recipient_id: str,
        text: str,
        quick_replies: list[dict[str, Any]],
        token: str,
    ) -> SendResult:
        return self._record(
            "quick_replies", recipient_id, text, page_id=page_id, quick_replies=quick_replies
        )

    def send_product_template(
        self, page_id: str, recipient_id: str, product_ids: list[str], token: str
    ) -> SendResult:
        return self._record(
            "product_template", recipient_id, page_id=page_id, product_ids=product_ids
        )

    def send_sender_action(
        self, page_id: str, recipient_id: str, action: SenderAction, token: str
    ) -> SendResult:
        return self._record("sender_action", recipient_id, page_id=page_id, action=action)

    def reply_to_comment(self, comment_id: str, text: str, token: str) -> SendResult:
        return self._record("comment_reply", None, text, comment_id=comment_id)

    def reply_to_mention(
        self,
        page_id: str,
        media_id: str,
        text: str,
        token: str,
        comment_id: str | None = None,
    ) -> SendResult:
        return self._record(
            "mention_reply", None, text, page_id=page_id, media_id=media_id, comment_id=comment_id
        )

    def set_ice_breakers(self, ice_breakers: list[dict[str, Any]], token: str) -> SendResult:
        return self._record("ice_breakers", ice_breakers=ice_breakers)

    def set_persistent_menu(self, menu_items: list[dict[str, Any]], token: str) -> SendResult:
        return self._record("persistent_menu", menu_items=menu_items)


class StaticContentQuery:
    """ContentQueryClient answering from fixed data."""

    def __init__(
        self,
        followers: set[str] | None = None,
        hashtags: dict[str, list[str]] | None = None,
        profiles: dict[str, dict[str, Any]] | None = None,
        error: Exception | None = None,
    ):
        """
        Initialize query client.

        Args:
            followers: User IDs that follow the page
            hashtags: Media ID -> hashtags
            profiles: User ID -> profile dict
            error: If set, every lookup raises this error
        """
        self.followers = followers or set()
        self.hashtags = hashtags or {}
        self.profiles = profiles or {}
        self.error = error
        self.lookups = 0

    def _check(self) -> None:
        self.lookups += 1
        if self.error is not None:
            raise self.error

    def is_follower(self, page_id: str, user_id: str, token: str) -> bool:
        self._check()
        return user_id in self.followers

    def get_media_hashtags(self, media_id: str, token: str) -> list[str]:
        self._check()
        return list(self.hashtags.get(media_id, []))

    def get_profile(self, user_id: str, token: str) -> dict[str, Any]:
        self._check()
        return dict(self.profiles.get(user_id, {}))


class ScriptedAIGenerator:
    """AIGenerator returning canned responses."""

    def __init__(
        self,
        responses: list[str] | None = None,
        default: str = "Thanks for reaching out!",
        error: Exception | None = None,
    ):
        self._responses = list(responses or [])
        self._default = default
        self.error = error
        self.prompts: list[tuple[str, str, list[ChatTurn]]] = []

    def generate(self, prompt: str, user_message: str, history: list[ChatTurn]) -> str:
        self.prompts.append((prompt, user_message, list(history)))
        if self.error is not None:
            raise self.error
        if self._responses:
            return self._responses.pop(0)
        return self._default


class InMemoryChatHistory:
    """ChatHistoryStore kept in a dict."""

    def __init__(self):
        self._turns: dict[tuple[str, str], list[ChatTurn]] = defaultdict(list)
        self._lock = threading.Lock()

    def get_history(self, page_id: str, sender_id: str, limit: int) -> list[ChatTurn]:
        with self._lock:
            turns = list(self._turns[(page_id, sender_id)])
        return turns[-limit:] if limit > 0 else []

    def append(
        self, automation_id: str | None, page_id: str, sender_id: str, turn: ChatTurn
    ) -> None:
        with self._lock:
            self._turns[(page_id, sender_id)].append(turn)


class InMemoryFlagCache:
    """FlagCache kept in a dict."""

    def __init__(self, initial: dict[str, bool] | None = None):
        self._flags: dict[str, bool] = dict(initial or {})
        self._lock = threading.Lock()

    def get_flag(self, key: str) -> bool | None:
        with self._lock:
            return self._flags.get(key)

    def set_flag(self, key: str, value: bool) -> None:
        with self._lock:
            self._flags[key] = value


class InMemoryRateLimiter:
    """Fixed-window rate limiter safe for concurrent runs in one process."""

    def __init__(
        self,
        limit: int,
        window_s: float,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize limiter.

        Args:
            limit: Calls allowed per (subject, capability) within one window
            window_s: Window length in seconds
            clock: Monotonic time source
        """
        self.limit = limit
        self.window_s = window_s
        self._clock = clock
        self._windows: dict[tuple[str, str], tuple[float, int]] = {}
        self._lock = threading.Lock()

    def acquire(self, subject: str, capability: str) -> bool:
        key = (subject, capability)
        now = self._clock()
        with self._lock:
            started, count = self._windows.get(key, (now, 0))
            if now - started >= self.window_s:
                started, count = now, 0
            if count >= self.limit:
                self._windows[key] = (started, count)
                return False
            self._windows[key] = (started, count + 1)
            return True


class InMemorySheetsExporter:
    """SheetsExporter that keeps rows per (spreadsheet, sheet)."""

    def __init__(self):
        self.rows: dict[tuple[str, str], list[list[Any]]] = defaultdict(list)
        self.headers: dict[tuple[str, str], list[str]] = {}

    def append_row(
        self,
        user_id: str | None,
        spreadsheet_id: str,
        sheet_name: str,
        headers: list[str],
        row: list[Any],
    ) -> SendResult:
        key = (spreadsheet_id, sheet_name)
        self.headers.setdefault(key, list(headers))
        self.rows[key].append(list(row))
        return SendResult(success=True)


class InMemoryAuditStore:
    """AuditStore kept in a dict, keyed by run ID."""

    def __init__(self):
        self._records: dict[str, dict[str, Any]] = {}
        self._lock = threading.Lock()

    def record(self, record: dict[str, Any]) -> None:
        with self._lock:
            self._records[record["run_id"]] = record

    def get(self, run_id: str) -> dict[str, Any] | None:
        with self._lock:
            return self._records.get(run_id)

    def __len__(self) -> int:
        return len(self._records)
