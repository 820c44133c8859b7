"""Tests for the in-memory collaborators."""
from flow_engine.services import (
    ChatTurn,
    InMemoryAuditStore,
    InMemoryChatHistory,
    InMemoryFlagCache,
    InMemoryRateLimiter,
    RecordingMessenger,
    ScriptedAIGenerator,
    StaticContentQuery,
)


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


class TestRecordingMessenger:
    """Test RecordingMessenger."""

    def test_records_calls_in_order(self):
        """Every call is kept with sequential dry-run IDs."""
        messenger = RecordingMessenger()

        first = messenger.send_text("page", "user", "hello", "token")
        second = messenger.send_sender_action("page", "user", "typing_on", "token")

        assert first.message_id == "dry-1"
        assert second.message_id == "dry-2"
        assert [c.kind for c in messenger.calls] == ["text", "sender_action"]
        assert messenger.sent_texts == ["hello"]

    def test_fail_kinds(self):
        """Configured kinds report failure but are still recorded."""
        messenger = RecordingMessenger(fail_kinds={"comment_reply"})

        result = messenger.reply_to_comment("c1", "hi", "token")

        assert not result.success
        assert result.error == "comment_reply rejected"
        assert len(messenger.calls_of("comment_reply")) == 1


class TestStaticContentQuery:
    """Test StaticContentQuery."""

    def test_lookups(self):
        client = StaticContentQuery(followers={"u1"}, hashtags={"m1": ["#a"]})

        assert client.is_follower("p", "u1", "t")
        assert not client.is_follower("p", "u2", "t")
        assert client.get_media_hashtags("m1", "t") == ["#a"]
        assert client.get_media_hashtags("m2", "t") == []
        assert client.lookups == 4

    def test_profiles(self):
        client = StaticContentQuery(profiles={"u1": {"name": "Ada"}})

        assert client.get_profile("u1", "t") == {"name": "Ada"}
        assert client.get_profile("u2", "t") == {}

    def test_error(self):
        client = StaticContentQuery(error=TimeoutError("slow"))

        try:
            client.is_follower("p", "u", "t")
        except TimeoutError as e:
            assert str(e) == "slow"
        else:
            raise AssertionError("expected TimeoutError")


class TestScriptedAIGenerator:
    def test_responses_then_default(self):
        ai = ScriptedAIGenerator(responses=["one"], default="fallback")

        assert ai.generate("p", "hi", []) == "one"
        assert ai.generate("p", "hi again", []) == "fallback"
        assert [p[1] for p in ai.prompts] == ["hi", "hi again"]


class TestInMemoryChatHistory:
    """Test InMemoryChatHistory."""

    def test_limit_keeps_newest(self):
        """History returns the newest turns, oldest first."""
        store = InMemoryChatHistory()
        for i in range(5):
            store.append("auto", "page", "user", ChatTurn(role="user", text=f"m{i}"))

        assert [t.text for t in store.get_history("page", "user", 2)] == ["m3", "m4"]
        assert store.get_history("page", "user", 0) == []
        assert store.get_history("page", "other", 5) == []


class TestInMemoryFlagCache:
    def test_get_set(self):
        cache = InMemoryFlagCache({"a": True})

        cache.set_flag("b", False)

        assert cache.get_flag("a") is True
        assert cache.get_flag("b") is False
        assert cache.get_flag("c") is None


class TestInMemoryRateLimiter:
    """Test InMemoryRateLimiter."""

    def test_limit_within_window(self):
        """Calls beyond the limit are refused until the window rolls over."""
        clock = FakeClock()
        limiter = InMemoryRateLimiter(limit=2, window_s=60, clock=clock)

        assert limiter.acquire("u1", "ai")
        assert limiter.acquire("u1", "ai")
        assert not limiter.acquire("u1", "ai")

        clock.now += 60
        assert limiter.acquire("u1", "ai")

    def test_subjects_are_independent(self):
        limiter = InMemoryRateLimiter(limit=1, window_s=60, clock=FakeClock())

        assert limiter.acquire("u1", "ai")
        assert limiter.acquire("u2", "ai")
        assert limiter.acquire("u1", "sheets")
        assert not limiter.acquire("u1", "ai")


class TestInMemoryAuditStore:
    def test_record_and_get(self):
        store = InMemoryAuditStore()

        store.record({"run_id": "r1", "status": "success"})

        assert store.get("r1") == {"run_id": "r1", "status": "success"}
        assert store.get("r2") is None
        assert len(store) == 1
