"""Redis-backed capability stores.

Rate limiting, flag cache, chat history and run audit records survive
process restarts and are shared by every worker pointing at the same
Redis instance.
"""
import json
from typing import Any

import redis

from flow_engine.config import get_settings
from flow_engine.observability import get_logger
from flow_engine.services.capabilities import ChatTurn

logger = get_logger(__name__)


def _client_from_settings() -> redis.Redis:
    settings = get_settings()
    return redis.from_url(settings.redis_url, decode_responses=True)


class RedisRateLimiter:
    """Fixed-window rate limiter using INCR + EXPIRE.

    The counter is incremented atomically, so concurrent runs for the same
    subject never both see a free slot.
    """

    def __init__(
        self,
        limit: int | None = None,
        window_s: int | None = None,
        redis_client: redis.Redis | None = None,
    ):
        """
        Initialize rate limiter.

        Args:
            limit: Calls per window (defaults to settings.ai_rate_limit)
            window_s: Window length (defaults to settings.ai_rate_window_s)
            redis_client: Optional Redis client (will create one if not provided)
        """
        settings = get_settings()
        self.limit = limit if limit is not None else settings.ai_rate_limit
        self.window_s = window_s if window_s is not None else settings.ai_rate_window_s
        self.redis_client = redis_client or _client_from_settings()
        self._prefix = "ratelimit:"

    def _key(self, subject: str, capability: str) -> str:
        return f"{self._prefix}{capability}:{subject}"

    def acquire(self, subject: str, capability: str) -> bool:
        key = self._key(subject, capability)
        pipe = self.redis_client.pipeline()
        pipe.incr(key)
        pipe.expire(key, self.window_s, nx=True)
        count, _ = pipe.execute()
        allowed = int(count) <= self.limit
        if not allowed:
            logger.info(
                "Rate limit reached",
                extra={"subject": subject, "capability": capability, "count": int(count)},
            )
        return allowed


class RedisFlagCache:
    """Last-known condition values, e.g. follower status."""

    def __init__(self, redis_client: redis.Redis | None = None, ttl_s: int | None = None):
        self.redis_client = redis_client or _client_from_settings()
        self.ttl_s = ttl_s
        self._prefix = "flag:"

    def get_flag(self, key: str) -> bool | None:
        value = self.redis_client.get(f"{self._prefix}{key}")
        if value is None:
            return None
        return value == "1"

    def set_flag(self, key: str, value: bool) -> None:
        encoded = "1" if value else "0"
        if self.ttl_s:
            self.redis_client.setex(f"{self._prefix}{key}", self.ttl_s, encoded)
        else:
            self.redis_client.set(f"{self._prefix}{key}", encoded)


class RedisChatHistoryStore:
    """Per-conversation chat history kept in a capped Redis list."""

    def __init__(self, redis_client: redis.Redis | None = None, max_turns: int = 50):
        self.redis_client = redis_client or _client_from_settings()
        self.max_turns = max_turns
        self._prefix = "chat:"

    def _key(self, page_id: str, sender_id: str) -> str:
        return f"{self._prefix}{page_id}:{sender_id}"

    def get_history(self, page_id: str, sender_id: str, limit: int) -> list[ChatTurn]:
        if limit <= 0:
            return []
        raw = self.redis_client.lrange(self._key(page_id, sender_id), -limit, -1)
        return [ChatTurn.model_validate_json(entry) for entry in raw]

    def append(
        self, automation_id: str | None, page_id: str, sender_id: str, turn: ChatTurn
    ) -> None:
        key = self._key(page_id, sender_id)
        pipe = self.redis_client.pipeline()
        pipe.rpush(key, turn.model_dump_json())
        pipe.ltrim(key, -self.max_turns, -1)
        pipe.execute()


class RedisAuditStore:
    """Run audit records, one JSON document per run ID."""

    def __init__(self, redis_client: redis.Redis | None = None, ttl_s: int | None = None):
        """
        Initialize audit store.

        Args:
            redis_client: Optional Redis client (will create one if not provided)
            ttl_s: Record lifetime (defaults to settings.audit_ttl_s)
        """
        self.redis_client = redis_client or _client_from_settings()
        self.ttl_s = ttl_s if ttl_s is not None else get_settings().audit_ttl_s
        self._prefix = "run:"

    def record(self, record: dict[str, Any]) -> None:
        run_id = record["run_id"]
        self.redis_client.setex(
            f"{self._prefix}{run_id}",
            self.ttl_s,
            json.dumps(record, default=str),
        )
        logger.info(
            "Run recorded",
            extra={"run_id": run_id, "status": record.get("status")},
        )

    def get(self, run_id: str) -> dict[str, Any] | None:
        data = self.redis_client.get(f"{self._prefix}{run_id}")
        if data is None:
            return None
        return json.loads(data)
