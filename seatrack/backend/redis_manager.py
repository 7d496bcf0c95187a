"""SeaTrack - Safety Event Stream (Redis Streams with in-memory fallback)."""

import json
import logging
from collections import deque
from typing import Optional, Union

from seatrack.backend.models import SafetyEvent

logger = logging.getLogger("seatrack.stream")

STREAM_MAXLEN = 2000


class InMemoryEventLog:
    """Bounded event log used when Redis is disabled or unreachable."""

    def __init__(self, maxlen: int = STREAM_MAXLEN):
        self._events: deque = deque(maxlen=maxlen)

    def append(self, event: dict):
        self._events.append(event)

    def recent(self, count: int) -> list[dict]:
        return list(self._events)[-count:]


class SafetyEventStream:
    """Keeps the safety event history served by the API.

    Events always land in the local log. With ``use_redis`` they are also
    appended to a capped Redis stream, which then serves history across
    restarts.
    """

    def __init__(self, redis_url: str = "redis://localhost:6379",
                 stream_key: str = "seatrack:safety", use_redis: bool = False):
        self._redis_url = redis_url
        self._stream_key = stream_key
        self._use_redis = use_redis
        self._redis = None
        self._log = InMemoryEventLog()

    @property
    def backend(self) -> str:
        return "redis" if self._redis else "memory"

    async def connect(self):
        if not self._use_redis:
            logger.info("Using in-memory safety event log (Redis disabled)")
            return
        try:
            import redis.asyncio as aioredis
            self._redis = aioredis.from_url(self._redis_url, decode_responses=True)
            await self._redis.ping()
            logger.info("Connected to Redis at %s", self._redis_url)
        except Exception as e:
            logger.warning("Redis unavailable (%s), falling back to in-memory log", e)
            self._redis = None
            self._use_redis = False

    async def publish(self, event: Union[SafetyEvent, dict]):
        data = event.model_dump(mode="json") if isinstance(event, SafetyEvent) else event
        self._log.append(data)
        if self._redis:
            try:
                await self._redis.xadd(
                    self._stream_key,
                    {"data": json.dumps(data, default=str)},
                    maxlen=STREAM_MAXLEN,
                )
            except Exception as e:
                logger.error("Redis publish error: %s", e)

    async def recent(self, count: int = 100, kind: Optional[str] = None) -> list[dict]:
        """Most recent events, oldest first, optionally of a single kind."""
        events = None
        if self._redis:
            try:
                entries = await self._redis.xrevrange(self._stream_key, count=STREAM_MAXLEN if kind else count)
                events = [json.loads(data["data"]) for _id, data in reversed(entries)]
            except Exception as e:
                logger.warning("Redis read error (%s), serving local log", e)
        if events is None:
            events = self._log.recent(STREAM_MAXLEN if kind else count)
        if kind:
            events = [e for e in events if e.get("kind") == kind]
        return events[-count:]

    async def close(self):
        if self._redis:
            await self._redis.aclose()
            self._redis = None
