import json
import logging
from collections.abc import Awaitable, Callable

import redis.asyncio as redis

from app.config import settings

logger = logging.getLogger(__name__)

TAGS_KEY = "tags:list"
_PENDING_DELETES = "cache_pending_deletes"


class CacheManager:
    """
    Cache-aside store for the tag list.

    Tags are append-only, so the cached list only goes stale when a new
    tag row is committed; the delete is queued on the session and applied
    by ``get_db`` after the commit.
    Article views carry per-viewer flags and never pass through here.

    A missing or failing Redis turns every lookup into a miss; callers
    never see a Redis error.
    """

    def __init__(self) -> None:
        self._redis: redis.Redis | None = None
        self._hits = 0
        self._misses = 0

    @property
    def available(self) -> bool:
        return self._redis is not None

    async def connect(self) -> None:
        client = redis.from_url(
            settings.REDIS_URL,
            decode_responses=True,
            socket_connect_timeout=2,
            socket_timeout=2,
        )
        try:
            await client.ping()
        except Exception as exc:  # pragma: no cover
            logger.warning("Redis unreachable at %s, tag cache disabled: %s", settings.REDIS_URL, exc)
            await client.aclose()
            return
        self._redis = client
        logger.info("Tag cache connected: %s", settings.REDIS_URL)

    async def disconnect(self) -> None:
        client, self._redis = self._redis, None
        if client is not None:
            await client.aclose()

    async def get(self, key: str) -> list | dict | None:
        if self._redis is None:
            self._misses += 1
            return None
        try:
            raw = await self._redis.get(key)
        except Exception as exc:
            logger.debug("Cache read failed for %r: %s", key, exc)
            raw = None
        if raw is None:
            self._misses += 1
            return None
        self._hits += 1
        return json.loads(raw)

    async def set(self, key: str, value: list | dict, ttl: int | None = None) -> None:
        if self._redis is None:
            return
        try:
            await self._redis.set(key, json.dumps(value), ex=ttl)
        except Exception as exc:
            logger.debug("Cache write failed for %r: %s", key, exc)

    async def delete(self, key: str) -> None:
        if self._redis is None:
            return
        try:
            await self._redis.delete(key)
        except Exception as exc:
            logger.debug("Cache delete failed for %r: %s", key, exc)

    async def get_or_load(
        self, key: str, loader: Callable[[], Awaitable[list]], ttl: int | None = None
    ) -> list:
        """Return the cached value for *key*, filling it from *loader* on a miss."""
        cached = await self.get(key)
        if cached is not None:
            return cached
        value = await loader()
        await self.set(key, value, ttl=ttl)
        return value

    async def invalidate_tags(self) -> None:
        await self.delete(TAGS_KEY)

    def defer_delete(self, session, key: str) -> None:
        """Drop *key* after *session* commits; nothing happens on rollback."""
        session.info.setdefault(_PENDING_DELETES, set()).add(key)

    async def apply_deferred(self, session) -> None:
        for key in session.info.pop(_PENDING_DELETES, ()):
            await self.delete(key)

    def discard_deferred(self, session) -> None:
        session.info.pop(_PENDING_DELETES, None)

    def invalidate_tags_on_commit(self, session) -> None:
        self.defer_delete(session, TAGS_KEY)

    @property
    def stats(self) -> dict:
        total = self._hits + self._misses
        return {
            "available": self.available,
            "hits": self._hits,
            "misses": self._misses,
            "hit_rate": round(self._hits / total * 100, 1) if total else 0.0,
        }


cache = CacheManager()
