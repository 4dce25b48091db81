"""
Typed cache namespaces over the shared CacheClient.

Key shapes and default TTLs are a compatibility contract with data already in Redis:
  session:{userId}                 86400 s
  user:{userId}:feed                3600 s
  user:{userId}:recommendations     1800 s
  content:{contentId}:views         no expiry (counter)
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Generic, TypeVar

from pydantic import BaseModel, ValidationError

from app.config import settings
from app.schemas.cache import CachedCollection, SessionData
from app.services.cache import CacheClient

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)

# Deactivated sessions are kept briefly so refresh attempts can be logged against them
DEACTIVATED_SESSION_TTL_SECONDS = 60


@dataclass(frozen=True)
class Namespace:
    name: str
    key_template: str
    default_ttl: int | None

    def key(self, entity_id: str) -> str:
        return self.key_template.format(id=entity_id)


SESSION = Namespace("session", "session:{id}", settings.session_ttl_seconds)
FEED = Namespace("feed", "user:{id}:feed", settings.feed_cache_ttl_seconds)
RECOMMENDATIONS = Namespace(
    "recommendations", "user:{id}:recommendations", settings.recommendations_cache_ttl_seconds
)
VIEWS = Namespace("views", "content:{id}:views", None)


class CacheNamespace(Generic[ModelT]):
    """get/set/delete for one namespace; values are JSON-encoded pydantic models."""

    def __init__(self, cache: CacheClient, namespace: Namespace, schema: type[ModelT]) -> None:
        self.cache = cache
        self.namespace = namespace
        self.schema = schema

    async def set(self, entity_id: str, value: ModelT, ttl: int | None = None) -> None:
        ttl = ttl if ttl is not None else self.namespace.default_ttl
        await self.cache.set(self.namespace.key(entity_id), value.model_dump_json(), ttl=ttl)

    async def get(self, entity_id: str) -> ModelT | None:
        key = self.namespace.key(entity_id)
        raw = await self.cache.get(key)
        if raw is None:
            return None
        try:
            return self.schema.model_validate_json(raw)
        except ValidationError as e:
            logger.debug("Cache: discarding undecodable %s entry %s: %s", self.namespace.name, key, e)
            return None

    async def delete(self, entity_id: str) -> None:
        await self.cache.delete(self.namespace.key(entity_id))


class CounterNamespace:
    """Persistent monotonic counters (INCR is atomic on the Redis side)."""

    def __init__(self, cache: CacheClient, namespace: Namespace) -> None:
        self.cache = cache
        self.namespace = namespace

    async def increment(self, entity_id: str) -> int:
        return await self.cache.incr(self.namespace.key(entity_id))

    async def get(self, entity_id: str) -> int:
        raw = await self.cache.get(self.namespace.key(entity_id))
        if raw is None:
            return 0
        try:
            return max(0, int(raw))
        except ValueError:
            logger.debug("Cache: non-integer counter at %s", self.namespace.key(entity_id))
            return 0

    async def delete(self, entity_id: str) -> None:
        await self.cache.delete(self.namespace.key(entity_id))


class SessionStore:
    def __init__(self, cache: CacheClient) -> None:
        self.sessions = CacheNamespace(cache, SESSION, SessionData)
        self.feed = CacheNamespace(cache, FEED, CachedCollection)
        self.recommendations = CacheNamespace(cache, RECOMMENDATIONS, CachedCollection)
        self.views = CounterNamespace(cache, VIEWS)

    # Sessions

    async def set_session(self, data: SessionData, ttl: int | None = None) -> None:
        await self.sessions.set(data.user_id, data, ttl)

    async def get_session(self, user_id: str) -> SessionData | None:
        return await self.sessions.get(user_id)

    async def delete_session(self, user_id: str) -> None:
        await self.sessions.delete(user_id)

    async def touch_session(self, data: SessionData, ttl: int | None = None) -> SessionData:
        """Stamp last_used and restart the session TTL (namespace default unless ttl is given)."""
        updated = data.model_copy(update={"last_used": datetime.now(timezone.utc)})
        await self.set_session(updated, ttl)
        return updated

    async def deactivate_session(self, user_id: str, session_id: str) -> bool:
        """Mark the user's session inactive if it is session_id. Returns True if it was."""
        current = await self.get_session(user_id)
        if current is None or current.session_id != session_id:
            return False
        await self.set_session(current.model_copy(update={"is_active": False}), ttl=DEACTIVATED_SESSION_TTL_SECONDS)
        return True

    # Feed and recommendation caches

    async def cache_feed(self, user_id: str, items: list[dict[str, Any]], ttl: int | None = None) -> None:
        await self.feed.set(user_id, CachedCollection(items=items), ttl)

    async def get_feed(self, user_id: str) -> list[dict[str, Any]] | None:
        cached = await self.feed.get(user_id)
        return cached.items if cached is not None else None

    async def invalidate_feed(self, user_id: str) -> None:
        await self.feed.delete(user_id)

    async def cache_recommendations(self, user_id: str, items: list[dict[str, Any]], ttl: int | None = None) -> None:
        await self.recommendations.set(user_id, CachedCollection(items=items), ttl)

    async def get_recommendations(self, user_id: str) -> list[dict[str, Any]] | None:
        cached = await self.recommendations.get(user_id)
        return cached.items if cached is not None else None

    async def invalidate_recommendations(self, user_id: str) -> None:
        await self.recommendations.delete(user_id)

    # View counters

    async def increment_view_count(self, content_id: str) -> int:
        return await self.views.increment(content_id)

    async def get_view_count(self, content_id: str) -> int:
        return await self.views.get(content_id)
