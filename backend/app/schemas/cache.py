"""Versioned payload schemas for cached values. Any payload that does not validate is a miss."""

from datetime import datetime, timezone
from typing import Any, Literal

from pydantic import BaseModel, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SessionData(BaseModel):
    """Server-held session for session:{userId}; one live value per user."""

    version: Literal[1] = 1
    session_id: str
    user_id: str
    user_agent: str | None = None
    ip_address: str | None = None
    created_at: datetime = Field(default_factory=_utcnow)
    last_used: datetime = Field(default_factory=_utcnow)
    is_active: bool = True


class CachedCollection(BaseModel):
    """Memoized per-user list (feed, recommendations). Always a full snapshot."""

    version: Literal[1] = 1
    items: list[dict[str, Any]]
    cached_at: datetime = Field(default_factory=_utcnow)
