"""User endpoints backed by the per-user feed and recommendation caches."""

import logging
from typing import Annotated, Any

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from app.api.deps import get_current_user, get_session_store, require_verified, user_rate_limit
from app.core.errors import CacheUnavailableError, ServiceFault
from app.models.user import User
from app.services.session_store import SessionStore

logger = logging.getLogger(__name__)
router = APIRouter(
    prefix="/users",
    tags=["users"],
    dependencies=[Depends(get_current_user), Depends(user_rate_limit())],
)


class CachedItemsOut(BaseModel):
    items: list[dict[str, Any]]
    cached: bool


@router.get(
    "/me/feed",
    response_model=CachedItemsOut,
    summary="Cached feed of the current (verified) user",
    responses={403: {"description": "Email verification required"}},
)
async def get_my_feed(
    user: Annotated[User, Depends(require_verified)],
    sessions: Annotated[SessionStore, Depends(get_session_store)],
) -> CachedItemsOut:
    """Absence of a cached feed is a normal state; the client falls back to a fresh fetch."""
    try:
        items = await sessions.get_feed(user.id)
    except CacheUnavailableError as e:
        logger.exception("Feed cache read failed for %s: %s", user.id, e)
        raise ServiceFault("Feed unavailable", detail=str(e)) from e
    return CachedItemsOut(items=items or [], cached=items is not None)


@router.get("/me/recommendations", response_model=CachedItemsOut, summary="Cached recommendations")
async def get_my_recommendations(
    user: Annotated[User, Depends(require_verified)],
    sessions: Annotated[SessionStore, Depends(get_session_store)],
) -> CachedItemsOut:
    try:
        items = await sessions.get_recommendations(user.id)
    except CacheUnavailableError as e:
        logger.exception("Recommendations cache read failed for %s: %s", user.id, e)
        raise ServiceFault("Recommendations unavailable", detail=str(e)) from e
    return CachedItemsOut(items=items or [], cached=items is not None)


@router.delete("/me/caches", summary="Drop the current user's feed and recommendation caches")
async def clear_my_caches(
    user: Annotated[User, Depends(require_verified)],
    sessions: Annotated[SessionStore, Depends(get_session_store)],
):
    try:
        await sessions.invalidate_feed(user.id)
        await sessions.invalidate_recommendations(user.id)
    except CacheUnavailableError as e:
        logger.exception("Cache invalidation failed for %s: %s", user.id, e)
        raise ServiceFault("Cache invalidation failed", detail=str(e)) from e
    return {"success": True}
