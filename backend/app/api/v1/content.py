"""Content view counters: the business-side consumer of the shared cache and event log."""

import logging
from typing import Annotated

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from app.api.deps import (
    get_current_user,
    get_event_log,
    get_optional_user,
    get_request_user,
    get_session_store,
    require_admin,
    user_rate_limit,
)
from app.config import settings
from app.core.errors import CacheUnavailableError, ServiceFault, StoreUnavailableError
from app.models.user import User
from app.services.event_log import EventLog
from app.services.session_store import SessionStore

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/content", tags=["content"])


class ViewCountOut(BaseModel):
    content_id: str
    views: int


@router.post(
    "/{content_id}/view",
    response_model=ViewCountOut,
    summary="Record a view of a content item",
    dependencies=[
        Depends(get_current_user),
        Depends(user_rate_limit(settings.content_view_rate_limit, settings.content_view_rate_window_seconds)),
    ],
    responses={429: {"description": "Too many requests for this user"}},
)
async def record_view(
    content_id: str,
    user: Annotated[User, Depends(get_request_user)],
    sessions: Annotated[SessionStore, Depends(get_session_store)],
    event_log: Annotated[EventLog, Depends(get_event_log)],
) -> ViewCountOut:
    try:
        views = await sessions.increment_view_count(content_id)
    except CacheUnavailableError as e:
        logger.exception("View count increment failed for %s: %s", content_id, e)
        raise ServiceFault("View tracking failed", detail=str(e)) from e
    try:
        await event_log.record(user.id, "content_view", {"content_id": content_id})
    except StoreUnavailableError as e:
        logger.warning("content_view event not recorded for %s: %s", user.id, e)
    return ViewCountOut(content_id=content_id, views=views)


@router.get(
    "/{content_id}/views",
    response_model=ViewCountOut,
    summary="View count of a content item",
    dependencies=[Depends(get_optional_user)],
)
async def get_views(
    content_id: str,
    sessions: Annotated[SessionStore, Depends(get_session_store)],
) -> ViewCountOut:
    try:
        views = await sessions.get_view_count(content_id)
    except CacheUnavailableError as e:
        logger.exception("View count read failed for %s: %s", content_id, e)
        raise ServiceFault("View count unavailable", detail=str(e)) from e
    return ViewCountOut(content_id=content_id, views=views)


@router.delete(
    "/{content_id}/views",
    response_model=ViewCountOut,
    summary="Reset the view counter (admin)",
    dependencies=[Depends(get_current_user)],
)
async def reset_views(
    content_id: str,
    admin: Annotated[User, Depends(require_admin)],
    sessions: Annotated[SessionStore, Depends(get_session_store)],
) -> ViewCountOut:
    try:
        await sessions.views.delete(content_id)
    except CacheUnavailableError as e:
        logger.exception("View count reset failed for %s: %s", content_id, e)
        raise ServiceFault("View count reset failed", detail=str(e)) from e
    logger.info("View counter reset: content=%s by=%s", content_id, admin.id)
    return ViewCountOut(content_id=content_id, views=0)
