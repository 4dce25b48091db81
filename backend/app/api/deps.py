"""
FastAPI dependencies: the request-time authentication pipeline.

get_current_user runs, in this order: bearer extraction, blacklist check, signature/expiry
verification, identity load, account-state check. A revoked token never reaches the
identity lookup. Admitted requests get request.state.user and a detached last-active stamp.

require_verified / require_admin / user_rate_limit read request.state.user, so they must be
listed after get_current_user (or get_optional_user) in the route's dependencies.
"""

import logging
from collections.abc import Callable
from typing import Annotated

from fastapi import Depends, Request

from app.config import settings
from app.core import background
from app.core.errors import (
    AdmissionError,
    AuthError,
    ServiceFault,
    account_deactivated,
    admin_required,
    auth_required,
    token_invalid,
    token_missing,
    token_revoked,
    user_not_found,
    verification_required,
)
from app.core.rate_limit import RateLimiter
from app.core.tokens import TokenService
from app.models.user import User
from app.services.cache import CacheClient
from app.services.event_log import EventLog
from app.services.session_store import SessionStore
from app.services.users import UserRepository

logger = logging.getLogger(__name__)


def get_cache(request: Request) -> CacheClient:
    return request.app.state.cache


def get_token_service(request: Request) -> TokenService:
    return request.app.state.tokens


def get_session_store(request: Request) -> SessionStore:
    return request.app.state.sessions


def get_user_repository(request: Request) -> UserRepository:
    return request.app.state.users


def get_event_log(request: Request) -> EventLog:
    return request.app.state.event_log


def get_rate_limiter(request: Request) -> RateLimiter:
    return request.app.state.rate_limiter


def is_admin_email(email: str) -> bool:
    """Placeholder authorization: admin iff the email ends with a configured domain."""
    email = (email or "").lower()
    return any(email.endswith(domain) for domain in settings.admin_domains)


def get_admin_predicate() -> Callable[[User], bool]:
    """Override this dependency to plug in a real authorization model."""
    return lambda user: is_admin_email(user.email)


def _schedule_mark_active(users: UserRepository, user_id: str) -> None:
    background.spawn(users.mark_active(user_id), name=f"mark-active:{user_id}")


async def get_current_user(
    request: Request,
    tokens: Annotated[TokenService, Depends(get_token_service)],
    users: Annotated[UserRepository, Depends(get_user_repository)],
) -> User:
    token = tokens.extract_bearer(request.headers.get("Authorization"))
    if not token:
        raise token_missing()
    try:
        if await tokens.is_revoked(token):
            raise token_revoked()
        claims = tokens.verify(token)
        if claims is None:
            raise token_invalid()
        user = await users.find_by_id(claims.subject_id)
        if user is None:
            raise user_not_found()
        if not user.is_active:
            raise account_deactivated()
    except AuthError:
        raise
    except Exception as e:
        logger.exception("Authentication middleware error: %s", e)
        raise ServiceFault(detail=f"{type(e).__name__}: {e}") from e

    try:
        _schedule_mark_active(users, user.id)
    except Exception as e:
        logger.error("Failed to schedule last-active update for %s: %s", user.id, e)

    request.state.user = user
    request.state.token = token
    request.state.claims = claims
    logger.debug("User session authenticated: user=%s path=%s", user.id, request.url.path)
    return user


async def get_optional_user(
    request: Request,
    tokens: Annotated[TokenService, Depends(get_token_service)],
    users: Annotated[UserRepository, Depends(get_user_repository)],
) -> User | None:
    """Authenticate if a usable token is present; otherwise continue anonymously. Never rejects."""
    token = tokens.extract_bearer(request.headers.get("Authorization"))
    if not token:
        return None
    try:
        if await tokens.is_revoked(token):
            return None
        claims = tokens.verify(token)
        if claims is None:
            return None
        user = await users.find_by_id(claims.subject_id)
    except Exception as e:
        logger.error("Optional auth middleware error: %s", e)
        return None
    if user is None or not user.is_active:
        return None
    request.state.user = user
    request.state.token = token
    request.state.claims = claims
    return user


def get_request_user(request: Request) -> User:
    """Identity attached by an earlier auth dependency; AUTH_REQUIRED if there is none."""
    user = getattr(request.state, "user", None)
    if user is None:
        raise auth_required()
    return user


async def require_verified(user: Annotated[User, Depends(get_request_user)]) -> User:
    if not user.is_verified:
        raise verification_required()
    return user


async def require_admin(
    user: Annotated[User, Depends(get_request_user)],
    is_admin: Annotated[Callable[[User], bool], Depends(get_admin_predicate)],
) -> User:
    try:
        allowed = is_admin(user)
    except Exception as e:
        logger.exception("Admin check error: %s", e)
        raise ServiceFault("Authorization service error", detail=str(e)) from e
    if not allowed:
        raise admin_required()
    return user


def user_rate_limit(max_requests: int | None = None, window_seconds: float | None = None):
    """Per-user trailing-window limit; anonymous requests are not limited here.

    Defaults to USER_RATE_LIMIT_MAX_REQUESTS per USER_RATE_LIMIT_WINDOW_SECONDS.
    """
    max_requests = max_requests if max_requests is not None else settings.user_rate_limit_max_requests
    window_seconds = window_seconds if window_seconds is not None else settings.user_rate_limit_window_seconds

    async def dependency(
        request: Request,
        limiter: Annotated[RateLimiter, Depends(get_rate_limiter)],
    ) -> None:
        user = getattr(request.state, "user", None)
        if user is None:
            return
        decision = await limiter.check(user.id, max_requests, window_seconds)
        if not decision.allowed:
            raise AdmissionError(retry_after=decision.retry_after or 1)

    return dependency


CurrentUser = Annotated[User, Depends(get_current_user)]
OptionalUser = Annotated[User | None, Depends(get_optional_user)]
