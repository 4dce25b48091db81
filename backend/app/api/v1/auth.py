"""Auth: register, login, refresh, logout, logout-all, me."""

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, Request, status
from pydantic import BaseModel

from app.api.deps import (
    CurrentUser,
    get_event_log,
    get_session_store,
    get_token_service,
    get_user_repository,
)
from app.config import settings
from app.core.auth import hash_password, validate_password_strength, verify_password
from app.core.errors import (
    AuthError,
    ClientAuthError,
    DuplicateUserError,
    ServiceFault,
    StoreUnavailableError,
    account_deactivated,
)
from app.core.tokens import TokenPair, TokenService
from app.models.user import User
from app.schemas.cache import SessionData
from app.services.event_log import EventLog
from app.services.session_store import SessionStore
from app.services.users import UserRepository

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/auth", tags=["auth"])


class RegisterBody(BaseModel):
    email: str
    username: str
    password: str


class LoginBody(BaseModel):
    email: str
    password: str


class RefreshBody(BaseModel):
    refresh_token: str | None = None


class LogoutBody(BaseModel):
    refresh_token: str | None = None


class UserOut(BaseModel):
    id: str
    email: str
    username: str
    is_verified: bool


class TokenResponse(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int  # seconds until access token expires
    user: UserOut


class MessageResponse(BaseModel):
    success: bool = True
    message: str


def _user_out(user: User) -> UserOut:
    return UserOut(id=user.id, email=user.email, username=user.username, is_verified=user.is_verified)


def _token_response(pair: TokenPair, user: User) -> TokenResponse:
    return TokenResponse(
        access_token=pair.access_token,
        refresh_token=pair.refresh_token,
        expires_in=pair.expires_in,
        user=_user_out(user),
    )


def _invalid_refresh() -> ClientAuthError:
    return ClientAuthError("Invalid or expired refresh token", code="INVALID_REFRESH_TOKEN")


def _invalid_session() -> ClientAuthError:
    return ClientAuthError("Invalid refresh token session", code="INVALID_SESSION")


async def _start_session(
    request: Request, user: User, tokens: TokenService, sessions: SessionStore
) -> TokenPair:
    """Issue a fresh pair and cache its session for as long as the refresh token lives."""
    pair = tokens.issue(user.id)
    await sessions.set_session(
        SessionData(
            session_id=pair.session_id,
            user_id=user.id,
            user_agent=request.headers.get("User-Agent"),
            ip_address=request.client.host if request.client else None,
        ),
        ttl=settings.refresh_session_ttl_seconds,
    )
    return pair


def _user_exists(field: str) -> ClientAuthError:
    return ClientAuthError(
        f"User with this {field} already exists", status_code=409, code="USER_EXISTS", extra={"field": field}
    )


@router.post(
    "/register",
    response_model=TokenResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Register a new user",
    responses={
        400: {"description": "Missing fields or password too weak"},
        409: {"description": "Email or username already registered"},
    },
)
async def register(
    request: Request,
    body: RegisterBody,
    tokens: Annotated[TokenService, Depends(get_token_service)],
    users: Annotated[UserRepository, Depends(get_user_repository)],
    sessions: Annotated[SessionStore, Depends(get_session_store)],
    event_log: Annotated[EventLog, Depends(get_event_log)],
) -> TokenResponse:
    email = (body.email or "").strip().lower()
    username = (body.username or "").strip()
    password = body.password or ""
    if not email or not username or not password:
        raise ClientAuthError("Email, username and password required", status_code=400, code="VALIDATION_ERROR")
    try:
        taken = await users.find_conflict(email, username)
        if taken:
            raise _user_exists(taken)
        strength = validate_password_strength(password)
        if not strength.is_valid:
            raise ClientAuthError(
                "Password does not meet security requirements",
                status_code=400,
                code="WEAK_PASSWORD",
                extra={"details": strength.feedback, "passwordScore": strength.score},
            )
        try:
            user = await users.create(email, username, hash_password(password))
        except DuplicateUserError as e:
            # Lost a race with a concurrent registration
            logger.warning("Register unique violation: %s", e)
            raise _user_exists((await users.find_conflict(email, username)) or "email") from e
        pair = await _start_session(request, user, tokens, sessions)
    except AuthError:
        raise
    except Exception as e:
        logger.exception("Register failed: %s", e)
        raise ServiceFault("Registration failed", detail=f"{type(e).__name__}: {e}") from e
    try:
        await event_log.record(user.id, "register", {"session_id": pair.session_id})
    except StoreUnavailableError as e:
        logger.warning("Register event not recorded for %s: %s", user.id, e)
    logger.info("User registered: user=%s session=%s", user.id, pair.session_id)
    return _token_response(pair, user)


@router.post(
    "/login",
    response_model=TokenResponse,
    summary="Login with email and password",
    responses={
        401: {"description": "Invalid email or password"},
        403: {"description": "Account has been deactivated"},
    },
)
async def login(
    request: Request,
    body: LoginBody,
    tokens: Annotated[TokenService, Depends(get_token_service)],
    users: Annotated[UserRepository, Depends(get_user_repository)],
    sessions: Annotated[SessionStore, Depends(get_session_store)],
    event_log: Annotated[EventLog, Depends(get_event_log)],
) -> TokenResponse:
    email = (body.email or "").strip().lower()
    password = body.password or ""
    if not email or not password:
        raise ClientAuthError("Email and password required", code="INVALID_CREDENTIALS")
    try:
        user = await users.find_by_email(email)
        if not user or not user.password_hash or not verify_password(password, user.password_hash):
            raise ClientAuthError("Invalid email or password", code="INVALID_CREDENTIALS")
        if not user.is_active:
            raise account_deactivated()
        pair = await _start_session(request, user, tokens, sessions)
    except AuthError:
        raise
    except Exception as e:
        logger.exception("Login failed: %s", e)
        raise ServiceFault("Login failed", detail=f"{type(e).__name__}: {e}") from e
    try:
        await event_log.record(user.id, "login", {"session_id": pair.session_id})
    except StoreUnavailableError as e:
        logger.warning("Login event not recorded for %s: %s", user.id, e)
    logger.info("User session created: user=%s session=%s", user.id, pair.session_id)
    return _token_response(pair, user)


@router.post(
    "/refresh",
    response_model=TokenResponse,
    summary="Exchange refresh token for new access and refresh tokens",
    responses={
        400: {"description": "Refresh token required"},
        401: {"description": "Refresh token invalid, expired, revoked or its session is gone"},
    },
)
async def refresh_tokens(
    body: RefreshBody,
    tokens: Annotated[TokenService, Depends(get_token_service)],
    users: Annotated[UserRepository, Depends(get_user_repository)],
    sessions: Annotated[SessionStore, Depends(get_session_store)],
) -> TokenResponse:
    """Rotate: the presented refresh token is revoked and a new pair is issued for the same session."""
    refresh_token = (body.refresh_token or "").strip()
    if not refresh_token:
        raise ClientAuthError("Refresh token required", status_code=400, code="REFRESH_TOKEN_MISSING")
    try:
        if await tokens.is_revoked(refresh_token):
            raise _invalid_refresh()
        claims = tokens.verify_refresh(refresh_token)
        if claims is None:
            raise _invalid_refresh()
        session = await sessions.get_session(claims.subject_id)
        if session is None or not session.is_active or session.session_id != claims.session_id:
            logger.warning("Invalid session for token refresh: user=%s", claims.subject_id)
            raise _invalid_session()
        user = await users.find_by_id(claims.subject_id)
        if user is None or not user.is_active:
            raise _invalid_session()
        await tokens.revoke(refresh_token)
        pair = tokens.issue(user.id, session_id=claims.session_id)
        await sessions.touch_session(session, ttl=settings.refresh_session_ttl_seconds)
    except AuthError:
        raise
    except Exception as e:
        logger.exception("Token refresh failed: %s", e)
        raise ServiceFault("Token refresh failed", detail=f"{type(e).__name__}: {e}") from e
    logger.info("Token refreshed: user=%s session=%s", user.id, claims.session_id)
    return _token_response(pair, user)


@router.post("/logout", response_model=MessageResponse, summary="Revoke the presented tokens")
async def logout(
    request: Request,
    user: CurrentUser,
    tokens: Annotated[TokenService, Depends(get_token_service)],
    sessions: Annotated[SessionStore, Depends(get_session_store)],
    body: LogoutBody | None = None,
) -> MessageResponse:
    refresh_token = ((body.refresh_token if body else None) or "").strip()
    try:
        await tokens.revoke(request.state.token)
        refresh_claims = tokens.verify_refresh(refresh_token) if refresh_token else None
        if refresh_token:
            await tokens.revoke(refresh_token)
        if refresh_claims is not None and refresh_claims.subject_id == user.id:
            await sessions.deactivate_session(user.id, refresh_claims.session_id)
        else:
            await sessions.delete_session(user.id)
    except Exception as e:
        logger.exception("Logout error: %s", e)
        raise ServiceFault("Logout failed", detail=f"{type(e).__name__}: {e}") from e
    logger.info("User logout: user=%s has_refresh_token=%s", user.id, bool(refresh_token))
    return MessageResponse(message="Logout successful")


@router.post("/logout-all", response_model=MessageResponse, summary="End every session of the current user")
async def logout_all(
    request: Request,
    user: CurrentUser,
    tokens: Annotated[TokenService, Depends(get_token_service)],
    sessions: Annotated[SessionStore, Depends(get_session_store)],
) -> MessageResponse:
    """Dropping the cached session invalidates every refresh chain bound to it."""
    try:
        await tokens.revoke(request.state.token)
        await sessions.delete_session(user.id)
    except Exception as e:
        logger.exception("Logout all error: %s", e)
        raise ServiceFault("Logout all failed", detail=f"{type(e).__name__}: {e}") from e
    logger.info("User logout from all devices: user=%s", user.id)
    return MessageResponse(message="Logged out from all devices")


@router.get(
    "/me",
    response_model=UserOut,
    summary="Get current authenticated user",
    responses={
        401: {"description": "Not authenticated or invalid token"},
    },
)
async def me(user: CurrentUser) -> UserOut:
    return _user_out(user)
