"""
Error taxonomy for the auth path and the JSON envelope every rejection uses:
{"success": false, "error": <message>, "code": <CODE>}.
"""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from prometheus_client import Counter

from app.config import settings

logger = logging.getLogger(__name__)

AUTH_REJECTIONS = Counter("auth_rejections_total", "Requests rejected on the auth path", ["code"])


class AuthError(Exception):
    """Base for every error rendered with the auth envelope."""

    status_code: int = 500
    code: str = "AUTH_SERVICE_ERROR"

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        code: str | None = None,
        extra: dict | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        # Additional envelope fields, e.g. {"field": "email"}
        self.extra = extra or {}
        if status_code is not None:
            self.status_code = status_code
        if code is not None:
            self.code = code


class ClientAuthError(AuthError):
    """Missing/invalid/revoked credential or insufficient privilege (401/403)."""

    status_code = 401
    code = "TOKEN_INVALID"


class AdmissionError(AuthError):
    """Rate limit rejection (429); always carries a retry hint in seconds."""

    status_code = 429
    code = "RATE_LIMIT_EXCEEDED"

    def __init__(self, retry_after: int, message: str = "Too many requests") -> None:
        super().__init__(message)
        self.retry_after = retry_after


class ServiceFault(AuthError):
    """Anything unanticipated on the auth path. Rendered without internals."""

    status_code = 500
    code = "AUTH_SERVICE_ERROR"

    def __init__(self, message: str = "Authentication service error", *, detail: str | None = None) -> None:
        super().__init__(message)
        self.detail = detail


class CacheUnavailableError(Exception):
    """The key/value cache could not be reached or timed out."""


class StoreUnavailableError(Exception):
    """The relational store could not be reached or timed out."""


class DuplicateUserError(Exception):
    """A user with the same email or username already exists."""


# Stable rejections used by the middleware
def token_missing() -> ClientAuthError:
    return ClientAuthError("Access token required", code="TOKEN_MISSING")


def token_revoked() -> ClientAuthError:
    return ClientAuthError("Token has been revoked", code="TOKEN_REVOKED")


def token_invalid() -> ClientAuthError:
    return ClientAuthError("Invalid or expired token", code="TOKEN_INVALID")


def user_not_found() -> ClientAuthError:
    return ClientAuthError("User not found", code="USER_NOT_FOUND")


def account_deactivated() -> ClientAuthError:
    return ClientAuthError("Account has been deactivated", status_code=403, code="ACCOUNT_DEACTIVATED")


def auth_required() -> ClientAuthError:
    return ClientAuthError("Authentication required", code="AUTH_REQUIRED")


def verification_required() -> ClientAuthError:
    return ClientAuthError("Email verification required", status_code=403, code="VERIFICATION_REQUIRED")


def admin_required() -> ClientAuthError:
    return ClientAuthError("Admin privileges required", status_code=403, code="ADMIN_REQUIRED")


def error_body(exc: AuthError) -> dict:
    body: dict = {"success": False, "error": exc.message, "code": exc.code}
    body.update(exc.extra)
    if isinstance(exc, AdmissionError):
        body["retryAfter"] = exc.retry_after
    if isinstance(exc, ServiceFault) and exc.detail and not settings.is_production:
        body["detail"] = exc.detail
    return body


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(AuthError)
    async def handle_auth_error(request: Request, exc: AuthError) -> JSONResponse:
        AUTH_REJECTIONS.labels(code=exc.code).inc()
        headers = None
        if isinstance(exc, AdmissionError):
            headers = {"Retry-After": str(exc.retry_after)}
            logger.warning("Rate limit exceeded: path=%s user=%s", request.url.path, _user_id(request))
        elif exc.status_code >= 500:
            logger.error("Auth service error on %s: %s", request.url.path, exc.message)
        return JSONResponse(status_code=exc.status_code, content=error_body(exc), headers=headers)


def _user_id(request: Request) -> str | None:
    user = getattr(request.state, "user", None)
    return getattr(user, "id", None)
