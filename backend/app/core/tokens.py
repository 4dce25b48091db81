"""
TokenService: issue, verify and revoke bearer tokens.

Verification is pure (signature, expiry, issuer, audience). Revocation lives in the cache
under blacklist:{sha256(token)} with a TTL equal to the token's remaining lifetime, so the
blacklist never outgrows the set of still-valid tokens.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone

from jose import ExpiredSignatureError, JWTError

from app.config import settings
from app.core.auth import (
    create_access_token,
    create_refresh_token,
    decode_refresh_token,
    decode_token,
    token_fingerprint,
    unverified_expiry,
)
from app.services.cache import CacheClient

logger = logging.getLogger(__name__)

TOKEN_TYPE = "Bearer"
BLACKLIST_VALUE = "true"


def blacklist_key(token: str) -> str:
    return f"blacklist:{token_fingerprint(token)}"


@dataclass(frozen=True)
class Claims:
    subject_id: str
    token_id: str
    issued_at: datetime
    expires_at: datetime


@dataclass(frozen=True)
class RefreshClaims(Claims):
    session_id: str


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str
    session_id: str
    expires_in: int  # seconds until the access token expires


def _claims_from_payload(payload: dict) -> dict:
    return {
        "subject_id": str(payload["sub"]),
        "token_id": str(payload.get("jti", "")),
        "issued_at": datetime.fromtimestamp(payload.get("iat", 0), tz=timezone.utc),
        "expires_at": datetime.fromtimestamp(payload["exp"], tz=timezone.utc),
    }


class TokenService:
    def __init__(self, cache: CacheClient) -> None:
        self.cache = cache

    def issue(self, subject_id: str, session_id: str | None = None) -> TokenPair:
        sid = session_id or uuid.uuid4().hex
        return TokenPair(
            access_token=create_access_token(subject_id),
            refresh_token=create_refresh_token(subject_id, sid),
            session_id=sid,
            expires_in=settings.access_token_expire_minutes * 60,
        )

    def verify(self, token: str) -> Claims | None:
        """Return claims for a valid access token, None otherwise. No I/O."""
        try:
            payload = decode_token(token)
        except ExpiredSignatureError:
            logger.debug("Access token expired")
            return None
        except JWTError as e:
            logger.warning("Invalid access token: %s", e)
            return None
        return Claims(**_claims_from_payload(payload))

    def verify_refresh(self, token: str) -> RefreshClaims | None:
        try:
            payload = decode_refresh_token(token)
        except ExpiredSignatureError:
            logger.debug("Refresh token expired")
            return None
        except JWTError as e:
            logger.warning("Invalid refresh token: %s", e)
            return None
        return RefreshClaims(session_id=str(payload["sid"]), **_claims_from_payload(payload))

    @staticmethod
    def extract_bearer(header_value: str | None) -> str | None:
        """Token from an `Authorization: Bearer <token>` header, or None."""
        if not header_value or not header_value.startswith(f"{TOKEN_TYPE} "):
            return None
        token = header_value[len(TOKEN_TYPE) + 1:].strip()
        return token or None

    async def is_revoked(self, token: str) -> bool:
        """Cache lookup; a miss means not revoked. CacheUnavailableError propagates."""
        return await self.cache.get(blacklist_key(token)) == BLACKLIST_VALUE

    async def revoke(self, token: str) -> None:
        """Blacklist token until it would have expired anyway. Idempotent."""
        expires_at = unverified_expiry(token)
        if expires_at is None:
            logger.debug("Revoke skipped: token has no readable expiry")
            return
        remaining = int((expires_at - datetime.now(timezone.utc)).total_seconds())
        if remaining <= 0:
            return
        await self.cache.set(blacklist_key(token), BLACKLIST_VALUE, ttl=remaining)
