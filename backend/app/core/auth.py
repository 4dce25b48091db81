"""Password hashing and JWT creation/verification for access and refresh tokens."""

import hashlib
import re
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone, timedelta
from typing import Any

import bcrypt
from jose import JWTError, jwt

from app.config import settings

ACCESS_TOKEN_TYPE = "access"
REFRESH_TOKEN_TYPE = "refresh"
REFRESH_ALGORITHM = "HS256"


def token_fingerprint(token: str) -> str:
    """SHA256 of the raw token string; stable identifier for blacklist keys."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def hash_password(password: str) -> str:
    """Hash password with bcrypt. Bytes truncated to 72 (bcrypt limit); no passlib re-encoding."""
    pwd_bytes = password.encode("utf-8")[:72]
    hashed = bcrypt.hashpw(pwd_bytes, bcrypt.gensalt())
    return hashed.decode("utf-8")


@dataclass(frozen=True)
class PasswordStrength:
    is_valid: bool
    score: int  # 0..5
    feedback: list[str] = field(default_factory=list)


_SPECIAL_CHARS = re.compile(r"[!@#$%^&*()_+\-=\[\]{};':\"\\|,.<>/?]")
_COMMON_PATTERNS = (
    re.compile(r"123456"),
    re.compile(r"password", re.IGNORECASE),
    re.compile(r"qwerty", re.IGNORECASE),
    re.compile(r"(.)\1{2,}"),  # same character three times in a row
)


def validate_password_strength(password: str) -> PasswordStrength:
    """
    Score a new password: length (1, or 2 from 12 chars) plus one point per character class
    (lower, upper, digit, special), minus one for a common pattern. Valid at score >= 4 and
    at least 8 characters.
    """
    feedback: list[str] = []
    score = 0
    if len(password) < 8:
        feedback.append("Password must be at least 8 characters long")
    elif len(password) >= 12:
        score += 2
    else:
        score += 1

    for pattern in (r"[a-z]", r"[A-Z]", r"[0-9]"):
        if re.search(pattern, password):
            score += 1
    if _SPECIAL_CHARS.search(password):
        score += 1

    if any(p.search(password) for p in _COMMON_PATTERNS):
        score -= 1
        feedback.append("Avoid common patterns and repeated characters")

    is_valid = score >= 4 and len(password) >= 8
    if not is_valid and not feedback:
        feedback.append("Password needs uppercase, lowercase, number, and special character")
    return PasswordStrength(is_valid=is_valid, score=max(0, min(5, score)), feedback=feedback)


def verify_password(plain_password: str, password_hash: str) -> bool:
    """Verify password with bcrypt. Plain password truncated to 72 bytes."""
    plain_bytes = plain_password.encode("utf-8")[:72]
    try:
        return bcrypt.checkpw(plain_bytes, password_hash.encode("utf-8"))
    except ValueError:
        # Malformed stored hash
        return False


def _get_jwt_signing_key_and_algorithm() -> tuple[str, str]:
    """Return (key, algorithm) for signing access tokens."""
    if settings.use_rs256:
        return settings.jwt_private_key.strip(), "RS256"
    return settings.secret_key, settings.jwt_algorithm


def _get_jwt_verification_key_and_algorithms() -> tuple[str, list[str]]:
    """Return (key, algorithms) for verifying access tokens."""
    if settings.use_rs256:
        return settings.jwt_public_key.strip(), ["RS256"]
    return settings.secret_key, [settings.jwt_algorithm]


def _encode(payload: dict[str, Any], key: str, algorithm: str) -> str:
    result = jwt.encode(payload, key, algorithm=algorithm)
    return result if isinstance(result, str) else result.decode("utf-8")


def _base_claims(subject_id: str, token_type: str, lifetime: timedelta) -> dict[str, Any]:
    now = datetime.now(timezone.utc)
    return {
        "sub": str(subject_id),
        "type": token_type,
        "jti": uuid.uuid4().hex,
        "iat": now,
        "exp": now + lifetime,
        "iss": settings.jwt_issuer,
        "aud": settings.jwt_audience,
    }


def create_access_token(subject_id: str, expires_delta: timedelta | None = None) -> str:
    lifetime = expires_delta if expires_delta is not None else timedelta(minutes=settings.access_token_expire_minutes)
    payload = _base_claims(subject_id, ACCESS_TOKEN_TYPE, lifetime)
    key, algorithm = _get_jwt_signing_key_and_algorithm()
    return _encode(payload, key, algorithm)


def create_refresh_token(subject_id: str, session_id: str, expires_delta: timedelta | None = None) -> str:
    """Refresh tokens are always HS256 under REFRESH_SECRET_KEY, separate from access tokens."""
    lifetime = expires_delta if expires_delta is not None else timedelta(days=settings.refresh_token_expire_days)
    payload = _base_claims(subject_id, REFRESH_TOKEN_TYPE, lifetime)
    payload["sid"] = session_id
    return _encode(payload, settings.refresh_secret_key, REFRESH_ALGORITHM)


def _decode(token: str, key: str, algorithms: list[str], expected_type: str) -> dict[str, Any]:
    payload = jwt.decode(
        token,
        key,
        algorithms=algorithms,
        audience=settings.jwt_audience,
        issuer=settings.jwt_issuer,
    )
    if payload.get("type") != expected_type:
        raise JWTError(f"Expected {expected_type} token")
    if not payload.get("sub"):
        raise JWTError("Missing subject")
    return payload


def decode_token(token: str) -> dict[str, Any]:
    """Decode and validate an access token. Raises JWTError."""
    key, algorithms = _get_jwt_verification_key_and_algorithms()
    return _decode(token, key, algorithms, ACCESS_TOKEN_TYPE)


def decode_refresh_token(token: str) -> dict[str, Any]:
    """Decode and validate a refresh token. Raises JWTError."""
    payload = _decode(token, settings.refresh_secret_key, [REFRESH_ALGORITHM], REFRESH_TOKEN_TYPE)
    if not payload.get("sid"):
        raise JWTError("Missing session id")
    return payload


def unverified_expiry(token: str) -> datetime | None:
    """Read `exp` without checking the signature. None if the token is not a parseable JWT."""
    try:
        claims = jwt.get_unverified_claims(token)
    except JWTError:
        return None
    exp = claims.get("exp")
    if not isinstance(exp, (int, float)):
        return None
    return datetime.fromtimestamp(exp, tz=timezone.utc)
