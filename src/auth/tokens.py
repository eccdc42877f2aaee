"""
Password hashing and signed tokens.

Session tokens and password-reset tokens are both HS256 JWTs signed with
JWT_SECRET; a ``typ`` claim keeps one from being accepted as the other.
"""

import logging
import secrets as _secrets
from datetime import datetime, timedelta, timezone

import bcrypt
from jose import jwt
from jose.exceptions import ExpiredSignatureError, JWTError

from src.core.errors import InvalidOrExpiredTokenError, InvalidTokenError, ServiceUnavailableError
from src.core.secrets import get_key

log = logging.getLogger("forms.auth")

ALGORITHM = "HS256"
SESSION_TTL = timedelta(days=1)
REMEMBER_ME_TTL = timedelta(days=7)
RESET_TTL = timedelta(hours=1)

_SESSION = "session"
_RESET = "reset"


def _signing_key() -> str:
    key = get_key("jwt_secret")
    if not key:
        log.error("JWT_SECRET is not configured; refusing to sign or verify tokens")
        raise ServiceUnavailableError("Authentication is not configured")
    return key


# ── Passwords ────────────────────────────────────────────────────────────────

# bcrypt only reads the first 72 bytes; newer releases raise instead of truncating
BCRYPT_MAX_BYTES = 72


def _password_bytes(password: str) -> bytes:
    return password.encode("utf-8")[:BCRYPT_MAX_BYTES]


def hash_password(password: str) -> str:
    return bcrypt.hashpw(_password_bytes(password), bcrypt.gensalt()).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    """Constant-time bcrypt check. Malformed or sentinel hashes never match."""
    if not password or not password_hash:
        return False
    try:
        return bcrypt.checkpw(_password_bytes(password), password_hash.encode("utf-8"))
    except ValueError:
        return False


# Compared against when the account doesn't exist, so a miss costs the same as a hit
DUMMY_PASSWORD_HASH = hash_password(_secrets.token_urlsafe(16))


# ── Session tokens ───────────────────────────────────────────────────────────

def issue_session_token(identity: dict, remember_me: bool = False) -> str:
    now = datetime.now(timezone.utc)
    claims = {
        "id": identity["id"],
        "email": identity["email"],
        "name": identity.get("name", ""),
        "role": identity.get("role", "user"),
        "typ": _SESSION,
        "iat": now,
        "exp": now + (REMEMBER_ME_TTL if remember_me else SESSION_TTL),
    }
    return jwt.encode(claims, _signing_key(), algorithm=ALGORITHM)


def decode_session_token(token: str) -> dict:
    """Verify a bearer token and return its identity claims."""
    try:
        claims = jwt.decode(token, _signing_key(), algorithms=[ALGORITHM])
    except ExpiredSignatureError:
        raise InvalidTokenError("Token expired")
    except JWTError:
        raise InvalidTokenError("Invalid token")
    if claims.get("typ") != _SESSION:
        raise InvalidTokenError("Invalid token")
    return {k: claims.get(k) for k in ("id", "email", "name", "role")}


# ── Reset tokens ─────────────────────────────────────────────────────────────

def issue_reset_token(user_id: int, email: str) -> tuple[str, datetime]:
    """Returns (token, expiry). The jti makes every token unique."""
    now = datetime.now(timezone.utc)
    expiry = now + RESET_TTL
    claims = {
        "id": user_id,
        "email": email,
        "typ": _RESET,
        "jti": _secrets.token_urlsafe(12),
        "iat": now,
        "exp": expiry,
    }
    return jwt.encode(claims, _signing_key(), algorithm=ALGORITHM), expiry


def decode_reset_token(token: str) -> dict:
    if not token or not isinstance(token, str):
        raise InvalidOrExpiredTokenError()
    try:
        claims = jwt.decode(token, _signing_key(), algorithms=[ALGORITHM])
    except JWTError:
        raise InvalidOrExpiredTokenError()
    if claims.get("typ") != _RESET or not isinstance(claims.get("id"), int):
        raise InvalidOrExpiredTokenError()
    return claims
