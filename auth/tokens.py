"""
auth/tokens.py -- Session JWTs, password hashing, and keyed digests.

Security design decisions:
  JWT: python-jose with HS256. Session tokens carry the account uid (sub),
       issue time, expiry, and a random jti so two tokens minted in the same
       second for the same account are still distinct. Verification returns
       None on any failure; SessionIssuer turns that into Unauthorized.

  Passwords: bcrypt used directly with a configurable cost (BCRYPT_ROUNDS).
       hash_password() is the ONLY way a password reaches the store -- signup
       and password reset both call it. _DUMMY_HASH enables timing
       equalization at login so response time does not reveal whether an
       email is registered.

  Passcodes and reset codes: stored as HMAC-SHA256(SECRET_KEY, value). The
       digest is deterministic so lookup stays O(1), and a leaked database
       does not reveal live codes without SECRET_KEY.

Layer rule: no imports from api/. Import from core/ is allowed.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import secrets
from datetime import datetime, timedelta, timezone

import bcrypt
from jose import JWTError, jwt

from core.config import get_settings

logger = logging.getLogger("campusauth.auth")

_settings = get_settings()

_ALGORITHM = "HS256"

AUTH_COOKIE = "auth_token"

# ---------------------------------------------------------------------------
# Password hashing (bcrypt -- direct usage, no passlib wrapper)
# ---------------------------------------------------------------------------


def hash_password(plain: str) -> str:
    """Return a bcrypt hash of the given plaintext password.

    bcrypt only considers the first 72 bytes; the API layer caps passwords at
    72 characters and AuthService re-checks the encoded length.
    """
    salt = bcrypt.gensalt(rounds=_settings.bcrypt_rounds)
    return bcrypt.hashpw(plain.encode("utf-8"), salt).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash."""
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        # Malformed stored hash
        return False


# Computed once at module load so the first login is not measurably slower.
_DUMMY_HASH: str = hash_password("campusauth_timing_dummy")


def burn_password_check(plain: str) -> None:
    """Run one bcrypt comparison against a dummy hash and discard the result."""
    verify_password(plain, _DUMMY_HASH)


# ---------------------------------------------------------------------------
# Session JWT encode / decode
# ---------------------------------------------------------------------------


def create_session_token(uid: str, expire_seconds: int = 0) -> str:
    """Encode a signed session JWT for the given account uid.

    Args:
        uid:            Account identity key, stored as the subject claim.
        expire_seconds: Token lifetime. 0 means Settings.session_ttl_seconds.
    """
    duration = expire_seconds if expire_seconds > 0 else _settings.session_ttl_seconds
    now = datetime.now(timezone.utc)
    payload = {
        "sub": uid,
        "iat": now,
        "exp": now + timedelta(seconds=duration),
        "jti": secrets.token_hex(8),
    }
    return jwt.encode(payload, _settings.secret_key, algorithm=_ALGORITHM)


def decode_session_token(token: str) -> dict | None:
    """Verify signature and expiry. Returns the payload dict or None on any failure."""
    try:
        payload = jwt.decode(token, _settings.secret_key, algorithms=[_ALGORITHM])
    except JWTError:
        return None
    if not isinstance(payload.get("sub"), str):
        return None
    return payload


# ---------------------------------------------------------------------------
# Keyed digests for passcodes and reset codes
# ---------------------------------------------------------------------------


def keyed_digest(value: str) -> str:
    """Return HMAC-SHA256(SECRET_KEY, value) as a hex string."""
    return hmac.new(
        _settings.secret_key.encode(),
        value.encode(),
        hashlib.sha256,
    ).hexdigest()


# ---------------------------------------------------------------------------
# Cookie helpers
# ---------------------------------------------------------------------------


def set_auth_cookie(response, token: str, expire_seconds: int = 0) -> None:
    """Write the session token as an httpOnly cookie on the response.

    max_age matches the JWT expiry so both expire together.
    """
    duration = expire_seconds if expire_seconds > 0 else _settings.session_ttl_seconds
    response.set_cookie(
        AUTH_COOKIE,
        value=token,
        httponly=True,
        samesite="lax",
        secure=_settings.secure_cookies,
        max_age=duration,
    )


def clear_auth_cookie(response) -> None:
    response.delete_cookie(AUTH_COOKIE)
