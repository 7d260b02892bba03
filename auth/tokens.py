"""
auth/tokens.py -- Password hashing, session JWT, and cookie utilities.

Security design decisions:
  Passwords: bcrypt used directly (no passlib wrapper) with a fixed cost
       factor (Settings.bcrypt_rounds, default 10). Accounts created by an
       OAuth login store FEDERATED_ONLY_HASH instead of a bcrypt hash; it is
       not a valid bcrypt string, so verify_password() always returns False
       for it and such accounts can never log in with a password.

  Session JWT: python-jose with HS256. The token carries the session row id
       (sid), the serialized identity (usr), the absolute expiry (exp) and a
       format version (v). Decoding returns None on any failure -- the session
       manager turns that into "unauthenticated".

  SECRET_KEY: sourced from core.config.get_settings(), which validates it at
       startup.

Layer rule: no imports from api/, web/, or library/. Import from core/ is
allowed -- core/ is the kernel and has no reverse dependencies.
"""

from __future__ import annotations

import logging
from datetime import datetime

import bcrypt
from jose import JWTError, jwt

from core.config import get_settings

logger = logging.getLogger("shelfnote.auth")

_settings = get_settings()

_ALGORITHM = "HS256"

# Current session token format. Tokens with any other "v" claim are rejected.
TOKEN_VERSION = 1

SESSION_COOKIE = "session"

_BCRYPT_MAX_BYTES = 72

# Sentinel stored in users.password for OAuth-provisioned accounts.
FEDERATED_ONLY_HASH = "!federated"

# ---------------------------------------------------------------------------
# Password hashing
# ---------------------------------------------------------------------------


def _encode(plain: str) -> bytes:
    return plain.encode("utf-8")[:_BCRYPT_MAX_BYTES]


def hash_password(plain: str) -> str:
    """Return a bcrypt hash of the given plaintext password.

    bcrypt only looks at the first 72 bytes, and bcrypt 5.x refuses longer
    input outright, so the encoded password is cut to 72 bytes here and in
    verify_password().
    """
    salt = bcrypt.gensalt(rounds=_settings.bcrypt_rounds)
    return bcrypt.hashpw(_encode(plain), salt).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash."""
    if not hashed or hashed == FEDERATED_ONLY_HASH:
        return False
    try:
        return bcrypt.checkpw(_encode(plain), hashed.encode("utf-8"))
    except ValueError:
        # Malformed hash (bad salt / not bcrypt)
        return False


# Timing equalization: run bcrypt against this when the username does not
# exist, so response time does not reveal whether an account is registered.
_DUMMY_HASH: str = hash_password("shelfnote_timing_dummy")


def burn_password_check(plain: str) -> None:
    """Spend one bcrypt verification on a throwaway hash."""
    verify_password(plain, _DUMMY_HASH)


# ---------------------------------------------------------------------------
# Session JWT encode / decode
# ---------------------------------------------------------------------------


def encode_session_token(token_id: str, identity: str, expires_at: datetime) -> str:
    """Sign a session token binding a session row to a serialized identity.

    Args:
        token_id:   Primary key of the server-side session row.
        identity:   Output of SessionManager.serialize(user).
        expires_at: Absolute expiry; also enforced server-side on the row.
    """
    payload = {
        "sid": token_id,
        "usr": identity,
        "exp": expires_at,
        "v": TOKEN_VERSION,
    }
    return jwt.encode(payload, _settings.secret_key, algorithm=_ALGORITHM)


def decode_session_token(token: str, verify_exp: bool = True) -> dict | None:
    """Verify a session token. Returns the payload dict or None on any failure.

    Expired, tampered, wrong-version and structurally incomplete tokens all
    come back as None. verify_exp=False still checks the signature; logout
    uses it to find the row behind an already-expired cookie.
    """
    try:
        payload = jwt.decode(
            token,
            _settings.secret_key,
            algorithms=[_ALGORITHM],
            options={"verify_exp": verify_exp},
        )
    except JWTError as exc:
        logger.debug("Session token rejected: %s", exc)
        return None
    if payload.get("v") != TOKEN_VERSION:
        logger.debug("Session token rejected: unsupported version %r", payload.get("v"))
        return None
    if not isinstance(payload.get("sid"), str) or not isinstance(payload.get("usr"), str):
        logger.debug("Session token rejected: missing sid or usr claim")
        return None
    return payload


# ---------------------------------------------------------------------------
# Cookie helper
# ---------------------------------------------------------------------------


def set_session_cookie(response, token: str) -> None:
    """Write the session token as an httpOnly cookie on the response.

    httponly=True: JS cannot read the cookie.
    samesite="lax": sent on top-level navigations, not on cross-site POSTs.
    secure: only sent over HTTPS when SECURE_COOKIES=true.
    max_age: matches the absolute session lifetime. There is no sliding
        renewal; a new login issues a new cookie.
    """
    response.set_cookie(
        SESSION_COOKIE,
        value=token,
        httponly=True,
        samesite="lax",
        secure=_settings.secure_cookies,
        max_age=_settings.session_expire_seconds,
    )


def clear_session_cookie(response) -> None:
    response.delete_cookie(SESSION_COOKIE)
