"""
auth/tokens.py -- JWT issue/verify and password hashing.

Security design decisions:
  JWT: python-jose with HS256. Two token kinds with independent keys and
       lifetimes:
         access   SECRET_KEY, ACCESS_TOKEN_EXPIRE_SECONDS (15 min default).
                  Claims: sub, email, role, teamIds, type="access".
         refresh  REFRESH_SECRET_KEY, REFRESH_TOKEN_EXPIRE_SECONDS (7 days).
                  Claims: sub, type="refresh", jti.
       Decoding returns None on any failure (bad signature, expired, wrong
       kind) -- the dependency layer turns that into Unauthorized.

  Refresh rotation: every refresh token is recorded in RefreshTokenStore.
       A refresh call deletes the presented token and issues a new one, so
       each refresh token is single-use. A token missing from the store is
       rejected even if its signature and expiry are fine (logout, reuse).
       Records carry expires_at and expired ones are purged on issue.

  Passwords: bcrypt used directly. The _DUMMY_HASH constant enables timing
       equalization in authenticate_user() so response time does not reveal
       whether an email is registered.

Layer rule: no imports from api/ or tracker/. core/ is allowed.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

import bcrypt
from jose import JWTError, jwt

from core.config import get_settings

if TYPE_CHECKING:
    from auth.models import User
    from auth.store import RefreshTokenStore, UserStore

logger = logging.getLogger("vmp.auth")

# ---------------------------------------------------------------------------
# Config -- read once at module load via the lru_cache singleton
# ---------------------------------------------------------------------------

_settings = get_settings()

_ALGORITHM = "HS256"
_ACCESS = "access"
_REFRESH = "refresh"

# ---------------------------------------------------------------------------
# Password hashing (bcrypt -- direct usage, no passlib wrapper)
# ---------------------------------------------------------------------------


def hash_password(plain: str) -> str:
    """Return a bcrypt hash of the given plaintext password.

    bcrypt only looks at the first 72 bytes; the API caps password length
    well below that with a Pydantic max_length.
    """
    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash."""
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        # Malformed stored hash
        return False


# Computed once at module load so the first login is not measurably slower.
_DUMMY_HASH: str = hash_password("vmp_timing_dummy")


# ---------------------------------------------------------------------------
# JWT encode / decode
# ---------------------------------------------------------------------------


def _expiry(seconds: int) -> datetime:
    return datetime.now(timezone.utc) + timedelta(seconds=seconds)


def create_access_token(user: User, expire_seconds: int = 0) -> str:
    """Encode a short-lived access token carrying the user's role and teams.

    expire_seconds overrides ACCESS_TOKEN_EXPIRE_SECONDS when > 0 (tests use
    this to mint already-expired or long-lived tokens).
    """
    duration = expire_seconds if expire_seconds > 0 else _settings.access_token_expire_seconds
    payload = {
        "sub": user.id,
        "email": user.email,
        "role": user.role,
        "teamIds": list(user.team_ids),
        "type": _ACCESS,
        "exp": _expiry(duration),
    }
    return jwt.encode(payload, _settings.secret_key, algorithm=_ALGORITHM)


def create_refresh_token(user_id: str, expires_at: datetime | None = None) -> str:
    """Encode a refresh token. The random jti makes every token value unique."""
    payload = {
        "sub": user_id,
        "type": _REFRESH,
        "jti": uuid.uuid4().hex,
        "exp": expires_at or _expiry(_settings.refresh_token_expire_seconds),
    }
    return jwt.encode(payload, _settings.refresh_secret_key, algorithm=_ALGORITHM)


def _decode(token: str, key: str, kind: str) -> dict | None:
    try:
        payload = jwt.decode(token, key, algorithms=[_ALGORITHM])
    except JWTError:
        return None
    if payload.get("type") != kind or not payload.get("sub"):
        return None
    return payload


def decode_access_token(token: str) -> dict | None:
    """Verify an access token. Returns the payload dict or None on any failure."""
    return _decode(token, _settings.secret_key, _ACCESS)


def decode_refresh_token(token: str) -> dict | None:
    """Verify a refresh token's signature and expiry (not its revocation state)."""
    return _decode(token, _settings.refresh_secret_key, _REFRESH)


# ---------------------------------------------------------------------------
# Refresh token lifecycle
# ---------------------------------------------------------------------------


def issue_refresh_token(store: RefreshTokenStore, user_id: str) -> str:
    """Create a refresh token and record it as live.

    Records of tokens that expired without being rotated or revoked are
    purged first, so the store holds roughly one record per active session.
    """
    expires_at = _expiry(_settings.refresh_token_expire_seconds)
    token = create_refresh_token(user_id, expires_at)
    store.purge_expired()
    store.add(user_id, token, expires_at)
    return token


def rotate_refresh_token(store: RefreshTokenStore, token: str) -> tuple[str, str] | None:
    """Exchange a live refresh token for a new one.

    Returns (user_id, new_token), or None if the token is invalid, expired,
    or no longer tracked. The presented token is revoked before the new one
    is issued; if two requests race on the same token only the one that
    actually deletes it wins.
    """
    payload = decode_refresh_token(token)
    if payload is None:
        return None
    if not store.revoke(token):
        logger.warning("Refresh token for user %s is not tracked (revoked or reused)", payload["sub"])
        return None
    user_id = payload["sub"]
    return user_id, issue_refresh_token(store, user_id)


# ---------------------------------------------------------------------------
# User authentication (constant-time)
# ---------------------------------------------------------------------------


def authenticate_user(store: UserStore, email: str, password: str) -> User | None:
    """Authenticate an email/password login with timing equalization.

    Always runs bcrypt whether or not the user exists, so an attacker cannot
    enumerate registered emails by measuring response time.

    Returns the User on success, None on any failure.
    """
    user = store.get_by_email(email)
    if user is None or user.password_hash is None:
        verify_password(password, _DUMMY_HASH)
        return None
    if not verify_password(password, user.password_hash):
        return None
    return user
