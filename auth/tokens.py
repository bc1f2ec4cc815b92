"""
auth/tokens.py -- Session tokens (JWT) and password hashing.

Security design decisions:
  JWT: python-jose with HS256. Tokens are signed with SECRET_KEY and carry
       user_id, email (as sub), role, iat and exp. verify_token() raises a
       TokenError subclass that names the failure (malformed, bad signature,
       expired); the authentication layer collapses all of them into
       "unauthenticated" and never shows the difference to clients.

       The role claim is a hint only. auth/dependencies.py re-reads the user
       on every request, so a demotion takes effect before the token expires.

  Passwords: bcrypt used directly. Bcrypt's cost factor makes brute-force
       expensive and checkpw() compares in constant time. The _DUMMY_HASH
       constant enables timing equalization in authenticate_user() so response
       time does not reveal whether an email is registered.

  SECRET_KEY: sourced from core.config.get_settings(). The Settings class
       validates the key at startup (see core/config.py).

Layer rule: no imports from api/ or tracker/. Import from core/ is allowed --
core/ is the kernel and has no reverse dependencies.
"""

from __future__ import annotations

import binascii
import logging
import re
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

import bcrypt
from jose import jwt
from jose.exceptions import ExpiredSignatureError, JWTClaimsError, JWTError
from jose.utils import base64url_decode, base64url_encode

from auth.models import Role, SessionClaims, User
from core.config import get_settings

if TYPE_CHECKING:
    from auth.store import UserStore

logger = logging.getLogger("taskboard.auth")

# ---------------------------------------------------------------------------
# Config -- read once at module load via the lru_cache singleton
# ---------------------------------------------------------------------------

_settings = get_settings()

_ALGORITHM = "HS256"
_SIGNATURE_SEGMENT = re.compile(r"[A-Za-z0-9_-]+")


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class TokenError(Exception):
    """Base class for every reason a presented token is rejected."""


class InvalidToken(TokenError):
    """The token is malformed, unparseable, or carries invalid claims."""


class InvalidSignature(TokenError):
    """The token was tampered with or signed with a different key."""


class TokenExpired(TokenError):
    """The current time is past the token's expires_at."""


# ---------------------------------------------------------------------------
# Password hashing (bcrypt -- direct usage, no passlib wrapper)
# ---------------------------------------------------------------------------


def hash_password(plain: str) -> str:
    """Return a bcrypt hash of the given plaintext password.

    gensalt() produces a fresh random salt per call, so two users with the
    same password get different hashes. Passwords longer than 72 bytes are
    truncated by bcrypt; the API layer caps passwords at 72 characters.
    """
    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash.

    A malformed stored hash is a non-match, not an error.
    """
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        return False


# Computed once at module load so the first login attempt is not measurably
# slower than subsequent ones.
_DUMMY_HASH: str = hash_password("taskboard_timing_dummy")


# ---------------------------------------------------------------------------
# Claims
# ---------------------------------------------------------------------------


def build_claims(user: User, now: datetime | None = None, ttl_seconds: int = 0) -> SessionClaims:
    """Build the claims for a new session of `user`.

    Args:
        user:        A stored user (id must be set).
        now:         Issue instant; defaults to the current UTC time.
        ttl_seconds: Session duration. If 0 (default), uses
                     Settings.token_expire_seconds (7 days).
    """
    if user.id is None:
        raise ValueError("Cannot issue a session for an unsaved user.")
    issued_at = (now or datetime.now(timezone.utc)).astimezone(timezone.utc).replace(microsecond=0)
    duration = ttl_seconds if ttl_seconds > 0 else _settings.token_expire_seconds
    return SessionClaims(
        user_id=user.id,
        email=user.email,
        role=Role(user.role),
        issued_at=issued_at,
        expires_at=issued_at + timedelta(seconds=duration),
    )


# ---------------------------------------------------------------------------
# JWT encode / decode
# ---------------------------------------------------------------------------


def issue_token(claims: SessionClaims) -> str:
    """Serialize and sign `claims` as a compact JWT.

    Signing errors are not caught: a failure here means the key or algorithm
    is misconfigured, and retrying cannot fix that.
    """
    payload = {
        "sub": claims.email,
        "user_id": claims.user_id,
        "role": claims.role.value,
        "iat": int(claims.issued_at.timestamp()),
        "exp": int(claims.expires_at.timestamp()),
    }
    token = jwt.encode(payload, _settings.secret_key, algorithm=_ALGORITHM)
    logger.debug("Issued session token for user_id=%s until %s", claims.user_id, claims.expires_at.isoformat())
    return token


def verify_token(token: str) -> SessionClaims:
    """Verify a JWT and return its claims.

    Raises:
        InvalidToken:     malformed token or missing/invalid claims.
        InvalidSignature: signature does not match SECRET_KEY.
        TokenExpired:     exp is in the past (beyond the configured leeway).
    """
    parts = token.split(".", 2)
    if len(parts) != 3:
        raise InvalidToken("Token is malformed.")
    header, payload_segment, signature = parts

    # Header and payload are parsed without the signature so a structurally
    # broken token is reported as malformed rather than as a signature failure.
    try:
        jwt.get_unverified_claims(f"{header}.{payload_segment}.")
    except JWTError as exc:
        raise InvalidToken("Token is malformed.") from exc

    _require_canonical_signature(signature)

    try:
        payload = jwt.decode(
            token,
            _settings.secret_key,
            algorithms=[_ALGORITHM],
            options={"leeway": _settings.token_leeway_seconds},
        )
    except ExpiredSignatureError as exc:
        raise TokenExpired("Token has expired.") from exc
    except JWTClaimsError as exc:
        raise InvalidToken(f"Token claims are invalid: {exc}") from exc
    except JWTError as exc:
        # The token already parsed above and python-jose checks the signature
        # before any claim, so what is left is a signature or algorithm mismatch.
        raise InvalidSignature("Token signature is invalid.") from exc

    return _payload_to_claims(payload)


def _require_canonical_signature(signature: str) -> None:
    """Reject any signature segment that is not the unique encoding of its bytes.

    base64url decoding ignores the unused low bits of the last character, so
    without this check two different segments can verify against one MAC.
    """
    if not _SIGNATURE_SEGMENT.fullmatch(signature):
        raise InvalidSignature("Token signature is not base64url.")
    try:
        raw = base64url_decode(signature.encode("ascii"))
    except (binascii.Error, ValueError) as exc:
        raise InvalidSignature("Token signature is not base64url.") from exc
    if base64url_encode(raw).decode("ascii") != signature:
        raise InvalidSignature("Token signature is not canonically encoded.")


def _payload_to_claims(payload: dict) -> SessionClaims:
    try:
        return SessionClaims(
            user_id=int(payload["user_id"]),
            email=str(payload["sub"]),
            role=Role(payload["role"]),
            issued_at=datetime.fromtimestamp(int(payload["iat"]), tz=timezone.utc),
            expires_at=datetime.fromtimestamp(int(payload["exp"]), tz=timezone.utc),
        )
    except (KeyError, TypeError, ValueError) as exc:
        raise InvalidToken("Token is missing required claims.") from exc


# ---------------------------------------------------------------------------
# User authentication (constant-time)
# ---------------------------------------------------------------------------


def authenticate_user(store: UserStore, email: str, password: str) -> User | None:
    """Authenticate an email/password login with timing equalization.

    Always runs bcrypt whether or not the user exists:
    - Unknown email: bcrypt runs against _DUMMY_HASH (same cost as real check)
    - Wrong password: bcrypt runs against the real hash (same cost)

    Returns the User (with hashed_password redacted) on success, None on any
    failure. Callers must not tell the two failure cases apart.
    """
    user = store.get_by_email(email, include_secret=True)
    if user is None or not user.hashed_password:
        verify_password(password, _DUMMY_HASH)
        return None
    if not verify_password(password, user.hashed_password):
        return None
    return replace(user, hashed_password=None)


# ---------------------------------------------------------------------------
# Cookie helper
# ---------------------------------------------------------------------------


def set_auth_cookie(response, token: str, expire_seconds: int = 0) -> None:
    """Write the JWT as an httpOnly cookie on the response.

    httponly=True: JS cannot read the cookie (XSS mitigation).
    samesite="lax": cookie is not sent on cross-site POSTs (CSRF mitigation).
    secure: only sent over HTTPS when SECURE_COOKIES=true (set in production).
    max_age: matches the JWT expiry so both expire together.
    """
    duration = expire_seconds if expire_seconds > 0 else _settings.token_expire_seconds
    response.set_cookie(
        "access_token",
        value=token,
        httponly=True,
        samesite="lax",
        secure=_settings.secure_cookies,
        max_age=duration,
    )
