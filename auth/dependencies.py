"""
auth/dependencies.py -- Request authentication and FastAPI Depends() helpers.

Two token carriers are checked in priority order:
  1. JWT cookie ("access_token") -- set by the login/register routes.
  2. Authorization: Bearer <token> header -- API clients.
A cookie that fails to authenticate (stale, expired, foreign key) does not
hide a valid Bearer header; the next carrier is tried.

authenticate_token() is the core: verify the token, then re-read the user
from the store so the role in effect is the live one, not the role embedded
in the token at issue time. A demoted user loses privileges on their next
request even though their token is still valid.

Missing, invalid, expired or orphaned tokens are an expected outcome, not
an error: they produce None. Store failures are NOT swallowed -- they
propagate and the app's generic handler answers 500.

try_get_current_user() is the soft variant (returns None on failure).
get_current_user() wraps it and raises HTTP 401 if unauthenticated.
require_roles(*roles) wraps get_current_user() and raises HTTP 403 if the
live role is not one of `roles`.

Layer rule: no imports from api/. This module may import from fastapi
(for Request/HTTPException) because it is part of the dependency injection
system.
"""

from __future__ import annotations

import logging
from collections.abc import Callable

from fastapi import HTTPException, Request

from auth.models import AuthContext, Role, User
from auth.policy import has_role
from auth.store import UserStore
from auth.tokens import TokenError, verify_token

logger = logging.getLogger("taskboard.auth")

_BEARER_PREFIX = "Bearer "


def extract_tokens(request: Request) -> list[str]:
    """Return the candidate tokens in priority order: cookie, then Bearer header."""
    tokens: list[str] = []
    cookie = request.cookies.get("access_token")
    if cookie:
        tokens.append(cookie)
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith(_BEARER_PREFIX):
        bearer = auth_header[len(_BEARER_PREFIX) :].strip()
        if bearer and bearer not in tokens:
            tokens.append(bearer)
    return tokens


def authenticate_token(store: UserStore, token: str | None) -> AuthContext | None:
    """Resolve a raw token into an AuthContext, or None when unauthenticated.

    Steps:
      1. No token -> None.
      2. Token fails verification (malformed, bad signature, expired) -> None.
      3. User no longer exists -> None.
      4. Otherwise the context carries the freshly loaded user.
    """
    if not token:
        return None
    try:
        claims = verify_token(token)
    except TokenError as exc:
        logger.info("Rejected session token: %s", type(exc).__name__)
        return None

    user = store.get_by_id(claims.user_id)
    if user is None:
        logger.info("Rejected session token: user_id=%s no longer exists", claims.user_id)
        return None
    if user.role != claims.role:
        logger.info(
            "Role for user_id=%s changed since token issue (%s -> %s); using live role",
            user.id,
            claims.role.value,
            user.role.value,
        )
    return AuthContext(user=user)


def try_get_current_user(request: Request) -> AuthContext | None:
    """Attempt to authenticate the request. Never raises for token problems."""
    user_store: UserStore = request.app.state.user_store
    for token in extract_tokens(request):
        context = authenticate_token(user_store, token)
        if context is not None:
            return context
    return None


def get_current_user(request: Request) -> User:
    """Require authentication. Raises HTTP 401 if the request is not authenticated.

    Use as a FastAPI dependency:
        @router.get("/protected")
        async def route(user: User = Depends(get_current_user)): ...
    """
    context = try_get_current_user(request)
    if context is None:
        raise HTTPException(
            status_code=401,
            detail={"code": "unauthorized", "message": "Authentication required."},
            headers={"WWW-Authenticate": "Bearer"},
        )
    return context.user


def require_roles(*roles: Role) -> Callable[[Request], User]:
    """Build a dependency that admits only users whose live role is in `roles`.

    Use as a FastAPI dependency:
        @router.get("/admin-only")
        async def route(user: User = Depends(require_roles(Role.ADMINISTRATOR))): ...
    """
    allowed = frozenset(roles)

    def dependency(request: Request) -> User:
        user = get_current_user(request)
        if not has_role(user, allowed):
            raise HTTPException(
                status_code=403,
                detail={"code": "forbidden", "message": "Your role does not allow this action."},
            )
        return user

    return dependency


require_admin = require_roles(Role.ADMINISTRATOR)
