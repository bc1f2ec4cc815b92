"""
api/routes/v1/auth.py -- Authentication and user management REST endpoints.

Routes:
  POST   /api/v1/auth/register      -- create an account; sets JWT cookie on self-registration
  POST   /api/v1/auth/login         -- password login; sets JWT cookie
  POST   /api/v1/auth/logout        -- clears cookie; 200
  GET    /api/v1/auth/me            -- current user info (requires auth)
  PATCH  /api/v1/auth/me            -- update own name/avatar (requires auth)
  GET    /api/v1/auth/users         -- list all users (admin only)
  PATCH  /api/v1/auth/users/{id}    -- change role/name (admin only)
  DELETE /api/v1/auth/users/{id}    -- delete account (admin only)

Security:
  POST /login and /register are rate-limited per IP (LOGIN_RATE_LIMIT).
  authenticate_user() provides timing equalization -- use it, never inline.
  Wrong email and wrong password share one bad_credentials answer.
  Only an authenticated administrator may register an account with a role
  other than developer.
  The last administrator cannot be demoted or deleted.
  Cache-Control: no-store on responses that carry a token.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Request, Response
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError

from api.limiter import limiter
from api.models import LoginRequest, LoginResponse, ProfilePatch, RegisterRequest, UserPatch, UserResponse
from auth.dependencies import get_current_user, require_admin, try_get_current_user
from auth.models import Role, User
from auth.policy import is_admin
from auth.store import UserStore
from auth.tokens import authenticate_user, build_claims, hash_password, issue_token, set_auth_cookie
from core.config import get_settings
from tracker.store import TrackerStore

logger = logging.getLogger("taskboard.api")

_settings = get_settings()

# Auth policy:
# - POST   /auth/register:     public for developer accounts; other roles need an admin caller
# - POST   /auth/login:        public -- login endpoint must be unauthenticated
# - POST   /auth/logout:       public -- clearing a cookie needs no prior auth
# - GET    /auth/me:           requires auth (get_current_user)
# - PATCH  /auth/me:           requires auth (get_current_user)
# - GET    /auth/users:        requires admin (require_admin)
# - PATCH  /auth/users/{id}:   requires admin (require_admin)
# - DELETE /auth/users/{id}:   requires admin (require_admin)
router = APIRouter()


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/register", response_model=LoginResponse, status_code=201)
@limiter.limit(_settings.login_rate_limit)
def register(request: Request, body: RegisterRequest) -> JSONResponse:
    """Create a new account and return a session token for it.

    Anonymous callers may only create developer accounts, and only while
    SELF_REGISTRATION_ENABLED is true. An authenticated administrator may
    create accounts with any role; in that case the admin's own session
    cookie is left untouched.
    """
    user_store: UserStore = request.app.state.user_store
    caller = try_get_current_user(request)
    caller_is_admin = caller is not None and is_admin(caller.user)

    if not caller_is_admin and not _settings.self_registration_enabled:
        raise HTTPException(
            status_code=403,
            detail={"code": "registration_disabled", "message": "Self-registration is disabled."},
        )
    if not caller_is_admin and body.role is not Role.DEVELOPER:
        raise HTTPException(
            status_code=403,
            detail={"code": "forbidden", "message": "Only administrators can assign this role."},
        )

    new_user = User(
        email=body.email,
        name=body.name,
        role=body.role,
        hashed_password=hash_password(body.password),
    )
    try:
        user_id = user_store.create_user(new_user)
    except IntegrityError as exc:
        raise HTTPException(
            status_code=409,
            detail={"code": "conflict", "message": "A user with that email already exists."},
        ) from exc

    created = _require_user(user_store.get_by_id(user_id))
    logger.info("Registered user_id=%s role=%s", created.id, created.role.value)
    token = issue_token(build_claims(created))
    resp = JSONResponse(status_code=201, content=_login_payload(token, created))
    if caller is None:
        set_auth_cookie(resp, token)
    resp.headers["Cache-Control"] = "no-store"
    return resp


@router.post("/auth/login", response_model=LoginResponse)
@limiter.limit(_settings.login_rate_limit)
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with email and password; set JWT cookie.

    Uses authenticate_user() which includes timing equalization. Do NOT
    inline get_by_email() + verify_password() -- that re-introduces the
    timing side channel.
    """
    user_store: UserStore = request.app.state.user_store
    user = authenticate_user(user_store, body.email, body.password)
    if user is None:
        resp = JSONResponse(
            status_code=401,
            content={"error": {"code": "bad_credentials", "message": "Invalid email or password."}},
        )
        resp.headers["Cache-Control"] = "no-store"
        return resp

    token = issue_token(build_claims(user))
    resp = JSONResponse(status_code=200, content=_login_payload(token, user))
    set_auth_cookie(resp, token)
    resp.headers["Cache-Control"] = "no-store"
    return resp


@router.post("/auth/logout")
async def logout() -> JSONResponse:
    """Clear the JWT cookie. Tokens are stateless, so nothing is revoked server-side."""
    resp = JSONResponse(content={"message": "Logged out."})
    resp.delete_cookie("access_token")
    return resp


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.get("/auth/me", response_model=UserResponse)
def me(current_user: User = Depends(get_current_user)) -> UserResponse:
    """Return the live record of the authenticated user."""
    return UserResponse.from_user(current_user)


@router.patch("/auth/me", response_model=UserResponse)
def update_profile(
    request: Request,
    body: ProfilePatch,
    current_user: User = Depends(get_current_user),
) -> UserResponse:
    """Update the caller's display name and/or avatar reference."""
    user_store: UserStore = request.app.state.user_store
    updates = body.model_dump(exclude_none=True)
    if not updates:
        raise HTTPException(
            status_code=400,
            detail={"code": "no_changes", "message": "No fields to update."},
        )
    user_store.update_user(current_user.id, **updates)
    return UserResponse.from_user(_require_user(user_store.get_by_id(current_user.id)))


# ---------------------------------------------------------------------------
# User management (admin only)
# ---------------------------------------------------------------------------


@router.get("/auth/users", response_model=list[UserResponse])
def list_users(
    request: Request,
    current_user: User = Depends(require_admin),
) -> list[UserResponse]:
    """List all user accounts. Admin only."""
    user_store: UserStore = request.app.state.user_store
    return [UserResponse.from_user(u) for u in user_store.list_users()]


@router.patch("/auth/users/{user_id}", response_model=UserResponse)
def update_user(
    request: Request,
    user_id: int,
    body: UserPatch,
    current_user: User = Depends(require_admin),
) -> UserResponse:
    """Change a user's role or name. Admin only.

    A role change takes effect on the target's next request: the
    authentication layer re-reads the role instead of trusting the token.
    """
    user_store: UserStore = request.app.state.user_store

    target = user_store.get_by_id(user_id)
    if target is None:
        raise HTTPException(
            status_code=404,
            detail={"code": "not_found", "message": "User not found."},
        )

    updates = body.model_dump(exclude_none=True)
    if not updates:
        raise HTTPException(
            status_code=400,
            detail={"code": "no_changes", "message": "No fields to update."},
        )
    new_role = updates.get("role")
    if target.role is Role.ADMINISTRATOR and new_role not in (None, Role.ADMINISTRATOR):
        if user_store.count_admins() <= 1:
            raise HTTPException(
                status_code=400,
                detail={"code": "last_admin", "message": "Cannot demote the last administrator."},
            )

    user_store.update_user(user_id, **updates)
    if new_role is not None and new_role is not target.role:
        logger.info(
            "user_id=%s changed role of user_id=%s: %s -> %s",
            current_user.id,
            user_id,
            target.role.value,
            Role(new_role).value,
        )
    return UserResponse.from_user(_require_user(user_store.get_by_id(user_id)))


@router.delete("/auth/users/{user_id}", status_code=204)
def delete_user(
    request: Request,
    user_id: int,
    current_user: User = Depends(require_admin),
) -> Response:
    """Delete an account and drop its project relations. Admin only.

    Projects the user led keep existing without a leader; only an
    administrator can act as their leader until a new one is appointed.
    """
    user_store: UserStore = request.app.state.user_store
    tracker: TrackerStore = request.app.state.tracker

    if user_id == current_user.id:
        raise HTTPException(
            status_code=400,
            detail={"code": "self_delete", "message": "You cannot delete your own account."},
        )
    target = user_store.get_by_id(user_id)
    if target is None:
        raise HTTPException(
            status_code=404,
            detail={"code": "not_found", "message": "User not found."},
        )
    if target.role is Role.ADMINISTRATOR and user_store.count_admins() <= 1:
        raise HTTPException(
            status_code=400,
            detail={"code": "last_admin", "message": "Cannot delete the last administrator."},
        )

    tracker.detach_user(user_id)
    user_store.delete_user(user_id)
    logger.info("user_id=%s deleted user_id=%s", current_user.id, user_id)
    return Response(status_code=204)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _login_payload(token: str, user: User) -> dict:
    return LoginResponse(
        access_token=token,
        token_type="bearer",  # noqa: S106 # nosec B106 -- OAuth token type, not a password
        expires_in=_settings.token_expire_seconds,
        user=UserResponse.from_user(user),
    ).model_dump(mode="json")


def _require_user(user: User | None) -> User:
    if user is None:
        raise HTTPException(
            status_code=500,
            detail={"code": "internal_error", "message": "User not found after write."},
        )
    return user
