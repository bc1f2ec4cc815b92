"""
auth/models.py -- Domain types for authentication entities.

Pattern: Data class (pure data container, zero logic). Mirrors the approach
in tracker/models.py -- dataclasses own domain shape; stores, the token
service and the policy engine do the work.

Layer rule: no imports from api/ or tracker/.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum


class Role(str, Enum):
    """Closed set of global roles.

    Adding a member here forces every exhaustive role branch (see
    auth/policy.py) to be revisited.
    """

    ADMINISTRATOR = "administrator"
    LEADER = "leader"
    DEVELOPER = "developer"


@dataclass
class User:
    """Represents an identity (user account) in Taskboard.

    email is the unique login handle. It is stored lower-cased and trimmed so
    lookups are case-insensitive.

    hashed_password is None on every read except the login lookup
    (UserStore.get_by_email(..., include_secret=True)). The bcrypt hash never
    leaves the store boundary otherwise.
    """

    email: str
    role: Role = Role.DEVELOPER
    name: str = ""
    avatar: str = ""
    id: int | None = None
    hashed_password: str | None = None
    created_at: str | None = None


@dataclass(frozen=True)
class SessionClaims:
    """The claims signed into a session token.

    Timestamps are timezone-aware UTC with whole-second precision, matching
    the integer iat/exp claims of the wire format so a verified token yields
    an object equal to the one that was issued.
    """

    user_id: int
    email: str
    role: Role
    issued_at: datetime
    expires_at: datetime


@dataclass(frozen=True)
class AuthContext:
    """Outcome of a successful authentication: the live user record."""

    user: User

    @property
    def role(self) -> Role:
        return self.user.role
