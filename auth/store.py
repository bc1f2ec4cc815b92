"""
auth/store.py -- SQLAlchemy Core persistence layer for identities.

Pattern: Repository + Data Mapper (same as tracker/store.py).
UserStore is the repository; _row_to_user is the mapper.
Route and dependency code never touches SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.

  hashed_password is redacted from every read except
  get_by_email(..., include_secret=True), which exists only for password
  login. Any other caller that needs a User gets hashed_password=None.

  Emails are normalized (strip + lower) on write and on lookup, so the
  UNIQUE index on email is effectively case-insensitive.

The store does not own the engine: it receives a connected core.database.Database
handle and leaves connect/disconnect to the process that created it.

Layer rule: no imports from api/ or tracker/.
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import Column, Integer, MetaData, String, Table, Text, func, select

from auth.models import Role, User
from core.database import Database

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("email", String(255), nullable=False, unique=True),
    Column("hashed_password", Text, nullable=False),
    Column("role", String(30), nullable=False, server_default=Role.DEVELOPER.value),
    Column("name", String(255), nullable=False, server_default=""),
    Column("avatar", Text, nullable=False, server_default=""),
    Column("created_at", String(32), nullable=False),
)

# Fields update_user() accepts. Anything else is a programming error.
_MUTABLE_FIELDS = {"role", "name", "avatar", "hashed_password"}


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def normalize_email(email: str) -> str:
    """Return the canonical form of an email handle (trimmed, lower-cased)."""
    return email.strip().lower()


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User entities.

    Usage:
        db = Database("sqlite:///taskboard.db")
        db.connect()
        store = UserStore(db)
        store.create_user(User(email="a@x.com", hashed_password=hash_password("secret1")))
        user = store.get_by_email("A@x.com")
    """

    def __init__(self, db: Database) -> None:
        self.db = db
        _metadata.create_all(db.engine)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def has_users(self) -> bool:
        """Return True if at least one user record exists."""
        with self.db.engine.connect() as conn:
            result = conn.execute(select(func.count()).select_from(_users)).scalar()
        return (result or 0) > 0

    def get_by_email(self, email: str, include_secret: bool = False) -> User | None:
        """Look up a user by email (case-insensitive, trimmed). Returns None if not found.

        include_secret=True keeps hashed_password on the returned User. Only the
        password login path should ask for it.
        """
        with self.db.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.email == normalize_email(email))).fetchone()
        return _row_to_user(row, include_secret) if row is not None else None

    def get_by_id(self, user_id: int) -> User | None:
        """Look up a user by primary key. Returns None if not found."""
        with self.db.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def list_users(self) -> list[User]:
        """Return all users ordered by email. Admin-only operation."""
        with self.db.engine.connect() as conn:
            rows = conn.execute(_users.select().order_by(_users.c.email)).fetchall()
        return [_row_to_user(r) for r in rows]

    def count_admins(self) -> int:
        """Return the number of administrator accounts.

        Used by the user management routes to prevent demoting or deleting
        the last administrator.
        """
        with self.db.engine.connect() as conn:
            result = conn.execute(
                select(func.count()).select_from(_users).where(_users.c.role == Role.ADMINISTRATOR.value)
            ).scalar()
        return result or 0

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def create_user(self, user: User) -> int:
        """Insert a new user and return its assigned database ID.

        user.hashed_password must already be a bcrypt hash -- the store never
        sees a plaintext password.

        Raises sqlalchemy.exc.IntegrityError if the email already exists.
        """
        if not user.hashed_password:
            raise ValueError("create_user() requires a hashed password.")
        with self.db.engine.connect() as conn:
            result = conn.execute(
                _users.insert().values(
                    email=normalize_email(user.email),
                    hashed_password=user.hashed_password,
                    role=Role(user.role).value,
                    name=user.name.strip(),
                    avatar=user.avatar,
                    created_at=_now_iso(),
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def update_user(self, user_id: int, **fields) -> bool:
        """Update mutable fields on an existing user in one statement.

        Accepted fields: role, name, avatar, hashed_password.
        Returns True if a row was updated, False if user_id was not found.
        """
        unknown = set(fields) - _MUTABLE_FIELDS
        if unknown:
            raise ValueError(f"Unknown user fields: {unknown!r}")
        if "role" in fields:
            fields["role"] = Role(fields["role"]).value
        with self.db.engine.connect() as conn:
            result = conn.execute(_users.update().where(_users.c.id == user_id).values(**fields))
            conn.commit()
        return result.rowcount > 0

    def delete_user(self, user_id: int) -> bool:
        """Permanently delete a user record. Returns True if deleted, False if not found.

        Callers must check the last-admin invariant before calling this method.
        Project membership and leadership rows are cleaned up by the caller
        through TrackerStore.detach_user().
        """
        with self.db.engine.connect() as conn:
            result = conn.execute(_users.delete().where(_users.c.id == user_id))
            conn.commit()
        return result.rowcount > 0


# ---------------------------------------------------------------------------
# Row mapper (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row, include_secret: bool = False) -> User:
    return User(
        id=row.id,
        email=row.email,
        role=Role(row.role),
        name=row.name,
        avatar=row.avatar,
        hashed_password=row.hashed_password if include_secret else None,
        created_at=row.created_at,
    )
