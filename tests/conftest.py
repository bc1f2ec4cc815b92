"""
tests/conftest.py -- Shared test fixtures for Taskboard.

This module provides:
  - memory_db: connected in-memory Database for store and policy unit tests
  - user_store / tracker: stores on memory_db
  - make_user: factory fixture that inserts a user with a hashed password
  - password: the plaintext password every fixture user shares
  - api_client: TestClient wired to isolated stores through a patched lifespan,
    with one administrator, one leader and two developers already created

Design: Named shared-memory SQLite URIs (not plain :memory:) are required for
the API fixture because TestClient runs sync route handlers in a thread pool.
Plain :memory: DBs are per-connection and would present a blank schema to
each worker thread. The named URI format
(file:name?mode=memory&cache=shared&uri=true) shares one in-memory instance
across all connections in the same process.

DEBUG and RATE_LIMIT_ENABLED must be set before any auth/core import so
get_settings() auto-generates SECRET_KEY and the limiter starts disabled.
"""

from __future__ import annotations

import itertools
import os
from collections.abc import Callable, Generator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from functools import partial

# CRITICAL: set before any auth/core import (get_settings() is cached).
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")

import pytest
from fastapi.testclient import TestClient

from api.main import app
from auth.models import Role, User
from auth.policy import AuthorizationEngine
from auth.store import UserStore
from auth.tokens import build_claims, hash_password, issue_token
from core.database import Database
from tracker.store import TrackerStore

TEST_PASSWORD = "correct-horse-1"

# Hashing with bcrypt is slow; one hash is shared by every fixture user.
_TEST_HASH = hash_password(TEST_PASSWORD)

_db_counter = itertools.count()


# ---------------------------------------------------------------------------
# Unit-test fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def memory_db() -> Generator[Database, None, None]:
    db = Database("sqlite:///:memory:")
    db.connect()
    yield db
    db.disconnect()


@pytest.fixture()
def user_store(memory_db: Database) -> UserStore:
    return UserStore(memory_db)


@pytest.fixture()
def tracker(memory_db: Database) -> TrackerStore:
    return TrackerStore(memory_db)


def _insert_user(store: UserStore, email: str, role: Role = Role.DEVELOPER, name: str = "") -> User:
    """Insert a user with TEST_PASSWORD and return the stored (redacted) record."""
    user_id = store.create_user(
        User(email=email, role=role, name=name or email.split("@")[0], hashed_password=_TEST_HASH)
    )
    stored = store.get_by_id(user_id)
    assert stored is not None
    return stored


@pytest.fixture()
def make_user(user_store: UserStore) -> Callable[..., User]:
    """Factory fixture: make_user(email, role=..., name=...) inserts into user_store."""
    return partial(_insert_user, user_store)


@pytest.fixture()
def password() -> str:
    return TEST_PASSWORD


def _bearer(user: User) -> dict[str, str]:
    return {"Authorization": f"Bearer {issue_token(build_claims(user))}"}


# ---------------------------------------------------------------------------
# API fixtures
# ---------------------------------------------------------------------------


@dataclass
class ApiContext:
    """Everything an API test needs: the client, the stores and four users."""

    client: TestClient
    user_store: UserStore
    tracker: TrackerStore
    admin: User
    leader: User
    dev: User
    other_dev: User

    password: str = TEST_PASSWORD

    def headers(self, user: User) -> dict[str, str]:
        return _bearer(user)


def _patch_lifespan(db: Database, user_store: UserStore, tracker: TrackerStore):
    """Return a lifespan that wires pre-created test stores into app.state."""

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.db = db
        app.state.user_store = user_store
        app.state.tracker = tracker
        app.state.policy = AuthorizationEngine(tracker)
        yield

    return test_lifespan


@pytest.fixture(scope="module")
def api_client() -> Generator[ApiContext, None, None]:
    """Yield an ApiContext backed by an isolated named shared-memory database.

    base_url uses localhost so TrustedHostMiddleware accepts the requests.
    """
    db = Database(f"sqlite:///file:test_taskboard_{next(_db_counter)}?mode=memory&cache=shared&uri=true")
    db.connect()
    user_store = UserStore(db)
    tracker = TrackerStore(db)

    admin = _insert_user(user_store, "admin@example.com", Role.ADMINISTRATOR, "Admin")
    leader = _insert_user(user_store, "leader@example.com", Role.LEADER, "Lea")
    dev = _insert_user(user_store, "dev@example.com", Role.DEVELOPER, "Dev")
    other_dev = _insert_user(user_store, "other@example.com", Role.DEVELOPER, "Other")

    app.router.lifespan_context = _patch_lifespan(db, user_store, tracker)

    with TestClient(app, base_url="http://localhost", raise_server_exceptions=True) as client:
        yield ApiContext(
            client=client,
            user_store=user_store,
            tracker=tracker,
            admin=admin,
            leader=leader,
            dev=dev,
            other_dev=other_dev,
        )

    db.disconnect()


@pytest.fixture()
def api(api_client: ApiContext) -> ApiContext:
    """api_client with an empty cookie jar, so a login in one test never leaks into the next."""
    api_client.client.cookies.clear()
    return api_client


@pytest.fixture()
def register(api: ApiContext) -> Callable[..., User]:
    """Factory fixture: self-register a developer through the API and return the stored user.

    The session cookie set by /auth/register is dropped so later requests in
    the same test authenticate with explicit Bearer headers only.
    """

    def _register(email: str, name: str = "New user", password: str = "secret123") -> User:
        resp = api.client.post(
            "/api/v1/auth/register",
            json={"name": name, "email": email, "password": password},
        )
        assert resp.status_code == 201, resp.text
        api.client.cookies.clear()
        user = api.user_store.get_by_id(resp.json()["user"]["id"])
        assert user is not None
        return user

    return _register
