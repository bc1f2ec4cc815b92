"""
core/database.py -- Lifecycle-managed SQLAlchemy engine handle.

One Database instance is created by the process (api/main.py lifespan or the
admin CLI) and passed explicitly to every store. There is no module-level
connection state: whoever creates the handle owns connect() and disconnect().

connect() is idempotent -- calling it on an already connected handle is a
no-op, so startup code and tests can call it without tracking state.

Layer rule: core/ is the kernel. This module may not import from api/,
auth/, or tracker/.
"""

from __future__ import annotations

import logging

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine

logger = logging.getLogger("taskboard.db")


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    SQLite PRAGMAs are per-connection, so they are applied from the pool's
    connect event rather than once at startup.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


class DatabaseNotConnected(RuntimeError):
    """Raised when a store touches the engine before connect() or after disconnect()."""


class Database:
    """Explicit handle around one SQLAlchemy engine.

    Usage:
        db = Database("sqlite:///taskboard.db")
        db.connect()
        users = UserStore(db)
        ...
        db.disconnect()
    """

    def __init__(self, url: str, timeout_seconds: float = 5.0) -> None:
        self.url = url
        self.timeout_seconds = timeout_seconds
        self._engine: Engine | None = None

    @property
    def is_connected(self) -> bool:
        return self._engine is not None

    @property
    def engine(self) -> Engine:
        if self._engine is None:
            raise DatabaseNotConnected(f"Database {self._safe_url()} is not connected.")
        return self._engine

    def connect(self) -> Engine:
        """Create the engine if it does not exist yet and return it."""
        if self._engine is not None:
            return self._engine
        connect_args: dict = {}
        if self.url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
            connect_args["timeout"] = self.timeout_seconds
        engine = create_engine(self.url, connect_args=connect_args)
        if self.url.startswith("sqlite"):
            event.listen(engine, "connect", _set_wal_mode)
        self._engine = engine
        logger.info("Database connected (%s)", self._safe_url())
        return engine

    def disconnect(self) -> None:
        """Dispose of the connection pool. Safe to call when already disconnected."""
        if self._engine is None:
            return
        self._engine.dispose()
        self._engine = None
        logger.info("Database disconnected (%s)", self._safe_url())

    def _safe_url(self) -> str:
        # Never log credentials embedded in the URL.
        return self.url.split("@")[-1] if "@" in self.url else self.url
