"""
Database connection utilities.
It owns the SQLAlchemy engine that the account and request stores share.
The handle is constructed explicitly and passed down, so startup and shutdown are owned by the caller.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Connection, Engine, make_url
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.pool import StaticPool

from src.common.errors import PersistenceError

LOGGER = logging.getLogger("storage")


def build_engine(database_url: str, *, pool_size: int = 10, connect_timeout_seconds: int = 5) -> Engine:
    """Create an engine with pool settings appropriate for the URL's backend."""

    url = make_url(database_url)
    if url.get_backend_name() == "sqlite":
        # In-memory SQLite needs one shared connection or every checkout sees an empty database.
        if url.database in (None, "", ":memory:"):
            return create_engine(
                database_url,
                connect_args={"check_same_thread": False},
                poolclass=StaticPool,
                future=True,
            )
        return create_engine(database_url, connect_args={"check_same_thread": False}, future=True)

    return create_engine(
        database_url,
        pool_pre_ping=True,
        pool_size=pool_size,
        connect_args={"connect_timeout": connect_timeout_seconds},
        future=True,
    )


class Database:
    """Explicit engine owner with a connect/dispose lifecycle."""

    def __init__(self, *, database_url: str, pool_size: int = 10, connect_timeout_seconds: int = 5) -> None:
        self._database_url = database_url
        self._pool_size = pool_size
        self._connect_timeout_seconds = connect_timeout_seconds
        self._engine: Engine | None = None

    @property
    def engine(self) -> Engine:
        if self._engine is None:
            raise RuntimeError("Database is not connected; call connect() first.")
        return self._engine

    @property
    def is_connected(self) -> bool:
        return self._engine is not None

    def connect(self) -> Engine:
        if self._engine is None:
            self._engine = build_engine(
                self._database_url,
                pool_size=self._pool_size,
                connect_timeout_seconds=self._connect_timeout_seconds,
            )
            url = self._engine.url
            LOGGER.info("database engine created backend=%s database=%s", url.get_backend_name(), url.database)
        return self._engine

    def dispose(self) -> None:
        if self._engine is None:
            return
        self._engine.dispose()
        self._engine = None
        LOGGER.info("database engine disposed")

    def can_connect(self) -> bool:
        """Return True if the database can be reached and queried."""

        try:
            with self.engine.connect() as connection:
                connection.execute(text("SELECT 1"))
            return True
        except SQLAlchemyError as exc:
            LOGGER.error("database connectivity check failed: %s", exc)
            return False

    @contextmanager
    def begin(self) -> Iterator[Connection]:
        """Yield a transactional connection; store failures surface as PersistenceError."""

        try:
            with self.engine.begin() as connection:
                yield connection
        except SQLAlchemyError as exc:
            if isinstance(exc, IntegrityError):
                raise
            LOGGER.error("database operation failed: %s", exc.__class__.__name__)
            raise PersistenceError("The data store is unavailable; the operation was not applied.") from exc
