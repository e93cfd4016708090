"""Database engine and helpers.

This module wraps the SQLModel/SQLAlchemy engine in a small `Database`
handle. One handle is created per application and passed explicitly to
repositories and services; nothing in the package reaches for a
module-level engine. Each repository call opens its own short-lived
`Session`, which lets independent reads (a page query and its count)
run on separate connections at the same time.
"""

from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import event
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel, Session, create_engine

from . import models  # noqa: F401  registers the table metadata

IN_MEMORY_SQLITE_URLS = ("sqlite://", "sqlite:///:memory:")


class Database:
    """Engine plus session factory for one database URL."""

    def __init__(self, url: str, echo: bool = False):
        self.url = url
        engine_args = {}
        if url.startswith("sqlite"):
            engine_args["connect_args"] = {"check_same_thread": False}
        if url in IN_MEMORY_SQLITE_URLS:
            # each new connection to an in-memory URL opens a separate, empty database
            engine_args["poolclass"] = StaticPool
        self.engine = create_engine(url, echo=echo, **engine_args)
        if url.startswith("sqlite"):
            event.listen(self.engine, "connect", _enable_sqlite_foreign_keys)

    def create_all(self):
        """Create database tables using SQLModel metadata.

        This is intended for local development and tests; production
        deployments should rely on a proper migration tool (alembic)
        instead.
        """
        SQLModel.metadata.create_all(self.engine)

    @contextmanager
    def session(self) -> Iterator[Session]:
        """Yield a `Session` whose loaded objects stay readable after commit."""
        with Session(self.engine, expire_on_commit=False) as session:
            yield session

    def dispose(self):
        self.engine.dispose()


def _enable_sqlite_foreign_keys(dbapi_connection, _connection_record):
    # SQLite ignores FOREIGN KEY clauses unless asked per connection.
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()
