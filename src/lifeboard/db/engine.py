"""Database engine setup for Lifeboard.

A ``Database`` owns one engine and session factory. It is created from
Settings and handed to every component that needs storage; there is no
module-level engine cache.
"""

from collections.abc import Generator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from sqlalchemy import Engine, create_engine, event
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.engine import make_url
from sqlalchemy.orm import Session, sessionmaker

from lifeboard.db.models import LifeboardBase

SQLITE_BUSY_TIMEOUT = 30

_INSERTS = {
    "sqlite": sqlite.insert,
    "postgresql": postgresql.insert,
}


def dialect_insert(session: Session, model: type[LifeboardBase]) -> Any:
    """INSERT construct supporting ON CONFLICT for the session's dialect."""
    name = session.get_bind().dialect.name
    insert = _INSERTS.get(name)
    if insert is None:
        msg = f"Unsupported database dialect for upserts: {name}"
        raise NotImplementedError(msg)
    return insert(model)


def _configure_sqlite(dbapi_conn: object, connection_record: object) -> None:
    """Enable foreign keys and WAL; hand transaction control to SQLAlchemy."""
    # pysqlite's own BEGIN handling breaks SAVEPOINT; see _begin_immediate
    dbapi_conn.isolation_level = None  # type: ignore[attr-defined]
    cursor = dbapi_conn.cursor()  # type: ignore[attr-defined]
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute(f"PRAGMA busy_timeout={SQLITE_BUSY_TIMEOUT * 1000}")
    cursor.close()


def _begin_immediate(conn: object) -> None:
    """Take the write lock at BEGIN so concurrent writers queue instead of failing."""
    conn.exec_driver_sql("BEGIN IMMEDIATE")  # type: ignore[attr-defined]


def create_store_engine(url: str) -> Engine:
    """Create an engine for the store, configuring SQLite when used."""
    parsed = make_url(url)
    if parsed.get_backend_name() != "sqlite":
        return create_engine(url, echo=False, pool_pre_ping=True)

    if parsed.database and parsed.database != ":memory:":
        Path(parsed.database).parent.mkdir(parents=True, exist_ok=True)
    engine = create_engine(
        url,
        echo=False,
        pool_pre_ping=True,
        connect_args={"timeout": SQLITE_BUSY_TIMEOUT},
    )
    event.listen(engine, "connect", _configure_sqlite)
    event.listen(engine, "begin", _begin_immediate)
    return engine


class Database:
    """Engine plus session factory for one store."""

    def __init__(self, url: str):
        self.url = url
        self.engine = create_store_engine(url)
        self.session_factory: sessionmaker[Session] = sessionmaker(
            bind=self.engine, expire_on_commit=False
        )

    @property
    def dialect(self) -> str:
        return self.engine.dialect.name

    def init_schema(self) -> None:
        """Create all tables that don't exist yet."""
        LifeboardBase.metadata.create_all(self.engine)

    @contextmanager
    def session(self) -> Generator[Session, None, None]:
        """Yield a session; commit on success, roll back on error."""
        session = self.session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def dispose(self) -> None:
        self.engine.dispose()
