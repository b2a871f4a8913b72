from __future__ import annotations

from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import make_url
from sqlalchemy.orm import Session as DbSession, sessionmaker

from ..config import get_settings

SQLITE_BUSY_TIMEOUT_MS = 30000


def _ensure_sqlite_directory(url: str) -> None:
    database = make_url(url).database
    if not database or database == ":memory:":
        return
    Path(database).expanduser().parent.mkdir(parents=True, exist_ok=True)


class Database:
    """Engine and session factory for the merchant and configuration tables."""

    def __init__(self, url: Optional[str] = None) -> None:
        self.url = url or get_settings().database_url
        self.is_sqlite = self.url.startswith("sqlite")
        connect_args = {}
        if self.is_sqlite:
            _ensure_sqlite_directory(self.url)
            connect_args = {"check_same_thread": False, "timeout": SQLITE_BUSY_TIMEOUT_MS / 1000}
        self.engine = create_engine(self.url, connect_args=connect_args, pool_pre_ping=True)
        if self.is_sqlite:
            # configurations.merchant_id relies on enforced foreign keys
            @event.listens_for(self.engine, "connect")
            def _set_sqlite_pragmas(dbapi_connection, _connection_record) -> None:
                cursor = dbapi_connection.cursor()
                try:
                    cursor.execute("PRAGMA foreign_keys=ON;")
                    cursor.execute(f"PRAGMA busy_timeout={SQLITE_BUSY_TIMEOUT_MS};")
                finally:
                    cursor.close()
        self.SessionLocal = sessionmaker(autoflush=False, bind=self.engine)

    def session(self) -> DbSession:
        return self.SessionLocal()

    @contextmanager
    def session_scope(self, *, commit: bool = False) -> Iterator[DbSession]:
        """Yield a session that is always closed.

        With ``commit=True`` the work is committed on exit and rolled back if
        the block raises.
        """
        session = self.session()
        try:
            yield session
            if commit:
                session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def ping(self) -> None:
        """Run a trivial query; raises if the database is unreachable."""
        with self.engine.connect() as connection:
            connection.execute(text("SELECT 1"))

    def dispose(self) -> None:
        self.engine.dispose()


_database: Optional[Database] = None


def get_database() -> Database:
    global _database
    if _database is None:
        _database = Database()
    return _database


def reset_database() -> None:
    """Drop the cached engine so the next call picks up refreshed settings."""
    global _database
    if _database is not None:
        _database.dispose()
    _database = None


__all__ = ["Database", "get_database", "reset_database"]
