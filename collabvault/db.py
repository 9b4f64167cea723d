from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager

from fastapi import Request
from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from collabvault.settings import settings


class Base(DeclarativeBase):
    pass


def get_engine(url: str | None = None, **kwargs) -> Engine:
    url = url or settings.DATABASE_URL
    if url.startswith("sqlite"):
        engine = create_engine(url, **kwargs)
        event.listen(engine, "connect", _enable_sqlite_foreign_keys)
        return engine
    return create_engine(url, pool_pre_ping=True, **kwargs)


def _enable_sqlite_foreign_keys(dbapi_connection, _record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


class Database:
    """Single data-access handle owned by the application.

    Created once by ``create_app`` and shared by request handlers, the
    outbound task queue and tests.
    """

    def __init__(self, engine: Engine) -> None:
        self.engine = engine
        self._session_factory = sessionmaker(bind=engine, autoflush=False, autocommit=False)

    @classmethod
    def from_url(cls, url: str | None = None, **kwargs) -> Database:
        return cls(get_engine(url, **kwargs))

    def session(self) -> Session:
        return self._session_factory()

    @contextmanager
    def session_scope(self) -> Iterator[Session]:
        db = self.session()
        try:
            yield db
        finally:
            db.close()

    def create_all(self) -> None:
        Base.metadata.create_all(self.engine)

    def dispose(self) -> None:
        self.engine.dispose()


@contextmanager
def atomic(db: Session) -> Iterator[Session]:
    """Commit the unit of work, or roll every write back and re-raise."""
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise


def get_db(request: Request) -> Iterator[Session]:
    database: Database = request.app.state.database
    db = database.session()
    try:
        yield db
    finally:
        db.close()
