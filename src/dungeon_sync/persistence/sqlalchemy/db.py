from __future__ import annotations

from typing import Callable

from sqlalchemy import Engine, create_engine, event
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from .base import Base
from .uow import SQLAlchemyUnitOfWork

IN_MEMORY_URL = "sqlite+pysqlite:///:memory:"


def build_engine(url: str = IN_MEMORY_URL, *, echo: bool = False) -> Engine:
    if url.startswith("sqlite") and ":memory:" in url:
        engine = create_engine(
            url,
            echo=echo,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    else:
        engine = create_engine(url, echo=echo)

    if url.startswith("sqlite"):
        file_backed = ":memory:" not in url

        @event.listens_for(engine, "connect")
        def _set_sqlite_pragma(dbapi_connection, _connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            if file_backed:
                # Journal writes come from the scheduler task; do not fail on a reader holding the file.
                cursor.execute("PRAGMA journal_mode=WAL")
                cursor.execute("PRAGMA busy_timeout=2000")
            cursor.close()

    return engine


def build_session_factory(engine: Engine) -> sessionmaker[Session]:
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


def create_schema(engine: Engine) -> None:
    Base.metadata.create_all(engine)


def build_uow_factory(url: str = IN_MEMORY_URL) -> Callable[[], SQLAlchemyUnitOfWork]:
    """Engine, schema and session factory in one call, for wiring a journal."""
    engine = build_engine(url)
    create_schema(engine)
    session_factory = build_session_factory(engine)

    def _factory() -> SQLAlchemyUnitOfWork:
        return SQLAlchemyUnitOfWork(session_factory)

    return _factory
