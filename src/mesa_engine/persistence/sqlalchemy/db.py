from __future__ import annotations

import os
from typing import Callable

from sqlalchemy import Engine, create_engine, event
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from .base import Base
from .uow import SQLAlchemyUnitOfWork

DEFAULT_DATABASE_URL = "sqlite+pysqlite:///:memory:"


def build_engine(url: str | None = None) -> Engine:
    url = url or os.getenv("MESA_DATABASE_URL", DEFAULT_DATABASE_URL)
    if url.startswith("sqlite") and ":memory:" in url:
        engine = create_engine(
            url,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    else:
        engine = create_engine(url, pool_pre_ping=True)

    if url.startswith("sqlite"):
        # pysqlite defers BEGIN until the first DML statement, which breaks
        # SAVEPOINT; take over transaction demarcation so begin_nested works.
        @event.listens_for(engine, "connect")
        def _sqlite_connect(dbapi_connection, _connection_record):
            dbapi_connection.isolation_level = None
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

        @event.listens_for(engine, "begin")
        def _sqlite_begin(conn):
            conn.exec_driver_sql("BEGIN")

    return engine


def build_session_factory(engine: Engine) -> sessionmaker[Session]:
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


def create_schema(engine: Engine) -> None:
    Base.metadata.create_all(engine)


def bootstrap(url: str | None = None) -> Callable[[], SQLAlchemyUnitOfWork]:
    """Build the engine, create tables and return a unit-of-work factory."""
    engine = build_engine(url)
    create_schema(engine)
    session_factory = build_session_factory(engine)
    return lambda: SQLAlchemyUnitOfWork(session_factory)
