"""
Database handle.

The engine and sessionmaker live on `app.extensions`; request handlers get a
session bound to `flask.g` through `db_session()`, closed on teardown.
Scripts build their own engine with `build_engine` so sqlite behaves the
same way in both places.
"""
from __future__ import annotations

import logging
from collections.abc import Generator
from contextlib import contextmanager

from flask import Flask, current_app, g
from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

logger = logging.getLogger(__name__)

POSTGRES_POOL = {
    "pool_recycle": 1800,
    "pool_size": 5,
    "max_overflow": 10,
    "pool_timeout": 30,
}


def normalize_database_url(url: str) -> str:
    # Hosted Postgres providers still hand out the pre-1.4 scheme.
    if url.startswith("postgres://"):
        return "postgresql://" + url[len("postgres://"):]
    return url


def build_engine(url: str, *, pooled: bool = True) -> Engine:
    url = normalize_database_url(url)
    if url.startswith("sqlite"):
        engine = create_engine(url, future=True)

        # SQLite ignores foreign keys unless asked per connection; department
        # and milestone cascades depend on them.
        @event.listens_for(engine, "connect")
        def _sqlite_fk_pragma(dbapi_connection, connection_record):  # type: ignore[no-redef]
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

        return engine

    kwargs: dict[str, object] = {"future": True, "pool_pre_ping": True}
    if pooled and url.startswith("postgresql"):
        kwargs.update(POSTGRES_POOL)
    return create_engine(url, **kwargs)


def make_sessionmaker(engine: Engine) -> sessionmaker:
    return sessionmaker(
        bind=engine,
        class_=Session,
        autoflush=False,
        autocommit=False,
        expire_on_commit=False,
        future=True,
    )


def init_db(app: Flask) -> None:
    engine = build_engine(app.config["DATABASE_URL"])
    app.extensions["sqlalchemy_engine"] = engine
    app.extensions["sqlalchemy_sessionmaker"] = make_sessionmaker(engine)
    logger.info("Database engine ready (dialect=%s)", engine.dialect.name)


def db_session() -> Session:
    """Request-scoped session. Use inside request handlers."""
    s = getattr(g, "db_session", None)
    if s is None:
        s = current_app.extensions["sqlalchemy_sessionmaker"]()
        g.db_session = s
    return s


def teardown_db_session(exc: BaseException | None) -> None:
    s: Session | None = getattr(g, "db_session", None)
    if s is None:
        return
    if exc is not None:
        s.rollback()
    s.close()
    g.db_session = None


@contextmanager
def session_scope(app: Flask) -> Generator[Session, None, None]:
    """Session outside a request (tests, shell); commits on success."""
    s: Session = app.extensions["sqlalchemy_sessionmaker"]()
    try:
        yield s
        s.commit()
    except Exception:
        s.rollback()
        raise
    finally:
        s.close()
