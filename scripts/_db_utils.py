from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager

from sqlalchemy.orm import Session

from app.incubator.db import build_engine, make_sessionmaker


@contextmanager
def script_session(db_url: str) -> Iterator[Session]:
    """One-shot session for release/seed scripts; commits on success and disposes the engine."""
    engine = build_engine(db_url, pooled=False)
    s: Session = make_sessionmaker(engine)()
    try:
        yield s
        s.commit()
    except Exception:
        s.rollback()
        raise
    finally:
        s.close()
        engine.dispose()
