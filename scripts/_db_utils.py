from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager

from sqlalchemy.orm import Session

from app.samrambhaka.db import make_engine, make_sessionmaker


@contextmanager
def script_session(db_url: str) -> Iterator[Session]:
    """One-off session for CLI scripts, built exactly like the app's (sqlite FK pragma included)."""
    engine = make_engine(db_url)
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
