# database.py
from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator, Optional

from sqlalchemy.orm import Session, sessionmaker

from models import SessionLocal


def get_db(session_factory: Optional[sessionmaker] = None) -> Session:
    """
    Provide a SQLAlchemy session.
    Caller is responsible for closing, or use db_session().
    """
    return (session_factory or SessionLocal)()


@contextmanager
def db_session(session_factory: Optional[sessionmaker] = None) -> Iterator[Session]:
    """Session scope: rolls back on error, always closes."""
    db = get_db(session_factory)
    try:
        yield db
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
