"""Database setup and session management."""
from __future__ import annotations

from contextlib import contextmanager
from typing import Optional

from sqlalchemy import create_engine
from sqlalchemy.orm import scoped_session, sessionmaker

from .config import DATABASE_URL
from .models import Base


def make_engine(url: str):
    return create_engine(
        url,
        connect_args={"check_same_thread": False} if url.startswith("sqlite") else {},
        future=True,
    )


engine = make_engine(DATABASE_URL)
SessionLocal = scoped_session(sessionmaker(bind=engine, autoflush=False, autocommit=False))


def init_db(bind=None) -> None:
    """Create database tables if they do not exist."""
    Base.metadata.create_all(bind=bind or engine)


@contextmanager
def session_scope(factory: Optional[sessionmaker] = None):
    """Provide a transactional scope for DB operations."""
    session = (factory or SessionLocal)()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
