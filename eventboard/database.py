"""Database helpers for EventBoard."""

from __future__ import annotations

from contextlib import contextmanager

from sqlalchemy import create_engine, event
from sqlalchemy.orm import scoped_session, sessionmaker

from .config import settings

DATABASE_URL = f"sqlite:///{settings.database_path}"


def make_engine(url: str, **kwargs):
    """Create an engine with SQLite foreign keys enforced."""
    connect_args = kwargs.pop("connect_args", {"check_same_thread": False})
    engine = create_engine(url, connect_args=connect_args, future=True, **kwargs)
    if engine.dialect.name == "sqlite":

        @event.listens_for(engine, "connect")
        def _enable_foreign_keys(dbapi_connection, _record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

    return engine


def make_session_factory(bind):
    return scoped_session(
        sessionmaker(
            bind=bind,
            autoflush=False,
            autocommit=False,
            future=True,
            expire_on_commit=False,
        )
    )


engine = make_engine(DATABASE_URL)
SessionLocal = make_session_factory(engine)


@contextmanager
def get_session(factory=None):
    """Context manager returning a SQLAlchemy session."""
    session = (factory or SessionLocal)()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
