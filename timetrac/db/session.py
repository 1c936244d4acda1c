"""SQLAlchemy engine, session factory and the transaction helper."""

from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from ..core.config import get_settings
from ..core.errors import PersistenceError, WriteConflict


SQLITE_BUSY_TIMEOUT = 30


def build_engine(url: str, *, echo: bool = False) -> Engine:
    # SQLite connections get shared across FastAPI worker threads, and a
    # writer waits for the database lock instead of failing straight away.
    connect_args = (
        {"check_same_thread": False, "timeout": SQLITE_BUSY_TIMEOUT} if url.startswith("sqlite") else {}
    )
    return create_engine(url, connect_args=connect_args, echo=echo, pool_pre_ping=True)


_settings = get_settings()
engine = build_engine(_settings.DB_URL, echo=_settings.DB_ECHO)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()


def get_db():
    """FastAPI dependency: one session per request, always closed.

    Closing a session with an open transaction rolls it back, so a request
    that dies half way leaves nothing behind.
    """

    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def atomic(db: Session) -> Iterator[Session]:
    """Commit the session's work on success, roll all of it back otherwise."""

    try:
        yield db
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise WriteConflict() from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise PersistenceError() from exc
    except BaseException:
        db.rollback()
        raise


__all__ = ["Base", "SessionLocal", "atomic", "build_engine", "engine", "get_db"]
