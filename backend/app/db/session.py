from __future__ import annotations

from collections.abc import Generator, Iterator
from contextlib import contextmanager
from typing import Any, Callable

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from app.core.config import get_settings

_POOLED_DIALECTS = ("postgresql", "postgres", "mysql", "mariadb")


def engine_options(database_url: str) -> dict[str, Any]:
    """Connection options for the configured dialect."""

    options: dict[str, Any] = {"future": True}
    if database_url.startswith("sqlite"):
        # request handlers run in a threadpool
        options["connect_args"] = {"check_same_thread": False}
        return options
    if database_url.startswith(_POOLED_DIALECTS):
        options.update(pool_pre_ping=True, pool_size=5, max_overflow=10, pool_timeout=30, pool_recycle=1800)
    if database_url.startswith(("postgresql", "postgres")):
        options["connect_args"] = {"options": "-c timezone=utc"}
    elif database_url.startswith(("mysql", "mariadb")):
        options["connect_args"] = {"init_command": "SET time_zone = '+00:00'"}
    return options


settings = get_settings()
engine = create_engine(settings.database_url, **engine_options(settings.database_url))

SessionLocal = sessionmaker(bind=engine, class_=Session, autoflush=False, autocommit=False, expire_on_commit=False)


def get_db() -> Generator[Session, None, None]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def session_scope(factory: Callable[[], Session] | None = None) -> Iterator[Session]:
    """Session for work outside a request; rolls back when the block raises."""

    session = (factory or SessionLocal)()
    try:
        yield session
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
