"""Database engine, declarative base and request-scoped sessions."""

from __future__ import annotations

from functools import lru_cache
from typing import Iterator

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from spg_chat.config import get_settings

Base = declarative_base()

SessionLocal = sessionmaker(autocommit=False, autoflush=False)


@lru_cache(maxsize=1)
def get_engine() -> Engine:
    """Build the engine on first use so importing models never needs a driver."""
    settings = get_settings()
    url = settings.database_url_obj
    if url.get_backend_name() == "sqlite" and url.database in (None, "", ":memory:"):
        engine = create_engine(
            url,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    elif url.get_backend_name() == "sqlite":
        engine = create_engine(url, connect_args={"check_same_thread": False})
    else:
        engine = create_engine(
            url,
            pool_size=settings.database_pool_size,
            max_overflow=settings.database_max_overflow,
            pool_pre_ping=True,
        )
    SessionLocal.configure(bind=engine)
    return engine


def get_db() -> Iterator[Session]:
    """FastAPI dependency yielding a session that is always closed."""
    get_engine()
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
