from __future__ import annotations

from contextlib import contextmanager
from typing import Callable, Iterator, Optional

from sqlalchemy.orm import Session

from spg_chat.db import SessionLocal, get_engine


@contextmanager
def db_session(factory: Optional[Callable[[], Session]] = None) -> Iterator[Session]:
    """Session for code running outside a request; rolled back on error."""
    if factory is None:
        get_engine()
        factory = SessionLocal
    db = factory()
    try:
        yield db
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
