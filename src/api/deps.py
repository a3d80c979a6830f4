"""Database session dependencies for FastAPI routes."""
from __future__ import annotations

from typing import Generator

from sqlalchemy.orm import Session

from core.db import SessionLocal
from core.logging_config import get_logger

LOGGER = get_logger(__name__)


def get_db() -> Generator[Session, None, None]:
    """
    FastAPI dependency that provides a database session.

    The request's unit of work is committed when the route returns and
    rolled back if it raises.

    Yields:
        SQLAlchemy Session instance.
    """
    db = SessionLocal()
    try:
        yield db
        db.commit()
    except Exception:
        LOGGER.debug("Rolling back request session")
        db.rollback()
        raise
    finally:
        db.close()


def get_readonly_db() -> Generator[Session, None, None]:
    """
    FastAPI dependency for read-only routes. Never commits.

    Yields:
        SQLAlchemy Session instance.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.rollback()
        db.close()


__all__ = ["get_db", "get_readonly_db"]
