"""Database connection and session management."""
from __future__ import annotations

from contextlib import contextmanager
from typing import Generator, List, Optional

from sqlalchemy import create_engine, event, inspect, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker
from sqlalchemy.pool import NullPool, StaticPool

from .config import get_settings
from .logging_config import get_logger

LOGGER = get_logger(__name__)
SETTINGS = get_settings()

# Tables that MUST exist for the confirmation workflow to function
REQUIRED_TABLES = [
    "owner",
    "property",
    "confirmation_token",
    "scheduled_confirmation",
    "activity_log",
    "background_task",
    "scheduler_lock",
]


def _build_engine(database_url: str) -> Engine:
    """Create an engine tuned for the configured backend."""
    if database_url.startswith("sqlite"):
        # File databases get NullPool; an in-memory database must share one connection
        sqlite_engine = create_engine(
            database_url,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool if ":memory:" in database_url else NullPool,
        )

        @event.listens_for(sqlite_engine, "connect")
        def set_sqlite_pragma(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA journal_mode=WAL")
            cursor.execute("PRAGMA busy_timeout=30000")
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()
            # Let SQLAlchemy emit BEGIN itself so SAVEPOINTs nest correctly
            dbapi_connection.isolation_level = None

        @event.listens_for(sqlite_engine, "begin")
        def do_begin(conn):
            conn.exec_driver_sql("BEGIN")

        return sqlite_engine

    # PostgreSQL/MySQL with connection pooling
    return create_engine(
        database_url,
        pool_size=SETTINGS.db_pool_size,
        max_overflow=SETTINGS.db_max_overflow,
        pool_timeout=SETTINGS.db_pool_timeout,
        pool_pre_ping=True,
    )


engine = _build_engine(SETTINGS.database_url)

# Session factory
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""
    pass


@contextmanager
def get_session() -> Generator[Session, None, None]:
    """
    Context manager for database sessions.

    Commits on success, rolls back on any exception.

    Yields:
        SQLAlchemy Session object.
    """
    session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def _missing_tables(bind: Engine) -> List[str]:
    existing_tables = set(inspect(bind).get_table_names())
    return [t for t in REQUIRED_TABLES if t not in existing_tables]


def init_db(bind: Optional[Engine] = None) -> dict:
    """
    Create any missing tables.

    Production deployments should prefer ``alembic upgrade head``; this is
    used for local development and the CLI ``init-db`` command.

    Returns:
        Dict with initialization results.
    """
    # Import models to ensure they are registered with Base
    from . import models  # noqa: F401

    bind = bind or engine
    result = {
        "status": "success",
        "tables_created": [],
        "tables_existing": [],
        "warnings": [],
    }

    existing_tables = set(inspect(bind).get_table_names())
    Base.metadata.create_all(bind=bind)
    new_tables = set(inspect(bind).get_table_names())
    result["tables_created"] = sorted(new_tables - existing_tables)
    result["tables_existing"] = sorted(existing_tables)

    missing_required = _missing_tables(bind)
    if missing_required:
        result["warnings"].append(f"Missing required tables: {missing_required}")
        result["status"] = "warning"

    if result["tables_created"]:
        LOGGER.info(f"[DB] Created tables: {result['tables_created']}")
    return result


def validate_database() -> dict:
    """
    Validate database connection and required tables.

    Returns:
        Dict with validation results.
    """
    result = {
        "status": "ok",
        "tables_found": [],
        "tables_missing": [],
        "errors": [],
    }

    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))

        result["tables_found"] = inspect(engine).get_table_names()
        missing = _missing_tables(engine)
        result["tables_missing"] = missing
        if missing:
            result["status"] = "missing_tables"
            result["errors"].append(f"Missing required tables: {missing}")

    except Exception as e:
        LOGGER.error(f"[DB] Validation failed: {e}")
        result["status"] = "error"
        result["errors"].append(str(e))

    return result
