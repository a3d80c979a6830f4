"""Pytest configuration and fixtures."""
from __future__ import annotations

import os
import sys
from datetime import datetime, timezone
from pathlib import Path

import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool

# Add src to path for imports
src_path = Path(__file__).parent.parent / "src"
if str(src_path) not in sys.path:
    sys.path.insert(0, str(src_path))

# Set test environment
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("DRY_RUN", "true")
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-for-ci")
os.environ.setdefault("PUBLIC_BASE_URL", "https://imoveis.example.com")
os.environ.setdefault("DEFAULT_DELIVERY_METHOD", "manual")

from core.auth import create_access_token
from core.db import Base
from core.models import Broker, Owner, Property

TENANT = "acme"
OTHER_TENANT = "globex"

SQLALCHEMY_DATABASE_URL = "sqlite:///:memory:"


@pytest.fixture(scope="session")
def engine():
    """Create a test database engine."""
    engine = create_engine(
        SQLALCHEMY_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    # Foreign keys on, and let SQLAlchemy emit BEGIN so SAVEPOINTs work
    @event.listens_for(engine, "connect")
    def set_sqlite_pragma(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def do_begin(conn):
        conn.exec_driver_sql("BEGIN")

    return engine


@pytest.fixture(scope="session")
def tables(engine):
    """Create all tables for testing."""
    import core.models  # noqa: F401

    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db_session(engine, tables) -> Session:
    """
    Returns a SQLAlchemy session for testing.

    Each test gets a fresh transaction that is rolled back after the test.
    Commits inside the code under test only release a savepoint.
    """
    connection = engine.connect()
    transaction = connection.begin()

    SessionLocal = sessionmaker(
        autocommit=False,
        autoflush=False,
        bind=connection,
        join_transaction_mode="create_savepoint",
    )
    session = SessionLocal()

    yield session

    session.close()
    transaction.rollback()
    connection.close()


@pytest.fixture
def now() -> datetime:
    return datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def sample_broker(db_session) -> Broker:
    broker = Broker(
        tenant_id=TENANT,
        name="Carla Mendes",
        phone="+5511912345678",
        photo_url="https://cdn.example.com/carla.jpg",
    )
    db_session.add(broker)
    db_session.flush()
    return broker


@pytest.fixture
def sample_owner(db_session) -> Owner:
    """Owner reachable by phone and email."""
    owner = Owner(
        tenant_id=TENANT,
        name="João Silva",
        phone="(11) 98765-4321",
        email="joao@example.com",
    )
    db_session.add(owner)
    db_session.flush()
    return owner


@pytest.fixture
def sample_property(db_session, sample_owner, sample_broker) -> Property:
    """Available listing with no confirmation history."""
    prop = Property(
        tenant_id=TENANT,
        owner_id=sample_owner.id,
        broker_id=sample_broker.id,
        reference="AP-1001",
        property_type="apartment",
        neighborhood="Pinheiros",
        city="São Paulo",
        status="available",
        price_amount=500000.0,
    )
    db_session.add(prop)
    db_session.flush()
    return prop


@pytest.fixture
def property_without_contact(db_session) -> Property:
    owner = Owner(tenant_id=TENANT, name="Maria Souza", phone=None, email="  ")
    db_session.add(owner)
    db_session.flush()
    prop = Property(
        tenant_id=TENANT,
        owner_id=owner.id,
        reference="CA-2002",
        property_type="house",
        status="available",
    )
    db_session.add(prop)
    db_session.flush()
    return prop


def make_property(db_session, owner: Owner, reference: str, **fields) -> Property:
    prop = Property(
        tenant_id=fields.pop("tenant_id", owner.tenant_id),
        owner_id=owner.id,
        reference=reference,
        status=fields.pop("status", "available"),
        **fields,
    )
    db_session.add(prop)
    db_session.flush()
    return prop


def auth_headers(tenant_id: str = TENANT, role: str = "admin", user_id: str = "staff-1") -> dict:
    token = create_access_token(user_id, tenant_id, role=role)
    return {"Authorization": f"Bearer {token}"}
