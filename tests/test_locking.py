"""Tests for the scheduler lease lock."""
from __future__ import annotations

from datetime import timedelta
from unittest.mock import MagicMock

import pytest
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from conftest import TENANT
from core.models import Owner, SchedulerLock
from core.utils import utcnow
from services.locking import SchedulerLockService, lease_session_factory, schedule_lock_name

LOCK = schedule_lock_name(TENANT)


@pytest.fixture
def lease_sessions(db_session):
    """Separate sessions on the test connection, each committing on its own."""
    return sessionmaker(
        bind=db_session.get_bind(),
        autoflush=False,
        join_transaction_mode="create_savepoint",
    )


def _worker(db_session, lease_sessions, name: str) -> SchedulerLockService:
    return SchedulerLockService(db_session, instance_id=name, lease_sessions=lease_sessions)


class TestLeaseSessions:
    def test_sqlite_keeps_lease_in_caller_transaction(self):
        session = Session(bind=create_engine("sqlite://"))
        assert lease_session_factory(session) is None
        assert SchedulerLockService(session).lease_sessions is None

    def test_multi_writer_backend_gets_own_sessions(self):
        bind = MagicMock(spec=Engine)
        bind.dialect = MagicMock()
        bind.dialect.name = "postgresql"
        session = MagicMock()
        session.get_bind.return_value = bind

        factory = lease_session_factory(session)

        assert factory is not None
        assert factory.kw["bind"] is bind


class TestLease:
    def test_lease_survives_caller_rollback(self, db_session, lease_sessions):
        assert _worker(db_session, lease_sessions, "worker-a").acquire_lock(LOCK) is True

        db_session.add(Owner(tenant_id=TENANT, name="Rolled Back"))
        db_session.flush()
        db_session.rollback()

        lock = db_session.query(SchedulerLock).filter(SchedulerLock.lock_name == LOCK).one()
        assert lock.locked_by == "worker-a"

    def test_second_worker_refused(self, db_session, lease_sessions):
        assert _worker(db_session, lease_sessions, "worker-a").acquire_lock(LOCK) is True
        assert _worker(db_session, lease_sessions, "worker-b").acquire_lock(LOCK) is False

    def test_expired_lease_taken_over(self, db_session, lease_sessions):
        assert _worker(db_session, lease_sessions, "worker-a").acquire_lock(LOCK, duration_seconds=60) is True
        lock = db_session.query(SchedulerLock).filter(SchedulerLock.lock_name == LOCK).one()
        lock.expires_at = utcnow() - timedelta(seconds=1)
        db_session.flush()

        assert _worker(db_session, lease_sessions, "worker-b").acquire_lock(LOCK) is True

        db_session.expire_all()
        lock = db_session.query(SchedulerLock).filter(SchedulerLock.lock_name == LOCK).one()
        assert lock.locked_by == "worker-b"

    def test_context_manager_releases(self, db_session, lease_sessions):
        worker = _worker(db_session, lease_sessions, "worker-a")

        with worker.scheduler_lock(LOCK) as acquired:
            assert acquired is True
            assert db_session.query(SchedulerLock).count() == 1

        db_session.expire_all()
        assert db_session.query(SchedulerLock).count() == 0
