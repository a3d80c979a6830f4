"""Scheduler locking.

A lease row in ``scheduler_lock`` keeps two scheduling passes for the same
tenant from running at once. On a multi-writer backend the lease is
committed in its own short transaction so other workers see it while the
pass runs; an expired lease is taken over. SQLite serializes writers at the
database level, so there the lease lives in the caller's transaction. The
partial unique index on ``scheduled_confirmation`` still guards against
duplicates if a lease expires mid-run.
"""
from __future__ import annotations

from contextlib import contextmanager
from datetime import timedelta
from typing import Callable, Generator, Iterator, Optional

from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from core.config import get_settings
from core.logging_config import get_logger
from core.models import SchedulerLock
from core.utils import ensure_aware, generate_unique_key, utcnow

LOGGER = get_logger(__name__)
SETTINGS = get_settings()


def schedule_lock_name(tenant_id: str) -> str:
    return f"schedule_monthly:{tenant_id}"


def lease_session_factory(session: Session) -> Optional[Callable[[], Session]]:
    """Sessions for committing leases apart from ``session``, or None on SQLite."""
    bind = session.get_bind()
    if isinstance(bind, Engine) and bind.dialect.name != "sqlite":
        return sessionmaker(bind=bind, autoflush=False)
    return None


class SchedulerLockService:
    """
    Service for lease-based scheduler locking.

    Prevents concurrent scheduling passes for a tenant.
    """

    def __init__(
        self,
        session: Session,
        instance_id: Optional[str] = None,
        lease_sessions: Optional[Callable[[], Session]] = None,
    ):
        self.session = session
        self.instance_id = instance_id or generate_unique_key()
        self.lease_sessions = lease_sessions if lease_sessions is not None else lease_session_factory(session)

    @contextmanager
    def _lease_scope(self) -> Iterator[Session]:
        if self.lease_sessions is None:
            yield self.session
            return
        lease_session = self.lease_sessions()
        try:
            yield lease_session
            lease_session.commit()
        except Exception:
            lease_session.rollback()
            raise
        finally:
            lease_session.close()

    def acquire_lock(
        self,
        lock_name: str,
        duration_seconds: Optional[int] = None,
    ) -> bool:
        """
        Attempt to acquire a scheduler lock.

        Args:
            lock_name: Name of the lock (e.g., "schedule_monthly:acme").
            duration_seconds: Lease length; defaults to SCHEDULE_LOCK_SECONDS.

        Returns:
            True if lock was acquired, False if held by someone else.
        """
        now = utcnow()
        expires_at = now + timedelta(seconds=duration_seconds or SETTINGS.schedule_lock_seconds)

        with self._lease_scope() as session:
            existing = session.query(SchedulerLock).filter(
                SchedulerLock.lock_name == lock_name
            ).with_for_update().first()

            if existing:
                if now < ensure_aware(existing.expires_at):
                    if existing.locked_by == self.instance_id:
                        # We already have the lock, extend it
                        existing.expires_at = expires_at
                        session.flush()
                        return True
                    LOGGER.warning(
                        f"Lock {lock_name} held by {existing.locked_by} until {existing.expires_at}"
                    )
                    return False

                # Lease expired, take it over
                existing.locked_by = self.instance_id
                existing.locked_at = now
                existing.expires_at = expires_at
                session.flush()
                LOGGER.info(f"Acquired expired lock {lock_name}")
                return True

            try:
                with session.begin_nested():
                    session.add(
                        SchedulerLock(
                            lock_name=lock_name,
                            locked_by=self.instance_id,
                            locked_at=now,
                            expires_at=expires_at,
                        )
                    )
            except IntegrityError:
                LOGGER.warning(f"Lost race for lock {lock_name}")
                return False

        LOGGER.info(f"Acquired lock {lock_name}")
        return True

    def release_lock(self, lock_name: str) -> None:
        with self._lease_scope() as session:
            lock = session.query(SchedulerLock).filter(
                SchedulerLock.lock_name == lock_name,
                SchedulerLock.locked_by == self.instance_id,
            ).first()

            if lock:
                session.delete(lock)
                session.flush()
                LOGGER.info(f"Released lock {lock_name}")

    @contextmanager
    def scheduler_lock(
        self,
        lock_name: str,
        duration_seconds: Optional[int] = None,
    ) -> Generator[bool, None, None]:
        """
        Context manager for scheduler locking.

        Usage:
            with lock_service.scheduler_lock(schedule_lock_name(tenant_id)) as acquired:
                if acquired:
                    ...  # run the pass

        Yields:
            True if lock was acquired, False otherwise.
        """
        acquired = self.acquire_lock(lock_name, duration_seconds)
        try:
            yield acquired
        finally:
            if acquired:
                self.release_lock(lock_name)


def get_scheduler_lock_service(session: Session) -> SchedulerLockService:
    """Get a SchedulerLockService instance."""
    return SchedulerLockService(session)


__all__ = [
    "SchedulerLockService",
    "get_scheduler_lock_service",
    "lease_session_factory",
    "schedule_lock_name",
]
