"""Confirmation record store and lifecycle.

Every solicitation attempt is one ``ScheduledConfirmation`` row. Rows move
through a small state machine and are never deleted::

    pending -> sent -> responded
    pending -> sent -> failed
    pending -> failed        (delivery refused, or overdue sweep)
    pending -> cancelled
    sent    -> cancelled     (administrative)

Transitions are applied with a conditional UPDATE on the expected current
status, so a transition that lost a race fails instead of overwriting.
"""
from __future__ import annotations

from datetime import date, timedelta
from typing import Any, Dict, List, Optional, Set

from sqlalchemy import func, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from core.exceptions import (
    ConfirmationConflictError,
    ConfirmationNotFoundError,
    DuplicateScheduleConflictError,
    ValidationError,
)
from core.logging_config import get_logger
from core.models import (
    ACTIVE_CONFIRMATION_STATUSES,
    ActorType,
    ScheduledConfirmation,
    ScheduledConfirmationStatus as Status,
)
from core.utils import cycle_month, utcnow
from delivery.channels import DeliveryStatus
from services.activity_log import ActivityEventType, ActivityLogService

LOGGER = get_logger(__name__)

ALLOWED_TRANSITIONS: Dict[str, Set[str]] = {
    Status.PENDING.value: {Status.SENT.value, Status.FAILED.value, Status.CANCELLED.value},
    Status.SENT.value: {Status.RESPONDED.value, Status.FAILED.value, Status.CANCELLED.value},
    Status.RESPONDED.value: set(),
    Status.FAILED.value: set(),
    Status.CANCELLED.value: set(),
}

DEFAULT_LIST_LIMIT = 100


def can_transition(current: str, target: str) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current, set())


def parse_status(value: Optional[str]) -> Optional[str]:
    """Validate an optional status filter from a request."""
    if value is None or value == "":
        return None
    try:
        return Status(value).value
    except ValueError:
        raise ValidationError(f"Unknown confirmation status: {value}")


class ConfirmationStore:
    """Repository and state machine for scheduled confirmations."""

    def __init__(self, session: Session):
        self.session = session
        self.activity = ActivityLogService(session)

    # -------------------------------------------------------------------------
    # Creation & lookup
    # -------------------------------------------------------------------------

    def create(
        self,
        tenant_id: str,
        property_id: int,
        owner_id: int,
        scheduled_for: date,
        token_id: Optional[int] = None,
        confirmation_url: Optional[str] = None,
        broker_id: Optional[int] = None,
        delivery_method: str = "manual",
    ) -> ScheduledConfirmation:
        """
        Insert a ``pending`` record.

        Raises:
            DuplicateScheduleConflictError: if the property already has an
                active record for the cycle of ``scheduled_for``.
        """
        record = ScheduledConfirmation(
            tenant_id=tenant_id,
            property_id=property_id,
            owner_id=owner_id,
            broker_id=broker_id,
            token_id=token_id,
            confirmation_url=confirmation_url,
            scheduled_for=scheduled_for,
            cycle_month=cycle_month(scheduled_for),
            status=Status.PENDING.value,
            delivery_method=delivery_method,
            created_at=utcnow(),
        )
        try:
            with self.session.begin_nested():
                self.session.add(record)
        except IntegrityError as e:
            raise DuplicateScheduleConflictError(
                f"Property {property_id} already scheduled for {cycle_month(scheduled_for)}"
            ) from e
        return record

    def get(self, tenant_id: str, confirmation_id: int) -> ScheduledConfirmation:
        record = self.session.get(ScheduledConfirmation, confirmation_id)
        if record is None or record.tenant_id != tenant_id:
            raise ConfirmationNotFoundError(f"Scheduled confirmation {confirmation_id} not found")
        return record

    def get_by_token(self, token_id: int) -> Optional[ScheduledConfirmation]:
        return self.session.query(ScheduledConfirmation).filter(
            ScheduledConfirmation.token_id == token_id
        ).first()

    def list_for_tenant(
        self,
        tenant_id: str,
        status: Optional[str] = None,
        broker_id: Optional[int] = None,
        limit: int = DEFAULT_LIST_LIMIT,
    ) -> List[ScheduledConfirmation]:
        """Records for a tenant, newest first."""
        query = self.session.query(ScheduledConfirmation).filter(
            ScheduledConfirmation.tenant_id == tenant_id
        )
        status = parse_status(status)
        if status:
            query = query.filter(ScheduledConfirmation.status == status)
        if broker_id is not None:
            query = query.filter(ScheduledConfirmation.broker_id == broker_id)
        return (
            query.order_by(
                ScheduledConfirmation.scheduled_for.desc(),
                ScheduledConfirmation.id.desc(),
            )
            .limit(limit)
            .all()
        )

    def active_property_ids(self, tenant_id: str, cycle: str) -> Set[int]:
        """Properties with a pending or sent record in the given cycle."""
        rows = self.session.query(ScheduledConfirmation.property_id).filter(
            ScheduledConfirmation.tenant_id == tenant_id,
            ScheduledConfirmation.cycle_month == cycle,
            ScheduledConfirmation.status.in_(ACTIVE_CONFIRMATION_STATUSES),
        ).all()
        return {row[0] for row in rows}

    def list_due(self, tenant_id: str, today: date) -> List[ScheduledConfirmation]:
        """Pending records whose reminder date has arrived."""
        return (
            self.session.query(ScheduledConfirmation)
            .filter(
                ScheduledConfirmation.tenant_id == tenant_id,
                ScheduledConfirmation.status == Status.PENDING.value,
                ScheduledConfirmation.scheduled_for <= today,
            )
            .order_by(ScheduledConfirmation.scheduled_for, ScheduledConfirmation.id)
            .all()
        )

    def counts_by_status(self, tenant_id: str) -> Dict[str, int]:
        rows = (
            self.session.query(ScheduledConfirmation.status, func.count(ScheduledConfirmation.id))
            .filter(ScheduledConfirmation.tenant_id == tenant_id)
            .group_by(ScheduledConfirmation.status)
            .all()
        )
        counts = {status.value: 0 for status in Status}
        counts.update({status: count for status, count in rows})
        return counts

    # -------------------------------------------------------------------------
    # Transitions
    # -------------------------------------------------------------------------

    def transition(
        self,
        record: ScheduledConfirmation,
        target: str,
        expected: Optional[str] = None,
        **values: Any,
    ) -> ScheduledConfirmation:
        """
        Move a record to ``target`` if it is still in ``expected`` state.

        Args:
            record: Record to update.
            target: New status.
            expected: Status the record must currently have; defaults to the
                status loaded on ``record``.
            **values: Extra columns to set in the same UPDATE.

        Raises:
            ConfirmationConflictError: illegal transition, or the row changed
                state concurrently.
        """
        expected = expected or record.status
        if not can_transition(expected, target):
            raise ConfirmationConflictError(
                f"Cannot move confirmation {record.id} from {expected} to {target}"
            )

        result = self.session.execute(
            update(ScheduledConfirmation)
            .where(
                ScheduledConfirmation.id == record.id,
                ScheduledConfirmation.status == expected,
            )
            .values(status=target, updated_at=utcnow(), **values)
            .execution_options(synchronize_session="fetch")
        )
        if result.rowcount != 1:
            self.session.refresh(record)
            raise ConfirmationConflictError(
                f"Confirmation {record.id} is {record.status}, expected {expected}"
            )
        self.session.refresh(record)
        LOGGER.debug(
            f"Confirmation {record.id}: {expected} -> {target}",
            extra={"tenant_id": record.tenant_id, "confirmation_id": record.id},
        )
        return record

    def cancel(
        self,
        tenant_id: str,
        confirmation_id: int,
        reason: Optional[str] = None,
        actor_id: Optional[str] = None,
    ) -> ScheduledConfirmation:
        """
        Administratively withdraw a pending or sent record.

        Raises:
            ConfirmationConflictError: the record is already terminal, e.g.
                the owner responded first.
        """
        record = self.get(tenant_id, confirmation_id)
        self.transition(record, Status.CANCELLED.value, cancel_reason=reason)
        self.activity.add_event(
            tenant_id=tenant_id,
            property_id=record.property_id,
            event_type=ActivityEventType.CONFIRMATION_CANCELLED,
            title="Owner confirmation cancelled",
            actor_type=ActorType.USER.value,
            actor_id=actor_id,
            metadata={"confirmation_id": record.id, "reason": reason},
        )
        LOGGER.info(f"Cancelled confirmation {record.id}", extra={"tenant_id": tenant_id})
        return record

    def sweep_overdue(
        self,
        tenant_id: str,
        today: date,
        grace_days: int,
    ) -> List[int]:
        """
        Fail pending records left undispatched past the grace window.

        A record scheduled for ``d`` is overdue when ``today > d + grace_days``.
        Failed records free the property for the next scheduling cycle.

        Returns:
            Ids of the records moved to ``failed``.
        """
        cutoff = today - timedelta(days=grace_days)
        overdue = (
            self.session.query(ScheduledConfirmation)
            .filter(
                ScheduledConfirmation.tenant_id == tenant_id,
                ScheduledConfirmation.status == Status.PENDING.value,
                ScheduledConfirmation.scheduled_for < cutoff,
            )
            .all()
        )

        swept: List[int] = []
        for record in overdue:
            try:
                self.transition(
                    record,
                    Status.FAILED.value,
                    expected=Status.PENDING.value,
                    delivery_status=DeliveryStatus.EXPIRED_UNSENT,
                    delivery_error=f"Not dispatched within {grace_days} days of {record.scheduled_for}",
                )
            except ConfirmationConflictError:
                # Dispatched or cancelled concurrently
                continue
            swept.append(record.id)

        if swept:
            LOGGER.info(
                f"Swept {len(swept)} overdue pending confirmations",
                extra={"tenant_id": tenant_id},
            )
        return swept


def get_confirmation_store(session: Session) -> ConfirmationStore:
    """Get a ConfirmationStore instance."""
    return ConfirmationStore(session)


__all__ = [
    "ALLOWED_TRANSITIONS",
    "ConfirmationStore",
    "can_transition",
    "get_confirmation_store",
    "parse_status",
]
