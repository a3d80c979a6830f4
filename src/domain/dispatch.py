"""Batch runner: dispatch due confirmations through a delivery channel."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from core.exceptions import ConfirmationConflictError
from core.logging_config import get_context_logger, get_logger
from core.models import ActorType, Property, ScheduledConfirmation
from core.models import ScheduledConfirmationStatus as Status
from core.utils import utcnow
from delivery.channels import (
    DeliveryChannel,
    DeliveryRequest,
    DeliveryResult,
    DeliveryStatus,
    get_delivery_channel,
)
from domain.confirmations import ConfirmationStore
from services.activity_log import ActivityEventType

LOGGER = get_logger(__name__)


@dataclass
class DispatchOutcome:
    """Result for one record in a batch."""
    confirmation_id: int
    property_id: int
    status: str
    delivery_status: Optional[str] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "confirmation_id": self.confirmation_id,
            "property_id": self.property_id,
            "status": self.status,
            "delivery_status": self.delivery_status,
            "error": self.error,
        }


@dataclass
class DispatchSummary:
    """Result of a batch run."""
    today: date
    processed: int = 0
    sent: int = 0
    failed: int = 0
    skipped: int = 0
    outcomes: List[DispatchOutcome] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "today": self.today.isoformat(),
            "processed": self.processed,
            "sent": self.sent,
            "failed": self.failed,
            "skipped": self.skipped,
            "outcomes": [o.to_dict() for o in self.outcomes],
        }


def build_delivery_request(record: ScheduledConfirmation) -> DeliveryRequest:
    owner = record.owner
    prop: Property = record.property
    return DeliveryRequest(
        confirmation_id=record.id,
        tenant_id=record.tenant_id,
        confirmation_url=record.confirmation_url or "",
        property_reference=prop.display_reference if prop else str(record.property_id),
        owner_name=owner.name if owner else None,
        owner_phone=owner.phone if owner else None,
        owner_email=owner.email if owner else None,
    )


class BatchRunner:
    """
    Moves due ``pending`` records to ``sent`` or ``failed``.

    Every record is attempted independently; one failure never stops the
    batch. Failed records are not retried here. The next scheduling cycle
    creates a fresh record for the property instead.
    """

    def __init__(self, session: Session, channel: Optional[DeliveryChannel] = None):
        self.session = session
        self.store = ConfirmationStore(session)
        self.channel = channel

    def _deliver(self, record: ScheduledConfirmation) -> DeliveryResult:
        try:
            channel = self.channel or get_delivery_channel(record.delivery_method)
            return channel.deliver(build_delivery_request(record))
        except Exception as e:
            # A misbehaving collaborator counts as a failed delivery for this record only
            LOGGER.exception(f"Delivery channel raised for confirmation {record.id}")
            return DeliveryResult(
                success=False,
                delivery_status=DeliveryStatus.FAILED,
                error=str(e) or e.__class__.__name__,
            )

    def _apply(
        self,
        record: ScheduledConfirmation,
        result: DeliveryResult,
        now: datetime,
    ) -> str:
        if result.success:
            target = Status.SENT.value
            values: Dict[str, Any] = {
                "sent_at": now,
                "delivery_status": result.delivery_status,
                "delivery_error": None,
            }
            event_type = ActivityEventType.CONFIRMATION_SENT
            title = "Owner confirmation sent"
        else:
            target = Status.FAILED.value
            values = {
                "delivery_status": result.delivery_status,
                "delivery_error": result.error,
            }
            event_type = ActivityEventType.CONFIRMATION_FAILED
            title = "Owner confirmation delivery failed"

        with self.session.begin_nested():
            self.store.transition(record, target, expected=Status.PENDING.value, **values)
            self.store.activity.add_event(
                tenant_id=record.tenant_id,
                property_id=record.property_id,
                event_type=event_type,
                title=title,
                actor_type=ActorType.SYSTEM.value,
                metadata={
                    "confirmation_id": record.id,
                    "delivery_method": record.delivery_method,
                    "delivery_status": result.delivery_status,
                    "external_id": result.external_id,
                },
            )
        return target

    def process_pending(
        self,
        tenant_id: str,
        today: Optional[date] = None,
        now: Optional[datetime] = None,
    ) -> DispatchSummary:
        """
        Dispatch every pending record with ``scheduled_for <= today``.

        Args:
            tenant_id: Tenant to process.
            today: Cut-off date (defaults to the current UTC date).
            now: Timestamp recorded as ``sent_at``.

        Returns:
            DispatchSummary with per-record outcomes and aggregate counts.
        """
        now = now or utcnow()
        today = today or now.date()
        log = get_context_logger(__name__, tenant_id=tenant_id)

        due = self.store.list_due(tenant_id, today)
        summary = DispatchSummary(today=today)
        log.info(f"Found {len(due)} pending confirmations due by {today.isoformat()}")

        for record in due:
            summary.processed += 1
            outcome = DispatchOutcome(confirmation_id=record.id, property_id=record.property_id, status=record.status)
            result = self._deliver(record)
            outcome.delivery_status = result.delivery_status
            outcome.error = result.error

            try:
                outcome.status = self._apply(record, result, now)
            except ConfirmationConflictError as e:
                # Cancelled or swept while we were delivering
                summary.skipped += 1
                outcome.status = record.status
                outcome.error = str(e)
                summary.outcomes.append(outcome)
                continue
            except SQLAlchemyError as e:
                log.error(f"Failed to record delivery for confirmation {record.id}: {e}")
                summary.failed += 1
                outcome.status = "error"
                outcome.error = str(e)
                summary.outcomes.append(outcome)
                continue

            if outcome.status == Status.SENT.value:
                summary.sent += 1
            else:
                summary.failed += 1
            summary.outcomes.append(outcome)

        log.info(
            f"Processing complete: {summary.sent} sent, {summary.failed} failed, "
            f"{summary.skipped} skipped"
        )
        return summary


def get_batch_runner(session: Session, channel: Optional[DeliveryChannel] = None) -> BatchRunner:
    """Get a BatchRunner instance."""
    return BatchRunner(session, channel)


__all__ = [
    "BatchRunner",
    "DispatchOutcome",
    "DispatchSummary",
    "build_delivery_request",
    "get_batch_runner",
]
