"""Activity log for confirmation events on a property."""
from __future__ import annotations

from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from core.logging_config import get_logger
from core.models import ActivityLog, ActorType
from core.utils import utcnow

LOGGER = get_logger(__name__)


class ActivityEventType:
    """Constants for activity event types."""
    CONFIRMATION_LINK_CREATED = "owner_confirmation_link_created"
    CONFIRMATION_SCHEDULED = "owner_confirmation_scheduled"
    CONFIRMATION_SENT = "owner_confirmation_sent"
    CONFIRMATION_FAILED = "owner_confirmation_failed"
    CONFIRMATION_CANCELLED = "owner_confirmation_cancelled"
    OWNER_CONFIRMED_STATUS = "owner_confirmed_status"
    OWNER_CONFIRMED_PRICE = "owner_confirmed_price"
    OPERATOR_CONFIRMED_STATUS = "operator_confirmed_status"
    OPERATOR_CONFIRMED_PRICE = "operator_confirmed_price"


class ActivityLogService:
    """Service for appending and reading property activity entries."""

    def __init__(self, session: Session):
        self.session = session

    def add_event(
        self,
        tenant_id: str,
        event_type: str,
        title: str,
        property_id: Optional[int] = None,
        actor_type: str = ActorType.SYSTEM.value,
        actor_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> ActivityLog:
        """
        Append an activity entry.

        Args:
            tenant_id: Tenant the property belongs to.
            event_type: Type of event (use ActivityEventType constants).
            title: Short human-readable summary.
            property_id: Property the event concerns.
            actor_type: owner, user or system.
            actor_id: Identifier of the acting owner or staff user.
            metadata: Optional JSON metadata.

        Returns:
            The created ActivityLog.
        """
        entry = ActivityLog(
            tenant_id=tenant_id,
            property_id=property_id,
            event_type=event_type,
            actor_type=actor_type,
            actor_id=actor_id,
            title=title,
            event_metadata=metadata or {},
            created_at=utcnow(),
        )
        self.session.add(entry)
        self.session.flush()

        LOGGER.debug(f"Activity {event_type} for property {property_id}")
        return entry

    def get_property_activity(
        self,
        tenant_id: str,
        property_id: int,
        limit: int = 50,
        event_type: Optional[str] = None,
    ) -> List[ActivityLog]:
        """Activity entries for a property, newest first."""
        query = self.session.query(ActivityLog).filter(
            ActivityLog.tenant_id == tenant_id,
            ActivityLog.property_id == property_id,
        )
        if event_type:
            query = query.filter(ActivityLog.event_type == event_type)
        return query.order_by(ActivityLog.id.desc()).limit(limit).all()


def get_activity_log_service(session: Session) -> ActivityLogService:
    """Get an ActivityLogService instance."""
    return ActivityLogService(session)


__all__ = [
    "ActivityLogService",
    "ActivityEventType",
    "get_activity_log_service",
]
