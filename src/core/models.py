"""SQLAlchemy ORM models for the property confirmation service."""
from __future__ import annotations

from datetime import date, datetime
from typing import Optional

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    JSON,
    Numeric,
    String,
    Text,
    func,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship
import enum

from core.db import Base


# =============================================================================
# Enums
# =============================================================================


class PropertyStatus(str, enum.Enum):
    """Listing status of a property."""
    AVAILABLE = "available"
    UNAVAILABLE = "unavailable"
    PENDING_CONFIRMATION = "pending_confirmation"
    RENTED = "rented"
    SOLD = "sold"
    RESERVED = "reserved"


# Statuses the monthly scheduler solicits owners for
SCHEDULABLE_PROPERTY_STATUSES = (
    PropertyStatus.AVAILABLE.value,
    PropertyStatus.UNAVAILABLE.value,
    PropertyStatus.PENDING_CONFIRMATION.value,
)


class PropertyVisibility(str, enum.Enum):
    """Public listing visibility."""
    PUBLIC = "public"
    PRIVATE = "private"


class PendingReason(str, enum.Enum):
    """Why a property needs owner attention."""
    STALE_STATUS = "stale_status"
    STALE_PRICE = "stale_price"
    OWNER_REPORTED = "owner_reported"
    OPERATOR_REPORTED = "operator_reported"


class ScheduledConfirmationStatus(str, enum.Enum):
    """Lifecycle states of a scheduled confirmation."""
    PENDING = "pending"
    SENT = "sent"
    RESPONDED = "responded"
    FAILED = "failed"
    CANCELLED = "cancelled"


ACTIVE_CONFIRMATION_STATUSES = (
    ScheduledConfirmationStatus.PENDING.value,
    ScheduledConfirmationStatus.SENT.value,
)

TERMINAL_CONFIRMATION_STATUSES = (
    ScheduledConfirmationStatus.RESPONDED.value,
    ScheduledConfirmationStatus.FAILED.value,
    ScheduledConfirmationStatus.CANCELLED.value,
)


class ConfirmationResponse(str, enum.Enum):
    """Outcome recorded on a responded confirmation."""
    AVAILABLE = "available"
    UNAVAILABLE = "unavailable"
    PRICE_UPDATED = "price_updated"


class ConfirmationAction(str, enum.Enum):
    """Actions an owner can take from the public confirmation page."""
    CONFIRM_AVAILABLE = "confirm_available"
    CONFIRM_UNAVAILABLE = "confirm_unavailable"
    CONFIRM_PRICE = "confirm_price"

    @property
    def response(self) -> ConfirmationResponse:
        return _ACTION_RESPONSES[self]


_ACTION_RESPONSES = {
    ConfirmationAction.CONFIRM_AVAILABLE: ConfirmationResponse.AVAILABLE,
    ConfirmationAction.CONFIRM_UNAVAILABLE: ConfirmationResponse.UNAVAILABLE,
    ConfirmationAction.CONFIRM_PRICE: ConfirmationResponse.PRICE_UPDATED,
}


class DeliveryMethod(str, enum.Enum):
    """How a confirmation link reaches the owner."""
    MANUAL = "manual"
    WHATSAPP = "whatsapp"
    SMS = "sms"


class ActorType(str, enum.Enum):
    """Who performed an audited action."""
    OWNER = "owner"
    USER = "user"
    SYSTEM = "system"


class ImportBatchStatus(str, enum.Enum):
    """Import batch processing states."""
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class TaskStatus(str, enum.Enum):
    """Background task statuses."""
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


# =============================================================================
# Owner / Broker Models
# =============================================================================


class Owner(Base):
    """Contact information for a property owner."""
    __tablename__ = "owner"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    phone: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    properties: Mapped[list["Property"]] = relationship("Property", back_populates="owner")

    @property
    def has_contact(self) -> bool:
        """True when the owner can be reached by at least one channel."""
        return bool((self.phone or "").strip() or (self.email or "").strip())


class Broker(Base):
    """Agent assigned to a listing; shown to owners on the confirmation page."""
    __tablename__ = "broker"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    phone: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    photo_url: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )


# =============================================================================
# Property Model
# =============================================================================


class Property(Base):
    """
    A listed property.

    ``status_confirmed_at`` and ``price_confirmed_at`` are only written by
    owner submissions and operator confirmations.
    """
    __tablename__ = "property"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    owner_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("owner.id"), nullable=True, index=True
    )
    broker_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("broker.id"), nullable=True, index=True
    )

    # Listing data
    reference: Mapped[Optional[str]] = mapped_column(String(50), nullable=True, index=True)
    property_type: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    neighborhood: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    city: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    cover_image_url: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    # Status
    status: Mapped[str] = mapped_column(
        String(30), default=PropertyStatus.AVAILABLE.value, nullable=False, index=True
    )
    visibility: Mapped[str] = mapped_column(
        String(20), default=PropertyVisibility.PUBLIC.value, nullable=False
    )
    pending_reason: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)

    # Price
    price_amount: Mapped[Optional[float]] = mapped_column(
        Numeric(14, 2, asdecimal=False), nullable=True
    )
    price_currency: Mapped[str] = mapped_column(String(3), default="BRL", nullable=False)

    # Confirmation tracking
    status_confirmed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    price_confirmed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    # Relationships
    owner: Mapped[Optional["Owner"]] = relationship("Owner", back_populates="properties")
    broker: Mapped[Optional["Broker"]] = relationship("Broker")

    __table_args__ = (
        Index("ix_property_tenant_status", "tenant_id", "status"),
    )

    @property
    def display_reference(self) -> str:
        return self.reference or str(self.id)


# =============================================================================
# ConfirmationToken Model
# =============================================================================


class ConfirmationToken(Base):
    """
    Single-use credential behind an owner confirmation link.

    Only the SHA-256 hash of the raw token is stored.
    """
    __tablename__ = "confirmation_token"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    token_hash: Mapped[str] = mapped_column(String(64), unique=True, nullable=False, index=True)
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    property_id: Mapped[int] = mapped_column(ForeignKey("property.id"), nullable=False, index=True)
    owner_id: Mapped[int] = mapped_column(ForeignKey("owner.id"), nullable=False)

    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    consumed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    consumed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    last_action: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)

    delivery_hint: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)
    owner_snapshot: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    created_by_type: Mapped[str] = mapped_column(
        String(20), default=ActorType.SYSTEM.value, nullable=False
    )
    created_by_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    property: Mapped["Property"] = relationship("Property")
    owner: Mapped["Owner"] = relationship("Owner")


# =============================================================================
# ScheduledConfirmation Model
# =============================================================================


class ScheduledConfirmation(Base):
    """
    One solicitation attempt asking an owner to confirm a property.

    Records are never deleted; closed records remain as audit history.
    """
    __tablename__ = "scheduled_confirmation"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    property_id: Mapped[int] = mapped_column(ForeignKey("property.id"), nullable=False, index=True)
    owner_id: Mapped[int] = mapped_column(ForeignKey("owner.id"), nullable=False)
    broker_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("broker.id"), nullable=True, index=True
    )
    token_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("confirmation_token.id"), nullable=True, unique=True
    )
    confirmation_url: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    # Scheduling
    scheduled_for: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    cycle_month: Mapped[str] = mapped_column(String(7), nullable=False)  # "YYYY-MM"
    status: Mapped[str] = mapped_column(
        String(20), default=ScheduledConfirmationStatus.PENDING.value, nullable=False, index=True
    )

    # Delivery
    delivery_method: Mapped[str] = mapped_column(
        String(20), default=DeliveryMethod.MANUAL.value, nullable=False
    )
    delivery_status: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    delivery_error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    sent_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    # Response
    responded_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    response: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    cancel_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    property: Mapped["Property"] = relationship("Property")
    owner: Mapped["Owner"] = relationship("Owner")
    token: Mapped[Optional["ConfirmationToken"]] = relationship("ConfirmationToken")

    __table_args__ = (
        Index("ix_scheduled_confirmation_tenant_status", "tenant_id", "status"),
        # At most one active record per property per cycle
        Index(
            "uq_scheduled_confirmation_active_cycle",
            "property_id",
            "cycle_month",
            unique=True,
            sqlite_where=text("status IN ('pending', 'sent')"),
            postgresql_where=text("status IN ('pending', 'sent')"),
        ),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "property_id": self.property_id,
            "owner_id": self.owner_id,
            "broker_id": self.broker_id,
            "token_id": self.token_id,
            "confirmation_url": self.confirmation_url,
            "scheduled_for": self.scheduled_for.isoformat() if self.scheduled_for else None,
            "status": self.status,
            "delivery_method": self.delivery_method,
            "delivery_status": self.delivery_status,
            "delivery_error": self.delivery_error,
            "sent_at": self.sent_at.isoformat() if self.sent_at else None,
            "responded_at": self.responded_at.isoformat() if self.responded_at else None,
            "response": self.response,
            "cancel_reason": self.cancel_reason,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


# =============================================================================
# ActivityLog Model
# =============================================================================


class ActivityLog(Base):
    """
    Audit trail entry for confirmation activity on a property.
    """
    __tablename__ = "activity_log"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    property_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("property.id"), nullable=True, index=True
    )

    # Event data
    event_type: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    actor_type: Mapped[str] = mapped_column(String(20), nullable=False)
    actor_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    event_metadata: Mapped[Optional[dict]] = mapped_column("metadata", JSON, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )


# =============================================================================
# ImportBatch Model
# =============================================================================


class ImportBatch(Base):
    """
    Progress record for a listing feed import, polled by the dashboard.
    """
    __tablename__ = "import_batch"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    source_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    status: Mapped[str] = mapped_column(
        String(20), default=ImportBatchStatus.PROCESSING.value, nullable=False
    )

    # Counters
    total_xml_records: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_properties_created: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_properties_matched_existing: Mapped[int] = mapped_column(
        Integer, default=0, nullable=False
    )
    total_errors: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    errors: Mapped[Optional[list]] = mapped_column(JSON, nullable=True)

    started_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)


# =============================================================================
# BackgroundTask Model
# =============================================================================


class BackgroundTask(Base):
    """
    Tracking for scheduler and batch runner executions.
    """
    __tablename__ = "background_task"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    task_id: Mapped[str] = mapped_column(String(64), unique=True, nullable=False, index=True)
    task_type: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    status: Mapped[str] = mapped_column(String(20), default=TaskStatus.PENDING.value, index=True)
    tenant_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)

    # Task data
    params: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    result: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Timing
    started_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )


# =============================================================================
# SchedulerLock Model
# =============================================================================


class SchedulerLock(Base):
    """
    Lease-based lock preventing overlapping scheduling passes for a tenant.
    """
    __tablename__ = "scheduler_lock"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    lock_name: Mapped[str] = mapped_column(String(100), unique=True, nullable=False, index=True)
    locked_by: Mapped[str] = mapped_column(String(64), nullable=False)
    locked_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
