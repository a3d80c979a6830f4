"""Submission processor: apply owner and operator confirmations.

An owner submission consumes the token, closes the scheduled confirmation
and updates the property in one savepoint. Any failure, including running
past the submission deadline, rolls all of it back.
"""
from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from core.config import get_settings
from core.exceptions import (
    ConfirmationConflictError,
    InvalidActionError,
    InvalidPriceError,
    PropertyNotFoundError,
    RecordNotInSentStateError,
    SubmissionTimeoutError,
    TokenNotFoundError,
    ValidationError,
)
from core.logging_config import get_logger
from core.models import (
    ActorType,
    ConfirmationAction,
    PendingReason,
    Property,
    PropertyStatus,
    PropertyVisibility,
    ScheduledConfirmationStatus as Status,
)
from core.utils import Deadline, utcnow
from domain.confirmations import ConfirmationStore
from services.activity_log import ActivityEventType, ActivityLogService
from services.tokens import ConfirmationTokenService

LOGGER = get_logger(__name__)
SETTINGS = get_settings()

# Operator confirm_status values and the owner action they stand for
OPERATOR_STATUS_ACTIONS = {
    PropertyStatus.AVAILABLE.value: ConfirmationAction.CONFIRM_AVAILABLE,
    PropertyStatus.UNAVAILABLE.value: ConfirmationAction.CONFIRM_UNAVAILABLE,
}


def parse_action(action: Any) -> ConfirmationAction:
    try:
        return ConfirmationAction(action)
    except ValueError:
        raise InvalidActionError()


def parse_price(price_amount: Any) -> float:
    """A strictly positive, finite price."""
    if price_amount is None or isinstance(price_amount, bool):
        raise InvalidPriceError()
    try:
        price = float(price_amount)
    except (TypeError, ValueError):
        raise InvalidPriceError()
    if not math.isfinite(price) or price <= 0:
        raise InvalidPriceError()
    return price


def apply_property_action(
    prop: Property,
    action: ConfirmationAction,
    now: datetime,
    price: Optional[float] = None,
) -> Dict[str, Any]:
    """
    Write the property side of a confirmation.

    Returns the changed fields, for the activity log.
    """
    changes: Dict[str, Any] = {}
    if action is ConfirmationAction.CONFIRM_AVAILABLE:
        if prop.status != PropertyStatus.AVAILABLE.value:
            prop.status = PropertyStatus.AVAILABLE.value
            changes["status"] = prop.status
        prop.status_confirmed_at = now
    elif action is ConfirmationAction.CONFIRM_UNAVAILABLE:
        prop.status = PropertyStatus.UNAVAILABLE.value
        prop.visibility = PropertyVisibility.PRIVATE.value
        prop.status_confirmed_at = now
        changes["status"] = prop.status
        changes["visibility"] = prop.visibility
    elif action is ConfirmationAction.CONFIRM_PRICE:
        prop.price_amount = price
        prop.price_confirmed_at = now
        changes["price_amount"] = price
    prop.pending_reason = None
    return changes


@dataclass
class SubmissionResult:
    """What a successful submission changed."""
    property_id: int
    action: str
    response: str
    confirmed_at: datetime
    confirmation_id: Optional[int] = None
    changes: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "property_id": self.property_id,
            "confirmation_id": self.confirmation_id,
            "action": self.action,
            "response": self.response,
            "confirmed_at": self.confirmed_at.isoformat(),
            "changes": self.changes,
        }


@dataclass
class OperatorConfirmationResult:
    """What an operator confirmation changed."""
    property_id: int
    status: str
    price_amount: Optional[float]
    status_confirmed_at: Optional[datetime]
    price_confirmed_at: Optional[datetime]
    reason_tag: str = PendingReason.OPERATOR_REPORTED.value

    def to_dict(self) -> Dict[str, Any]:
        return {
            "property_id": self.property_id,
            "status": self.status,
            "price_amount": self.price_amount,
            "status_confirmed_at": self.status_confirmed_at.isoformat() if self.status_confirmed_at else None,
            "price_confirmed_at": self.price_confirmed_at.isoformat() if self.price_confirmed_at else None,
            "reason_tag": self.reason_tag,
        }


class SubmissionProcessor:
    """Applies owner token submissions and operator-direct confirmations."""

    def __init__(self, session: Session, timeout_seconds: Optional[float] = None):
        self.session = session
        self.tokens = ConfirmationTokenService(session)
        self.store = ConfirmationStore(session)
        self.activity = ActivityLogService(session)
        self.timeout_seconds = timeout_seconds or SETTINGS.submission_timeout_seconds

    def submit(
        self,
        raw_token: str,
        tenant_id: str,
        action: Any,
        price_amount: Any = None,
        now: Optional[datetime] = None,
    ) -> SubmissionResult:
        """
        Apply an owner action presented with a confirmation token.

        Args:
            raw_token: Token from the confirmation URL.
            tenant_id: Tenant from the confirmation URL.
            action: confirm_available, confirm_unavailable or confirm_price.
            price_amount: New price, required for confirm_price.
            now: Submission time (defaults to current UTC time).

        Returns:
            SubmissionResult describing the applied change.

        Raises:
            TokenError subclasses for an unusable token, InvalidActionError,
            InvalidPriceError, RecordNotInSentStateError, SubmissionTimeoutError.
        """
        deadline = Deadline(self.timeout_seconds)
        now = now or utcnow()
        parsed = parse_action(action)
        price = parse_price(price_amount) if parsed is ConfirmationAction.CONFIRM_PRICE else None

        with self.session.begin_nested():
            validation = self.tokens.validate(raw_token, tenant_id, now=now)
            token = validation.token
            self.tokens.consume(token.id, action=parsed.value, now=now)

            record = self.store.get_by_token(token.id)
            if record is not None:
                if record.status != Status.SENT.value:
                    raise RecordNotInSentStateError()
                try:
                    self.store.transition(
                        record,
                        Status.RESPONDED.value,
                        expected=Status.SENT.value,
                        responded_at=now,
                        response=parsed.response.value,
                    )
                except ConfirmationConflictError:
                    raise RecordNotInSentStateError()

            prop = self.session.get(Property, token.property_id)
            if prop is None:
                raise TokenNotFoundError()
            changes = apply_property_action(prop, parsed, now, price)

            event_type = (
                ActivityEventType.OWNER_CONFIRMED_PRICE
                if parsed is ConfirmationAction.CONFIRM_PRICE
                else ActivityEventType.OWNER_CONFIRMED_STATUS
            )
            self.activity.add_event(
                tenant_id=tenant_id,
                property_id=prop.id,
                event_type=event_type,
                title="Owner confirmed property " + ("price" if price is not None else "status"),
                actor_type=ActorType.OWNER.value,
                actor_id=str(token.owner_id),
                metadata={
                    "token_id": token.id,
                    "confirmation_id": record.id if record else None,
                    "action": parsed.value,
                    **changes,
                },
            )
            self.session.flush()

            if deadline.expired:
                LOGGER.warning(
                    f"Submission for token {token.id} exceeded {self.timeout_seconds}s, rolling back",
                    extra={"tenant_id": tenant_id, "property_id": prop.id},
                )
                raise SubmissionTimeoutError()

        LOGGER.info(
            f"Owner {parsed.value} applied to property {prop.id}",
            extra={
                "tenant_id": tenant_id,
                "property_id": prop.id,
                "confirmation_id": record.id if record else None,
            },
        )
        return SubmissionResult(
            property_id=prop.id,
            confirmation_id=record.id if record else None,
            action=parsed.value,
            response=parsed.response.value,
            confirmed_at=now,
            changes=changes,
        )

    def operator_confirm(
        self,
        tenant_id: str,
        property_id: int,
        confirm_status: Optional[str] = None,
        confirm_price_amount: Any = None,
        reason: Optional[str] = None,
        actor_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> OperatorConfirmationResult:
        """
        Staff confirmation of status and/or price without an owner token.

        ``confirm_status`` is ``available`` or ``unavailable``. Scheduled
        confirmations for the property are left untouched.
        """
        now = now or utcnow()
        if confirm_status is None and confirm_price_amount is None:
            raise ValidationError("Provide confirm_status or confirm_price_amount")

        status_action = None
        if confirm_status is not None:
            status_action = OPERATOR_STATUS_ACTIONS.get(str(confirm_status).lower())
            if status_action is None:
                raise ValidationError(
                    f"confirm_status must be one of {sorted(OPERATOR_STATUS_ACTIONS)}"
                )
        price = parse_price(confirm_price_amount) if confirm_price_amount is not None else None

        prop = self.session.get(Property, property_id)
        if prop is None or prop.tenant_id != tenant_id:
            raise PropertyNotFoundError(f"Property {property_id} not found")

        with self.session.begin_nested():
            if status_action is not None:
                changes = apply_property_action(prop, status_action, now)
                self.activity.add_event(
                    tenant_id=tenant_id,
                    property_id=prop.id,
                    event_type=ActivityEventType.OPERATOR_CONFIRMED_STATUS,
                    title="Operator confirmed property status",
                    actor_type=ActorType.USER.value,
                    actor_id=actor_id,
                    metadata={"reason_tag": PendingReason.OPERATOR_REPORTED.value, "reason": reason, **changes},
                )
            if price is not None:
                changes = apply_property_action(prop, ConfirmationAction.CONFIRM_PRICE, now, price)
                self.activity.add_event(
                    tenant_id=tenant_id,
                    property_id=prop.id,
                    event_type=ActivityEventType.OPERATOR_CONFIRMED_PRICE,
                    title="Operator confirmed property price",
                    actor_type=ActorType.USER.value,
                    actor_id=actor_id,
                    metadata={"reason_tag": PendingReason.OPERATOR_REPORTED.value, "reason": reason, **changes},
                )
            self.session.flush()

        LOGGER.info(
            f"Operator confirmation applied to property {prop.id}",
            extra={"tenant_id": tenant_id, "property_id": prop.id},
        )
        return OperatorConfirmationResult(
            property_id=prop.id,
            status=prop.status,
            price_amount=prop.price_amount,
            status_confirmed_at=prop.status_confirmed_at,
            price_confirmed_at=prop.price_confirmed_at,
        )


def get_submission_processor(session: Session) -> SubmissionProcessor:
    """Get a SubmissionProcessor instance."""
    return SubmissionProcessor(session)


__all__ = [
    "OperatorConfirmationResult",
    "SubmissionProcessor",
    "SubmissionResult",
    "apply_property_action",
    "get_submission_processor",
    "parse_action",
    "parse_price",
]
