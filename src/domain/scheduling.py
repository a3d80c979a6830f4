"""Monthly scheduling of owner confirmations.

A scheduling pass looks at every listed property of a tenant, decides which
ones need a confirmation this cycle, and creates one ``pending`` record plus
a token for each. The eligibility decision is computed from loaded state
only, so a dry run reports exactly what a real run would do.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone
from typing import Any, Dict, Iterable, List, Optional, Set

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, joinedload

from core.config import get_settings
from core.exceptions import DuplicateScheduleConflictError, LockNotAcquiredError
from core.logging_config import get_context_logger, get_logger
from core.models import ActorType, Property, SCHEDULABLE_PROPERTY_STATUSES
from core.utils import cycle_month, first_of_next_month, utcnow
from domain.confirmations import ConfirmationStore
from services.activity_log import ActivityEventType
from services.locking import SchedulerLockService, schedule_lock_name
from services.tokens import ConfirmationTokenService

LOGGER = get_logger(__name__)
SETTINGS = get_settings()


class SkipReason:
    """Human-readable skip reason templates."""
    NO_OWNER = "Property {ref}: no owner"
    NO_OWNER_CONTACT = "Property {ref}: no owner contact"
    ALREADY_SCHEDULED = "Property {ref}: already scheduled"
    SAVE_FAILED = "Property {ref}: failed to save"


@dataclass
class EligibilityDecision:
    """Whether one property gets a confirmation this cycle."""
    property: Property
    eligible: bool
    reason: Optional[str] = None


@dataclass
class ScheduleSummary:
    """Result of a scheduling pass."""
    scheduled_for: date
    dry_run: bool
    total_properties: int = 0
    scheduled_count: int = 0
    skipped_count: int = 0
    skipped_reasons: List[str] = field(default_factory=list)
    scheduled_confirm_ids: List[int] = field(default_factory=list)

    def skip(self, reason: str) -> None:
        self.skipped_count += 1
        self.skipped_reasons.append(reason)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_properties": self.total_properties,
            "scheduled_count": self.scheduled_count,
            "skipped_count": self.skipped_count,
            "skipped_reasons": self.skipped_reasons,
            "scheduled_confirm_ids": self.scheduled_confirm_ids,
            "scheduled_for": self.scheduled_for.isoformat(),
            "dry_run": self.dry_run,
        }


def evaluate_eligibility(
    properties: Iterable[Property],
    active_property_ids: Set[int],
) -> List[EligibilityDecision]:
    """
    Decide which properties get a confirmation this cycle.

    Pure with respect to persisted state: reads the given objects and
    writes nothing.
    """
    decisions: List[EligibilityDecision] = []
    for prop in properties:
        ref = prop.display_reference
        owner = prop.owner
        if owner is None or owner.tenant_id != prop.tenant_id:
            decisions.append(EligibilityDecision(prop, False, SkipReason.NO_OWNER.format(ref=ref)))
        elif prop.id in active_property_ids:
            decisions.append(
                EligibilityDecision(prop, False, SkipReason.ALREADY_SCHEDULED.format(ref=ref))
            )
        elif not owner.has_contact:
            decisions.append(
                EligibilityDecision(prop, False, SkipReason.NO_OWNER_CONTACT.format(ref=ref))
            )
        else:
            decisions.append(EligibilityDecision(prop, True))
    return decisions


def token_ttl_for(scheduled_for: date, now: datetime) -> timedelta:
    """
    Token lifetime counted from the send date rather than the issue date,
    so links scheduled weeks ahead are still valid when they go out.
    """
    send_start = datetime.combine(scheduled_for, time.min, tzinfo=timezone.utc)
    lead_time = max(send_start - now, timedelta(0))
    return lead_time + timedelta(days=SETTINGS.confirmation_token_ttl_days)


class MonthlyConfirmationScheduler:
    """Creates pending confirmation records for a tenant's properties."""

    def __init__(self, session: Session):
        self.session = session
        self.store = ConfirmationStore(session)
        self.tokens = ConfirmationTokenService(session)
        self.locks = SchedulerLockService(session)

    def _load_properties(self, tenant_id: str) -> List[Property]:
        return (
            self.session.query(Property)
            .options(joinedload(Property.owner))
            .filter(
                Property.tenant_id == tenant_id,
                Property.status.in_(SCHEDULABLE_PROPERTY_STATUSES),
            )
            .order_by(Property.id)
            .all()
        )

    def schedule_monthly(
        self,
        tenant_id: str,
        target_date: Optional[date] = None,
        dry_run: bool = False,
        now: Optional[datetime] = None,
    ) -> ScheduleSummary:
        """
        Run a scheduling pass.

        Args:
            tenant_id: Tenant whose properties are scheduled.
            target_date: Reminder date; defaults to the 1st of next month.
            dry_run: Compute counts and reasons without writing anything.
            now: Current time (defaults to current UTC time).

        Returns:
            ScheduleSummary where scheduled_count + skipped_count equals
            total_properties.

        Raises:
            LockNotAcquiredError: another pass for the tenant is running.
        """
        now = now or utcnow()
        target_date = target_date or first_of_next_month(now.date())

        if dry_run:
            return self._run(tenant_id, target_date, dry_run=True, now=now)

        lock_name = schedule_lock_name(tenant_id)
        with self.locks.scheduler_lock(lock_name) as acquired:
            if not acquired:
                raise LockNotAcquiredError(f"A scheduling pass for {tenant_id} is already running")
            return self._run(tenant_id, target_date, dry_run=False, now=now)

    def _run(
        self,
        tenant_id: str,
        target_date: date,
        dry_run: bool,
        now: datetime,
    ) -> ScheduleSummary:
        log = get_context_logger(__name__, tenant_id=tenant_id)
        cycle = cycle_month(target_date)
        properties = self._load_properties(tenant_id)
        decisions = evaluate_eligibility(
            properties, self.store.active_property_ids(tenant_id, cycle)
        )

        summary = ScheduleSummary(
            scheduled_for=target_date,
            dry_run=dry_run,
            total_properties=len(properties),
        )
        log.info(
            f"Scheduling {len(properties)} properties for {target_date.isoformat()}"
            + (" (dry run)" if dry_run else "")
        )

        ttl = token_ttl_for(target_date, now)
        for decision in decisions:
            if not decision.eligible:
                summary.skip(decision.reason)
                continue
            if dry_run:
                summary.scheduled_count += 1
                continue

            prop = decision.property
            ref = prop.display_reference
            try:
                with self.session.begin_nested():
                    issued = self.tokens.issue(
                        tenant_id,
                        prop.id,
                        prop.owner_id,
                        ttl=ttl,
                        now=now,
                        delivery_hint=SETTINGS.default_delivery_method,
                    )
                    record = self.store.create(
                        tenant_id=tenant_id,
                        property_id=prop.id,
                        owner_id=prop.owner_id,
                        scheduled_for=target_date,
                        token_id=issued.token_id,
                        confirmation_url=issued.confirmation_url,
                        broker_id=prop.broker_id,
                        delivery_method=SETTINGS.default_delivery_method,
                    )
            except DuplicateScheduleConflictError:
                # Another pass scheduled it after our eligibility scan
                summary.skip(SkipReason.ALREADY_SCHEDULED.format(ref=ref))
                continue
            except SQLAlchemyError as e:
                log.error(f"Failed to schedule property {prop.id}: {e}")
                summary.skip(SkipReason.SAVE_FAILED.format(ref=ref))
                continue

            self.store.activity.add_event(
                tenant_id=tenant_id,
                property_id=prop.id,
                event_type=ActivityEventType.CONFIRMATION_SCHEDULED,
                title=f"Owner confirmation scheduled for {target_date.isoformat()}",
                actor_type=ActorType.SYSTEM.value,
                metadata={"confirmation_id": record.id, "token_id": issued.token_id},
            )
            summary.scheduled_count += 1
            summary.scheduled_confirm_ids.append(record.id)

        log.info(
            f"Scheduling complete: {summary.scheduled_count} scheduled, "
            f"{summary.skipped_count} skipped out of {summary.total_properties}"
        )
        return summary


def get_monthly_scheduler(session: Session) -> MonthlyConfirmationScheduler:
    """Get a MonthlyConfirmationScheduler instance."""
    return MonthlyConfirmationScheduler(session)


__all__ = [
    "EligibilityDecision",
    "MonthlyConfirmationScheduler",
    "ScheduleSummary",
    "SkipReason",
    "evaluate_eligibility",
    "get_monthly_scheduler",
    "token_ttl_for",
]
