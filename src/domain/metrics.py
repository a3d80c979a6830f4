"""Confirmation metrics for the operator dashboard."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional, Tuple

from sqlalchemy import func
from sqlalchemy.orm import Session

from core.config import get_settings
from core.logging_config import get_logger
from core.models import (
    Property,
    SCHEDULABLE_PROPERTY_STATUSES,
    ScheduledConfirmation,
    ScheduledConfirmationStatus as Status,
)
from core.utils import ensure_aware, utcnow
from delivery.channels import DeliveryStatus
from domain.confirmations import ConfirmationStore

LOGGER = get_logger(__name__)
SETTINGS = get_settings()


class StalenessBucket:
    FRESH = "fresh"
    STALE = "stale"
    NEVER_CONFIRMED = "never_confirmed"


def staleness_bucket(
    confirmed_at: Optional[datetime],
    now: datetime,
    threshold: timedelta,
) -> str:
    """Stale when more than ``threshold`` has passed since the last confirmation."""
    if confirmed_at is None:
        return StalenessBucket.NEVER_CONFIRMED
    if now - ensure_aware(confirmed_at) > threshold:
        return StalenessBucket.STALE
    return StalenessBucket.FRESH


def _empty_buckets() -> Dict[str, int]:
    return {
        StalenessBucket.FRESH: 0,
        StalenessBucket.STALE: 0,
        StalenessBucket.NEVER_CONFIRMED: 0,
    }


@dataclass
class ConfirmationMetrics:
    """Snapshot of a tenant's confirmation workload."""
    tenant_id: str
    generated_at: datetime
    staleness_threshold_days: int
    confirmations: Dict[str, int] = field(default_factory=dict)
    awaiting_manual_delivery: int = 0
    total_properties: int = 0
    status_staleness: Dict[str, int] = field(default_factory=_empty_buckets)
    price_staleness: Dict[str, int] = field(default_factory=_empty_buckets)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tenant_id": self.tenant_id,
            "generated_at": self.generated_at.isoformat(),
            "staleness_threshold_days": self.staleness_threshold_days,
            "confirmations": self.confirmations,
            "awaiting_manual_delivery": self.awaiting_manual_delivery,
            "total_properties": self.total_properties,
            "status_staleness": self.status_staleness,
            "price_staleness": self.price_staleness,
        }


class MetricsAggregator:
    """Read-only aggregation over confirmations and listed properties."""

    def __init__(self, session: Session, staleness_threshold_days: Optional[int] = None):
        self.session = session
        self.store = ConfirmationStore(session)
        self.staleness_threshold_days = staleness_threshold_days or SETTINGS.staleness_threshold_days

    def _confirmation_dates(self, tenant_id: str) -> List[Tuple[Optional[datetime], Optional[datetime]]]:
        return (
            self.session.query(Property.status_confirmed_at, Property.price_confirmed_at)
            .filter(
                Property.tenant_id == tenant_id,
                Property.status.in_(SCHEDULABLE_PROPERTY_STATUSES),
            )
            .all()
        )

    def get_metrics(self, tenant_id: str, now: Optional[datetime] = None) -> ConfirmationMetrics:
        """
        Counts by confirmation status plus staleness buckets.

        Args:
            tenant_id: Tenant to aggregate.
            now: Reference time for staleness (defaults to current UTC time).
        """
        now = now or utcnow()
        threshold = timedelta(days=self.staleness_threshold_days)

        counts = self.store.counts_by_status(tenant_id)
        counts["total"] = sum(counts.values())

        manual = self.session.query(func.count(ScheduledConfirmation.id)).filter(
            ScheduledConfirmation.tenant_id == tenant_id,
            ScheduledConfirmation.status == Status.SENT.value,
            ScheduledConfirmation.delivery_status == DeliveryStatus.MANUAL_REQUIRED,
        ).scalar() or 0

        metrics = ConfirmationMetrics(
            tenant_id=tenant_id,
            generated_at=now,
            staleness_threshold_days=self.staleness_threshold_days,
            confirmations=counts,
            awaiting_manual_delivery=manual,
        )
        for status_confirmed_at, price_confirmed_at in self._confirmation_dates(tenant_id):
            metrics.total_properties += 1
            metrics.status_staleness[staleness_bucket(status_confirmed_at, now, threshold)] += 1
            metrics.price_staleness[staleness_bucket(price_confirmed_at, now, threshold)] += 1

        return metrics


def _format_prometheus_metric(
    name: str,
    help_text: str,
    samples: Iterable[Tuple[Dict[str, str], float]],
    metric_type: str = "gauge",
) -> str:
    """Format one metric family in Prometheus format."""
    out = f"# HELP {name} {help_text}\n# TYPE {name} {metric_type}\n"
    for labels, value in samples:
        label_text = ",".join(f'{k}="{v}"' for k, v in labels.items())
        out += f"{name}{{{label_text}}} {value}\n"
    return out


def format_prometheus(metrics: ConfirmationMetrics) -> str:
    """Render metrics in the Prometheus text exposition format."""
    tenant = {"tenant_id": metrics.tenant_id}
    lines: List[str] = [
        _format_prometheus_metric(
            "property_confirmations",
            "Scheduled confirmations by status",
            [
                ({**tenant, "status": status}, count)
                for status, count in metrics.confirmations.items()
                if status != "total"
            ],
        ),
        _format_prometheus_metric(
            "property_confirmations_manual_pending",
            "Sent confirmations waiting for a broker to deliver the link",
            [(tenant, metrics.awaiting_manual_delivery)],
        ),
        _format_prometheus_metric(
            "property_confirmations_properties_total",
            "Listed properties",
            [(tenant, metrics.total_properties)],
        ),
        _format_prometheus_metric(
            "property_status_staleness",
            "Listed properties by status confirmation age",
            [({**tenant, "bucket": b}, c) for b, c in metrics.status_staleness.items()],
        ),
        _format_prometheus_metric(
            "property_price_staleness",
            "Listed properties by price confirmation age",
            [({**tenant, "bucket": b}, c) for b, c in metrics.price_staleness.items()],
        ),
    ]
    return "".join(lines)


def get_metrics_aggregator(session: Session) -> MetricsAggregator:
    """Get a MetricsAggregator instance."""
    return MetricsAggregator(session)


__all__ = [
    "ConfirmationMetrics",
    "MetricsAggregator",
    "StalenessBucket",
    "format_prometheus",
    "get_metrics_aggregator",
    "staleness_bucket",
]
