"""Admin routes for scheduled owner confirmations."""
from __future__ import annotations

from datetime import date
from typing import Any, Callable, Dict, Optional

from fastapi import APIRouter, Depends, Query, Response
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from api.auth_deps import StaffPrincipal, require_tenant_access
from api.deps import get_db, get_readonly_db
from core.config import get_settings
from core.exceptions import PropertyConfirmationError
from core.logging_config import get_logger
from core.utils import utcnow
from domain.confirmations import ConfirmationStore
from domain.dispatch import BatchRunner
from domain.metrics import MetricsAggregator, format_prometheus
from domain.scheduling import MonthlyConfirmationScheduler
from services.task_tracker import TaskTracker, TaskType, task_to_dict

router = APIRouter()
LOGGER = get_logger(__name__)
SETTINGS = get_settings()


# =============================================================================
# Pydantic Models
# =============================================================================


class ScheduleRequest(BaseModel):
    """Request body for a scheduling pass."""

    scheduled_for: Optional[date] = Field(
        None, description="Reminder date; defaults to the 1st of next month"
    )
    dry_run: bool = Field(False, description="Preview counts without creating records")


class ProcessRequest(BaseModel):
    """Request body for an ad hoc batch run."""

    today: Optional[date] = Field(None, description="Dispatch records due on or before this date")


class CancelRequest(BaseModel):
    """Request body for cancelling a confirmation."""

    reason: Optional[str] = Field(None, max_length=500)


# =============================================================================
# Helpers
# =============================================================================


def _run_tracked(
    db: Session,
    task_type: str,
    tenant_id: str,
    params: Dict[str, Any],
    work: Callable[[], Dict[str, Any]],
) -> Dict[str, Any]:
    """
    Run ``work`` as a tracked task and return its result plus ``task_id``.

    The work runs in a savepoint so a failure rolls it back while the failed
    task row is still committed for pollers.
    """
    tracker = TaskTracker(db)
    try:
        with tracker.track_task(task_type, tenant_id, params) as task:
            with db.begin_nested():
                task.result = work()
    except PropertyConfirmationError:
        db.commit()
        raise
    return {**(task.result or {}), "task_id": task.task_id}


# =============================================================================
# Routes
# =============================================================================


@router.post("/schedule")
async def schedule_confirmations(
    tenant_id: str,
    request: Optional[ScheduleRequest] = None,
    staff: StaffPrincipal = Depends(require_tenant_access),
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    """Create pending confirmations for the tenant's listed properties."""
    request = request or ScheduleRequest()
    scheduler = MonthlyConfirmationScheduler(db)

    if request.dry_run:
        return scheduler.schedule_monthly(
            tenant_id, target_date=request.scheduled_for, dry_run=True
        ).to_dict()

    params = {
        "scheduled_for": request.scheduled_for.isoformat() if request.scheduled_for else None,
        "requested_by": staff.user_id,
    }
    return _run_tracked(
        db,
        TaskType.SCHEDULE_MONTHLY,
        tenant_id,
        params,
        lambda: scheduler.schedule_monthly(tenant_id, target_date=request.scheduled_for).to_dict(),
    )


@router.post("/process")
async def process_pending_confirmations(
    tenant_id: str,
    request: Optional[ProcessRequest] = None,
    staff: StaffPrincipal = Depends(require_tenant_access),
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    """Dispatch every due pending confirmation now."""
    request = request or ProcessRequest()
    today = request.today or utcnow().date()
    runner = BatchRunner(db)
    result = _run_tracked(
        db,
        TaskType.PROCESS_PENDING,
        tenant_id,
        {"today": today.isoformat(), "requested_by": staff.user_id},
        lambda: runner.process_pending(tenant_id, today=today).to_dict(),
    )
    return {
        "processed": result["processed"],
        "sent": result["sent"],
        "failed": result["failed"],
        "skipped": result["skipped"],
        "task_id": result["task_id"],
    }


@router.post("/sweep")
async def sweep_overdue_confirmations(
    tenant_id: str,
    staff: StaffPrincipal = Depends(require_tenant_access),
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    """Fail pending confirmations that were never dispatched in time."""
    today = utcnow().date()
    store = ConfirmationStore(db)

    def _sweep() -> Dict[str, Any]:
        swept = store.sweep_overdue(tenant_id, today, SETTINGS.pending_overdue_grace_days)
        return {"swept_count": len(swept), "swept_ids": swept}

    return _run_tracked(
        db,
        TaskType.SWEEP_OVERDUE,
        tenant_id,
        {"today": today.isoformat(), "requested_by": staff.user_id},
        _sweep,
    )


@router.get("")
async def list_scheduled_confirmations(
    tenant_id: str,
    status: Optional[str] = Query(default=None, description="Filter by status"),
    limit: int = Query(default=100, ge=1, le=500),
    staff: StaffPrincipal = Depends(require_tenant_access),
    db: Session = Depends(get_readonly_db),
) -> Dict[str, Any]:
    """List scheduled confirmations, newest first."""
    records = ConfirmationStore(db).list_for_tenant(tenant_id, status=status, limit=limit)
    return {"data": [r.to_dict() for r in records], "count": len(records)}


@router.get("/broker/{broker_id}")
async def list_broker_confirmations(
    tenant_id: str,
    broker_id: int,
    status: Optional[str] = Query(default=None, description="Filter by status"),
    limit: int = Query(default=100, ge=1, le=500),
    staff: StaffPrincipal = Depends(require_tenant_access),
    db: Session = Depends(get_readonly_db),
) -> Dict[str, Any]:
    """List the confirmations of properties assigned to one broker."""
    records = ConfirmationStore(db).list_for_tenant(
        tenant_id, status=status, broker_id=broker_id, limit=limit
    )
    return {"data": [r.to_dict() for r in records], "count": len(records)}


@router.get("/metrics")
async def get_confirmation_metrics(
    tenant_id: str,
    output: str = Query(default="json", alias="format", pattern="^(json|prometheus)$"),
    staff: StaffPrincipal = Depends(require_tenant_access),
    db: Session = Depends(get_readonly_db),
) -> Any:
    """Counts by status and confirmation staleness."""
    metrics = MetricsAggregator(db).get_metrics(tenant_id)
    if output == "prometheus":
        return Response(content=format_prometheus(metrics), media_type="text/plain; version=0.0.4")
    return metrics.to_dict()


@router.get("/runs/{task_id}")
async def get_run(
    tenant_id: str,
    task_id: str,
    staff: StaffPrincipal = Depends(require_tenant_access),
    db: Session = Depends(get_readonly_db),
) -> Dict[str, Any]:
    """Status and result of a scheduling, dispatch or sweep run."""
    return task_to_dict(TaskTracker(db).get_task(task_id, tenant_id=tenant_id))


@router.get("/{confirmation_id}")
async def get_scheduled_confirmation(
    tenant_id: str,
    confirmation_id: int,
    staff: StaffPrincipal = Depends(require_tenant_access),
    db: Session = Depends(get_readonly_db),
) -> Dict[str, Any]:
    return ConfirmationStore(db).get(tenant_id, confirmation_id).to_dict()


@router.post("/{confirmation_id}/cancel")
async def cancel_scheduled_confirmation(
    tenant_id: str,
    confirmation_id: int,
    request: Optional[CancelRequest] = None,
    staff: StaffPrincipal = Depends(require_tenant_access),
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    """Withdraw a pending or sent confirmation. 409 if it already closed."""
    request = request or CancelRequest()
    record = ConfirmationStore(db).cancel(
        tenant_id, confirmation_id, reason=request.reason, actor_id=staff.user_id
    )
    return record.to_dict()
