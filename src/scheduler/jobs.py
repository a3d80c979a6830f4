"""Scheduled job definitions for the confirmation workflow.

Each job opens its own session, records a tracked task and returns a
result dict. Jobs never raise; failures are logged and reported in the
returned dict.
"""
from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from core.config import get_settings
from core.db import get_session
from core.exceptions import PropertyConfirmationError
from core.logging_config import get_logger
from core.utils import utcnow
from domain.confirmations import ConfirmationStore
from domain.dispatch import BatchRunner
from domain.scheduling import MonthlyConfirmationScheduler
from services.task_tracker import TaskTracker, TaskType

LOGGER = get_logger(__name__)
SETTINGS = get_settings()


def _job_id(job_type: str, tenant_id: str) -> str:
    return f"{job_type}_{tenant_id}_{datetime.now(timezone.utc).strftime('%Y%m%d_%H%M%S')}"


def _run_tracked_job(
    job_type: str,
    tenant_id: str,
    params: Dict[str, Any],
    work: Callable[[Any], Dict[str, Any]],
) -> Dict[str, Any]:
    job_id = _job_id(job_type, tenant_id)
    LOGGER.info("[%s] Starting %s job", job_id, job_type)

    try:
        with get_session() as session:
            tracker = TaskTracker(session)
            try:
                with tracker.track_task(job_type, tenant_id, params) as task:
                    with session.begin_nested():
                        task.result = work(session)
            except PropertyConfirmationError as e:
                # The failed task row is committed with the session
                LOGGER.warning("[%s] %s job did not run: %s", job_id, job_type, e)
                return {
                    "job_id": job_id,
                    "job_type": job_type,
                    "tenant_id": tenant_id,
                    "task_id": task.task_id,
                    "success": False,
                    "error": str(e),
                }
            result = task.result

        LOGGER.info("[%s] %s job complete", job_id, job_type)
        return {
            "job_id": job_id,
            "job_type": job_type,
            "tenant_id": tenant_id,
            "task_id": task.task_id,
            "success": True,
            "result": result,
        }
    except Exception as e:
        LOGGER.exception("[%s] %s job failed: %s", job_id, job_type, e)
        return {
            "job_id": job_id,
            "job_type": job_type,
            "tenant_id": tenant_id,
            "success": False,
            "error": str(e),
        }


def run_schedule_job(
    tenant_id: str,
    target_date: Optional[date] = None,
    dry_run: bool = False,
) -> Dict[str, Any]:
    """
    Run a monthly scheduling pass for one tenant.

    Args:
        tenant_id: Tenant to schedule.
        target_date: Reminder date (defaults to the 1st of next month).
        dry_run: Preview only; nothing is written and no task is recorded.

    Returns:
        Job result dict.
    """
    if dry_run:
        with get_session() as session:
            summary = MonthlyConfirmationScheduler(session).schedule_monthly(
                tenant_id, target_date=target_date, dry_run=True
            )
        return {
            "job_id": _job_id(TaskType.SCHEDULE_MONTHLY, tenant_id),
            "job_type": TaskType.SCHEDULE_MONTHLY,
            "tenant_id": tenant_id,
            "success": True,
            "result": summary.to_dict(),
        }

    return _run_tracked_job(
        TaskType.SCHEDULE_MONTHLY,
        tenant_id,
        {"scheduled_for": target_date.isoformat() if target_date else None},
        lambda session: MonthlyConfirmationScheduler(session)
        .schedule_monthly(tenant_id, target_date=target_date)
        .to_dict(),
    )


def run_process_job(tenant_id: str, today: Optional[date] = None) -> Dict[str, Any]:
    """Dispatch every pending confirmation due by ``today`` for one tenant."""
    today = today or utcnow().date()
    return _run_tracked_job(
        TaskType.PROCESS_PENDING,
        tenant_id,
        {"today": today.isoformat()},
        lambda session: BatchRunner(session).process_pending(tenant_id, today=today).to_dict(),
    )


def run_sweep_job(tenant_id: str, today: Optional[date] = None) -> Dict[str, Any]:
    """Fail pending confirmations left undispatched past the grace window."""
    today = today or utcnow().date()
    grace = SETTINGS.pending_overdue_grace_days

    def _sweep(session: Any) -> Dict[str, Any]:
        swept = ConfirmationStore(session).sweep_overdue(tenant_id, today, grace)
        return {"swept_count": len(swept), "swept_ids": swept}

    return _run_tracked_job(
        TaskType.SWEEP_OVERDUE,
        tenant_id,
        {"today": today.isoformat(), "grace_days": grace},
        _sweep,
    )


def run_for_tenants(
    job: Callable[[str], Dict[str, Any]],
    tenants: Optional[List[str]] = None,
) -> List[Dict[str, Any]]:
    """Run a per-tenant job for each configured tenant."""
    tenants = tenants if tenants is not None else SETTINGS.get_scheduler_tenants()
    if not tenants:
        LOGGER.warning("No tenants configured (SCHEDULER_TENANTS is empty)")
    return [job(tenant_id) for tenant_id in tenants]


__all__ = [
    "run_for_tenants",
    "run_process_job",
    "run_schedule_job",
    "run_sweep_job",
]
