"""Run tracking for scheduling passes and batch dispatches."""
from __future__ import annotations

from contextlib import contextmanager
from typing import Any, Dict, Generator, Optional

from sqlalchemy.orm import Session

from core.exceptions import TaskNotFoundError
from core.logging_config import get_logger
from core.models import BackgroundTask, TaskStatus
from core.utils import utcnow, generate_unique_key

LOGGER = get_logger(__name__)


class TaskType:
    """Constants for tracked task types."""
    SCHEDULE_MONTHLY = "schedule_monthly"
    PROCESS_PENDING = "process_pending"
    SWEEP_OVERDUE = "sweep_overdue"


class TaskTracker:
    """
    Service for tracking background task execution.

    The dashboard polls these records to show the outcome of a run.
    """

    def __init__(self, session: Session):
        self.session = session

    def create_task(
        self,
        task_type: str,
        tenant_id: Optional[str] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> BackgroundTask:
        """
        Create a new task record.

        Args:
            task_type: Type of task (use TaskType constants).
            tenant_id: Tenant the run belongs to.
            params: Optional task parameters.

        Returns:
            The created BackgroundTask.
        """
        task = BackgroundTask(
            task_id=generate_unique_key(),
            task_type=task_type,
            status=TaskStatus.PENDING.value,
            tenant_id=tenant_id,
            params=params,
            created_at=utcnow(),
        )
        self.session.add(task)
        self.session.flush()

        LOGGER.info(f"Created task {task.task_id} of type {task_type}")
        return task

    def start_task(self, task: BackgroundTask) -> None:
        task.status = TaskStatus.RUNNING.value
        task.started_at = utcnow()
        self.session.flush()

    def complete_task(
        self,
        task: BackgroundTask,
        result: Optional[Dict[str, Any]] = None,
    ) -> None:
        task.status = TaskStatus.COMPLETED.value
        task.completed_at = utcnow()
        task.result = result
        self.session.flush()
        LOGGER.info(f"Task {task.task_id} completed")

    def fail_task(
        self,
        task: BackgroundTask,
        error_message: str,
        result: Optional[Dict[str, Any]] = None,
    ) -> None:
        task.status = TaskStatus.FAILED.value
        task.completed_at = utcnow()
        task.error_message = error_message
        task.result = result
        self.session.flush()
        LOGGER.error(f"Task {task.task_id} failed: {error_message}")

    def get_task(self, task_id: str, tenant_id: Optional[str] = None) -> BackgroundTask:
        """Get a task by ID, optionally scoped to a tenant."""
        query = self.session.query(BackgroundTask).filter(BackgroundTask.task_id == task_id)
        if tenant_id is not None:
            query = query.filter(BackgroundTask.tenant_id == tenant_id)
        task = query.first()
        if task is None:
            raise TaskNotFoundError(f"Run {task_id} not found")
        return task

    @contextmanager
    def track_task(
        self,
        task_type: str,
        tenant_id: Optional[str] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> Generator[BackgroundTask, None, None]:
        """
        Context manager for task tracking.

        Usage:
            with tracker.track_task(TaskType.PROCESS_PENDING, "acme") as task:
                task.result = summary.to_dict()

        Automatically handles start/complete/fail status.
        """
        task = self.create_task(task_type, tenant_id, params)
        self.start_task(task)

        try:
            yield task
            self.complete_task(task, task.result)
        except Exception as e:
            self.fail_task(task, str(e))
            raise


def task_to_dict(task: BackgroundTask) -> Dict[str, Any]:
    return {
        "task_id": task.task_id,
        "task_type": task.task_type,
        "status": task.status,
        "params": task.params,
        "result": task.result,
        "error_message": task.error_message,
        "started_at": task.started_at.isoformat() if task.started_at else None,
        "completed_at": task.completed_at.isoformat() if task.completed_at else None,
    }


def get_task_tracker(session: Session) -> TaskTracker:
    """Get a TaskTracker instance."""
    return TaskTracker(session)


__all__ = [
    "TaskTracker",
    "TaskType",
    "get_task_tracker",
    "task_to_dict",
]
