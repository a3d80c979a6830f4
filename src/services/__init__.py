"""Supporting services: tokens, locking, task tracking and the activity log."""
from __future__ import annotations

from .activity_log import ActivityEventType, ActivityLogService, get_activity_log_service
from .locking import SchedulerLockService, get_scheduler_lock_service, schedule_lock_name
from .task_tracker import TaskTracker, TaskType, get_task_tracker, task_to_dict
from .tokens import (
    ConfirmationTokenService,
    IssuedToken,
    PropertySnapshot,
    TokenValidation,
    get_token_service,
)

__all__ = [
    # Activity log
    "ActivityEventType",
    "ActivityLogService",
    "get_activity_log_service",
    # Locking
    "SchedulerLockService",
    "get_scheduler_lock_service",
    "schedule_lock_name",
    # Task tracking
    "TaskTracker",
    "TaskType",
    "get_task_tracker",
    "task_to_dict",
    # Tokens
    "ConfirmationTokenService",
    "IssuedToken",
    "PropertySnapshot",
    "TokenValidation",
    "get_token_service",
]
