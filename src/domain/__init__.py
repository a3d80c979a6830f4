"""Domain layer for the property confirmation workflow.

Scheduling, dispatch, owner submissions and metrics live here; the API,
CLI and scheduler jobs call into these services and never touch the
confirmation tables directly.
"""
from __future__ import annotations

from .confirmations import ConfirmationStore, get_confirmation_store
from .dispatch import BatchRunner, DispatchSummary, get_batch_runner
from .import_batches import ImportBatchReader, get_import_batch_reader
from .metrics import ConfirmationMetrics, MetricsAggregator, get_metrics_aggregator
from .scheduling import MonthlyConfirmationScheduler, ScheduleSummary, get_monthly_scheduler
from .submission import (
    OperatorConfirmationResult,
    SubmissionProcessor,
    SubmissionResult,
    get_submission_processor,
)

__all__ = [
    # Record store
    "ConfirmationStore",
    "get_confirmation_store",
    # Scheduling
    "MonthlyConfirmationScheduler",
    "ScheduleSummary",
    "get_monthly_scheduler",
    # Dispatch
    "BatchRunner",
    "DispatchSummary",
    "get_batch_runner",
    # Submission
    "SubmissionProcessor",
    "SubmissionResult",
    "OperatorConfirmationResult",
    "get_submission_processor",
    # Metrics
    "MetricsAggregator",
    "ConfirmationMetrics",
    "get_metrics_aggregator",
    # Import batches
    "ImportBatchReader",
    "get_import_batch_reader",
]
