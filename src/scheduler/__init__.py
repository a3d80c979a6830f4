"""Scheduler module for the time-triggered confirmation jobs."""
from __future__ import annotations

from .jobs import run_for_tenants, run_process_job, run_schedule_job, run_sweep_job
from .runner import build_scheduler, run_scheduler_blocking, start_scheduler, stop_scheduler

__all__ = [
    "build_scheduler",
    "run_for_tenants",
    "run_process_job",
    "run_schedule_job",
    "run_sweep_job",
    "run_scheduler_blocking",
    "start_scheduler",
    "stop_scheduler",
]
