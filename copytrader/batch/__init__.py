"""Periodic cycle execution for the paper engine.

This package provides:
- CycleCoordinator: per-job-type locks, run_if_idle skip-not-queue semantics
- IntervalScheduler: fires each job type on its own interval
"""
from copytrader.batch.coordinator import CycleCoordinator, CycleLock, CycleReport
from copytrader.batch.scheduler import IntervalScheduler, ScheduledJob

__all__ = [
    "CycleCoordinator",
    "CycleLock",
    "CycleReport",
    "IntervalScheduler",
    "ScheduledJob",
]
