"""IntervalScheduler: fires each registered job type on its own interval.

Every tick launches ``CycleCoordinator.run_if_idle`` as an independent
task, so a job that runs longer than its interval does not delay the
clock: the next tick simply finds the lock held and is skipped.

Dashboard integration:
    task_status() returns per-job counters and next fire times.
"""
from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

from copytrader.batch.coordinator import CycleCoordinator, CycleReport
from copytrader.core.types import JobType, utcnow

logger = logging.getLogger(__name__)


@dataclass
class ScheduledJob:
    """Metadata for a single interval job."""

    job_type: JobType
    interval: float  # seconds
    callback: Callable[[], Awaitable[Any]]
    run_immediately: bool = True
    # Dynamic state
    ticks: int = 0
    next_fire_at: datetime | None = None
    last_report: CycleReport | None = None


class IntervalScheduler:
    """asyncio scheduler driving the engine's periodic cycles.

    Usage::

        scheduler = IntervalScheduler(coordinator)
        scheduler.register(JobType.INGEST, 60, engine.ingest_and_open)
        scheduler.register(JobType.MONITOR, 120, engine.monitor_and_close)
        await scheduler.run_forever()

    ``stop()`` may be called from another coroutine or a signal handler;
    in-flight runs are allowed to finish.
    """

    def __init__(self, coordinator: CycleCoordinator) -> None:
        self._coordinator = coordinator
        self._jobs: dict[JobType, ScheduledJob] = {}
        self._stop_event = asyncio.Event()
        self._in_flight: set[asyncio.Task] = set()
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    def register(
        self,
        job_type: JobType,
        interval: float,
        callback: Callable[[], Awaitable[Any]],
        run_immediately: bool = True,
    ) -> None:
        """Register (or replace) the callback for a job type."""
        if interval <= 0:
            raise ValueError(f"Interval for {job_type.value} must be positive")
        self._jobs[job_type] = ScheduledJob(job_type, interval, callback, run_immediately)
        logger.debug("IntervalScheduler: registered %s every %.0fs", job_type.value, interval)

    async def run_forever(self) -> None:
        """Run one ticker per job until stop() is called."""
        self._running = True
        self._stop_event.clear()
        logger.info("IntervalScheduler: starting with %d jobs", len(self._jobs))

        tickers = [asyncio.create_task(self._ticker(job)) for job in self._jobs.values()]
        try:
            await self._stop_event.wait()
        finally:
            for ticker in tickers:
                ticker.cancel()
            await asyncio.gather(*tickers, return_exceptions=True)
            if self._in_flight:
                await asyncio.gather(*self._in_flight, return_exceptions=True)
            self._running = False
            logger.info("IntervalScheduler: stopped")

    def stop(self) -> None:
        logger.info("IntervalScheduler: stop requested")
        self._stop_event.set()

    async def _ticker(self, job: ScheduledJob) -> None:
        delay = 0.0 if job.run_immediately else job.interval
        while not self._stop_event.is_set():
            job.next_fire_at = utcnow() + timedelta(seconds=delay)
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=delay)
                break
            except asyncio.TimeoutError:
                pass
            self.fire(job.job_type)
            delay = job.interval

    def fire(self, job_type: JobType) -> asyncio.Task:
        """Launch one run of *job_type* as an independent task."""
        job = self._jobs[job_type]
        job.ticks += 1
        task = asyncio.create_task(self._run(job))
        self._in_flight.add(task)
        task.add_done_callback(self._in_flight.discard)
        return task

    async def _run(self, job: ScheduledJob) -> CycleReport:
        report = await self._coordinator.run_if_idle(job.job_type, job.callback)
        job.last_report = report
        return report

    def task_status(self) -> list[dict[str, Any]]:
        """Return current status of all registered jobs for dashboard display."""
        return [
            {
                "job_type": j.job_type.value,
                "interval_seconds": j.interval,
                "ticks": j.ticks,
                "next_fire_at": j.next_fire_at.isoformat() if j.next_fire_at else None,
                "last_outcome": j.last_report.outcome.value if j.last_report else None,
            }
            for j in self._jobs.values()
        ]
