"""CycleCoordinator: per-job-type mutual exclusion for periodic jobs.

Each job type owns a ``CycleLock``.  ``run_if_idle`` takes the lock with a
non-blocking test-and-set; if another run of the same job type is still in
flight the invocation is skipped (never queued) and the skip is counted,
logged and published.  The lock is released in ``finally`` however the job
ends.
"""
from __future__ import annotations

import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from copytrader.core.event_bus import EVENT_CYCLE_SKIPPED, EventBus
from copytrader.core.types import CycleOutcome, JobType, utcnow

logger = logging.getLogger(__name__)


class CycleLock:
    """In-progress flag for one job type.

    Acquire and release are synchronous, so on a single event loop the
    test-and-set cannot interleave with another coroutine.
    """

    def __init__(self, job_type: JobType) -> None:
        self.job_type = job_type
        self._held = False
        self.runs = 0
        self.skips = 0
        self.failures = 0

    @property
    def held(self) -> bool:
        return self._held

    def try_acquire(self) -> bool:
        if self._held:
            self.skips += 1
            return False
        self._held = True
        return True

    def release(self) -> None:
        self._held = False


@dataclass(frozen=True)
class CycleReport:
    """Outcome of one ``run_if_idle`` invocation."""

    job_type: JobType
    outcome: CycleOutcome
    started_at: datetime
    duration: float = 0.0
    result: Any = None
    error: str | None = None

    @property
    def ran(self) -> bool:
        return self.outcome != CycleOutcome.SKIPPED


class CycleCoordinator:
    """Runs jobs under their job type's lock.

    Args:
        bus: Receives ``cycle_skipped`` events.
        clock: Returns the current UTC time.
    """

    def __init__(self, bus: EventBus | None = None, clock: Callable[[], datetime] = utcnow) -> None:
        self._bus = bus
        self._clock = clock
        self._locks: dict[JobType, CycleLock] = {job: CycleLock(job) for job in JobType}
        self._last: dict[JobType, CycleReport] = {}

    def lock(self, job_type: JobType) -> CycleLock:
        return self._locks[job_type]

    def skipped_count(self, job_type: JobType | None = None) -> int:
        if job_type is not None:
            return self._locks[job_type].skips
        return sum(lock.skips for lock in self._locks.values())

    def skipped_counts(self) -> dict[str, int]:
        return {job.value: lock.skips for job, lock in self._locks.items()}

    def last_report(self, job_type: JobType) -> CycleReport | None:
        return self._last.get(job_type)

    async def run_if_idle(
        self,
        job_type: JobType,
        job: Callable[[], Awaitable[Any]],
    ) -> CycleReport:
        """Run *job* unless a run of the same job type is in flight.

        Job exceptions are logged once with traceback and reported as
        ``CycleOutcome.FAILED``; they do not propagate.
        """
        lock = self._locks[job_type]
        started_at = self._clock()

        if not lock.try_acquire():
            logger.warning(
                "Skipping %s cycle: previous run still in progress (%d skipped so far)",
                job_type.value, lock.skips,
            )
            report = CycleReport(job_type, CycleOutcome.SKIPPED, started_at)
            if self._bus is not None:
                await self._bus.emit(EVENT_CYCLE_SKIPPED, report)
            return report

        t0 = time.monotonic()
        try:
            result = await job()
        except Exception as exc:
            lock.failures += 1
            logger.exception("%s cycle failed", job_type.value)
            report = CycleReport(
                job_type, CycleOutcome.FAILED, started_at,
                duration=time.monotonic() - t0, error=f"{type(exc).__name__}: {exc}",
            )
        else:
            lock.runs += 1
            report = CycleReport(
                job_type, CycleOutcome.RAN, started_at,
                duration=time.monotonic() - t0, result=result,
            )
            logger.debug("%s cycle completed in %.2fs", job_type.value, report.duration)
        finally:
            lock.release()

        self._last[job_type] = report
        return report

    def status(self) -> list[dict[str, Any]]:
        """Per-job lock state and counters for dashboard display."""
        rows = []
        for job, lock in self._locks.items():
            last = self._last.get(job)
            rows.append({
                "job_type": job.value,
                "running": lock.held,
                "runs": lock.runs,
                "skips": lock.skips,
                "failures": lock.failures,
                "last_outcome": last.outcome.value if last else None,
                "last_started_at": last.started_at.isoformat() if last else None,
            })
        return rows
