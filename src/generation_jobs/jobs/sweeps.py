"""
Janitor sweeps.

Two maintenance passes keep the job table healthy:

- ``fail_stuck_jobs`` fails jobs that have sat in an in-progress status for
  longer than the staleness threshold (the workflow driving them is gone)
- ``cleanup_completed_jobs`` deletes terminal jobs past the retention window

Both walk ``store.iter_ids()`` lazily and treat each record independently:
one bad record is logged and counted, and the rest of the batch proceeds.
SweepScheduler runs them on fixed intervals inside an asyncio loop.
"""

from __future__ import annotations

import asyncio
import contextlib
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from ..config import JobsConfig
from ..errors import ErrorCode, JobNotFoundError, timed_out_message
from ..events import EventBus, JobEvent, JobEventType
from ..logging import StructuredLogger, get_logger, timed
from .kinds import KindRegistry
from .store import JobFilter, JobStore
from .types import TERMINAL_STATUSES, JobRecord, JobStatus

STUCK_SWEEP = "stuck"
CLEANUP_SWEEP = "cleanup"


@dataclass
class SweepReport:
    """Outcome of one sweep pass."""
    sweep: str
    scanned: int = 0
    affected: int = 0
    errors: int = 0
    job_ids: list[str] = field(default_factory=list)
    started_at: float = field(default_factory=time.time)
    duration_ms: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "sweep": self.sweep,
            "scanned": self.scanned,
            "affected": self.affected,
            "errors": self.errors,
            "job_ids": list(self.job_ids),
            "started_at": self.started_at,
            "duration_ms": round(self.duration_ms, 2),
        }


class Janitor:
    """Runs the stuck-job and retention sweeps against a store."""

    def __init__(
        self,
        store: JobStore,
        *,
        config: JobsConfig | None = None,
        registry: KindRegistry | None = None,
        event_bus: EventBus | None = None,
        logger: StructuredLogger | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self._store = store
        self._config = config or JobsConfig()
        self._registry = registry or KindRegistry(scope_overrides=self._config.scope_overrides)
        self._event_bus = event_bus
        self._logger = logger or get_logger()
        self._clock = clock

    @property
    def config(self) -> JobsConfig:
        return self._config

    def _in_progress_statuses(self) -> set[JobStatus]:
        statuses: set[JobStatus] = set()
        for kind in self._registry.kinds():
            statuses |= self._registry.get(kind).state_machine.in_progress
        return statuses

    async def fail_stuck_jobs(
        self,
        now: float | None = None,
        threshold_seconds: float | None = None,
    ) -> SweepReport:
        """Fail jobs stuck in an in-progress status past the threshold.

        Staleness is re-checked inside the atomic mutation, so a job that
        finished or moved on between scan and write is left alone. Running
        the sweep twice is a no-op for jobs already reaped.
        """
        now = now if now is not None else self._clock()
        threshold = threshold_seconds if threshold_seconds is not None else self._config.stuck_threshold_seconds
        cutoff = now - threshold
        message = timed_out_message(threshold)
        report = SweepReport(sweep=STUCK_SWEEP, started_at=now)

        def expire(job: JobRecord) -> JobRecord | None:
            machine = self._registry.get(job.kind).state_machine
            if job.is_terminal or job.status not in machine.in_progress or job.created_at >= cutoff:
                return None
            return job.with_status(machine.failure, now).with_error(message, ErrorCode.TIMED_OUT.value, now)

        candidates = JobFilter(status=self._in_progress_statuses(), created_before=cutoff, limit=None)
        with timed() as timer:
            async for job_id in self._store.iter_ids(candidates, batch_size=self._config.sweep_batch_size):
                report.scanned += 1
                try:
                    before: list[JobRecord] = []

                    def apply(job: JobRecord) -> JobRecord | None:
                        before[:] = [job]
                        return expire(job)

                    after = await self._store.mutate(job_id, apply)
                except JobNotFoundError:
                    continue
                except Exception as e:
                    report.errors += 1
                    self._logger.log_error(e, "Failed to expire stuck job", job_id=job_id, sweep=STUCK_SWEEP)
                    continue

                if before and not before[0].is_terminal and after.is_terminal:
                    report.affected += 1
                    report.job_ids.append(job_id)
                    self._logger.log_transition(
                        job_id,
                        before[0].status.value,
                        after.status.value,
                        reason="timed_out",
                        kind=after.kind.value,
                    )
                    await self._emit(after, JobEventType.JOB_TIMED_OUT, previous_status=before[0].status.value)

        report.duration_ms = timer.elapsed_ms
        self._logger.log_sweep(STUCK_SWEEP, report.scanned, report.affected, report.errors, report.duration_ms)
        return report

    async def cleanup_completed_jobs(
        self,
        now: float | None = None,
        retention_seconds: float | None = None,
    ) -> SweepReport:
        """Delete terminal jobs created before the retention window."""
        now = now if now is not None else self._clock()
        retention = retention_seconds if retention_seconds is not None else self._config.retention_seconds
        cutoff = now - retention
        report = SweepReport(sweep=CLEANUP_SWEEP, started_at=now)

        candidates = JobFilter(status=TERMINAL_STATUSES, created_before=cutoff, limit=None)
        with timed() as timer:
            async for job_id in self._store.iter_ids(candidates, batch_size=self._config.sweep_batch_size):
                report.scanned += 1
                try:
                    job = await self._store.get(job_id)
                    if job is None or not job.is_terminal or job.created_at >= cutoff:
                        continue
                    deleted = await self._store.delete(job_id)
                except Exception as e:
                    report.errors += 1
                    self._logger.log_error(e, "Failed to delete expired job", job_id=job_id, sweep=CLEANUP_SWEEP)
                    continue

                if deleted:
                    report.affected += 1
                    report.job_ids.append(job_id)
                    await self._emit(job, JobEventType.JOB_DELETED)

        report.duration_ms = timer.elapsed_ms
        self._logger.log_sweep(CLEANUP_SWEEP, report.scanned, report.affected, report.errors, report.duration_ms)
        return report

    async def _emit(self, job: JobRecord, event_type: JobEventType, **data: Any) -> None:
        if not self._event_bus:
            return
        await self._event_bus.publish(JobEvent.for_job(job, event_type, data=data))


class SweepScheduler:
    """Runs janitor sweeps on fixed intervals in the background.

    Example:
        ```python
        scheduler = SweepScheduler(janitor)
        scheduler.start()
        ...
        await scheduler.stop()
        ```
    """

    def __init__(
        self,
        janitor: Janitor,
        *,
        stuck_interval_seconds: float | None = None,
        cleanup_interval_seconds: float | None = None,
        logger: StructuredLogger | None = None,
    ):
        config = janitor.config
        self._janitor = janitor
        self._intervals: dict[str, float] = {
            STUCK_SWEEP: stuck_interval_seconds or config.stuck_sweep_interval_seconds,
            CLEANUP_SWEEP: cleanup_interval_seconds or config.cleanup_sweep_interval_seconds,
        }
        self._logger = logger or get_logger()
        self._tasks: list[asyncio.Task[None]] = []
        self._stopping = asyncio.Event()
        self.reports: dict[str, SweepReport] = {}

    @property
    def running(self) -> bool:
        return any(not task.done() for task in self._tasks)

    def _sweep(self, name: str) -> Callable[[], Awaitable[SweepReport]]:
        if name == STUCK_SWEEP:
            return self._janitor.fail_stuck_jobs
        if name == CLEANUP_SWEEP:
            return self._janitor.cleanup_completed_jobs
        raise ValueError(f"Unknown sweep: {name}")

    async def run_once(self, sweep: str = "all") -> dict[str, SweepReport]:
        """Run one pass of a sweep (or both) immediately."""
        names = [STUCK_SWEEP, CLEANUP_SWEEP] if sweep == "all" else [sweep]
        reports: dict[str, SweepReport] = {}
        for name in names:
            reports[name] = await self._sweep(name)()
            self.reports[name] = reports[name]
        return reports

    def start(self) -> None:
        """Start one background loop per sweep."""
        if self.running:
            return
        self._stopping.clear()
        self._tasks = [
            asyncio.create_task(self._loop(name, interval), name=f"sweep-{name}")
            for name, interval in self._intervals.items()
        ]
        self._logger.info("Sweep scheduler started", intervals=self._intervals)

    async def stop(self) -> None:
        """Stop the background loops and wait for them to exit."""
        self._stopping.set()
        for task in self._tasks:
            task.cancel()
        for task in self._tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._tasks = []
        self._logger.info("Sweep scheduler stopped")

    async def wait(self) -> None:
        """Block until the scheduler is stopped."""
        await self._stopping.wait()

    async def _loop(self, name: str, interval: float) -> None:
        sweep = self._sweep(name)
        while not self._stopping.is_set():
            try:
                self.reports[name] = await sweep()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self._logger.log_error(e, f"Sweep '{name}' failed", sweep=name)
            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=interval)
            except asyncio.TimeoutError:
                continue


__all__ = [
    "SweepReport",
    "Janitor",
    "SweepScheduler",
    "STUCK_SWEEP",
    "CLEANUP_SWEEP",
]
