"""
Periodic Job Scheduler
======================

Wrapper around APScheduler's AsyncIOScheduler for the recurring ticks
(sync poll, sync health check, SLA evaluation).

Each job is non-overlapping (``max_instances=1``, missed runs coalesced);
different jobs run independently of each other. Exceptions escaping a job
are logged here so a failing tick never kills the schedule.
"""

from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from src.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)

JobFunc = Callable[[], Awaitable[Any]]


@dataclass
class JobSpec:
    job_id: str
    name: str
    func: JobFunc
    interval_seconds: int


class PeriodicJobScheduler:
    """
    Manages the lifecycle of the scheduler and its interval jobs.

    Jobs are registered before ``start()``.
    """

    def __init__(self, misfire_grace_time: int = 60):
        self.misfire_grace_time = misfire_grace_time
        self._jobs: Dict[str, JobSpec] = {}
        self._scheduler: Optional[AsyncIOScheduler] = None
        self._running = False

    def add_interval_job(self, job_id: str, func: JobFunc, interval_seconds: int, name: Optional[str] = None) -> None:
        """Register a recurring job."""
        if interval_seconds < 1:
            raise ValueError("interval_seconds must be at least 1")
        self._jobs[job_id] = JobSpec(job_id, name or job_id, func, interval_seconds)

    def _wrap(self, job_spec: JobSpec) -> JobFunc:
        async def run() -> None:
            try:
                await job_spec.func()
            except Exception as e:
                logger.exception(
                    "Scheduled job failed",
                    extra={"job_id": job_spec.job_id, "error": str(e)}
                )
        return run

    async def start(self) -> None:
        """Start the scheduler with all registered jobs."""
        if self._running:
            logger.warning("Scheduler already running")
            return

        self._scheduler = AsyncIOScheduler()
        for job_spec in self._jobs.values():
            self._scheduler.add_job(
                self._wrap(job_spec),
                "interval",
                seconds=job_spec.interval_seconds,
                id=job_spec.job_id,
                name=job_spec.name,
                misfire_grace_time=self.misfire_grace_time,
                max_instances=1,
                coalesce=True,
                replace_existing=True
            )

        self._scheduler.start()
        self._running = True

        logger.info(
            "Scheduler started",
            extra={"jobs": {job_spec.job_id: job_spec.interval_seconds for job_spec in self._jobs.values()}}
        )

    async def stop(self) -> None:
        """Stop the scheduler; in-flight jobs are not awaited."""
        if not self._running:
            return

        if self._scheduler:
            self._scheduler.shutdown(wait=False)

        self._running = False
        logger.info("Scheduler stopped")

    @property
    def is_running(self) -> bool:
        """Check if scheduler is running."""
        return self._running

    def describe(self) -> Dict[str, Any]:
        """Job ids, intervals and next run times for the health endpoint."""
        jobs = {}
        for job_spec in self._jobs.values():
            next_run = None
            if self._scheduler is not None and self._running:
                job = self._scheduler.get_job(job_spec.job_id)
                if job is not None and job.next_run_time is not None:
                    next_run = job.next_run_time.isoformat()
            jobs[job_spec.job_id] = {"interval_seconds": job_spec.interval_seconds, "next_run_time": next_run}
        return {"running": self._running, "jobs": jobs}
