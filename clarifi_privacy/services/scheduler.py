"""
Privacy scheduler service for periodic retention and cleanup jobs.
"""
import asyncio
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional

import structlog

from ..utils.formatting import utc_now

logger = structlog.get_logger()


@dataclass
class ScheduledJob:
    """A coroutine run every `interval_seconds` while the scheduler is running."""
    name: str
    interval_seconds: float
    func: Callable[[], Awaitable[Any]]
    run_on_start: bool = True
    last_run_at: Optional[datetime] = None
    last_error: Optional[str] = None
    run_count: int = 0
    failure_count: int = 0


class PrivacyScheduler:
    """Runs registered jobs on fixed intervals until stopped."""

    def __init__(self):
        self.jobs: Dict[str, ScheduledJob] = {}

        # One loop task per job
        self._tasks: Dict[str, asyncio.Task] = {}

    @property
    def is_running(self) -> bool:
        return any(not task.done() for task in self._tasks.values())

    def add_job(
        self,
        name: str,
        func: Callable[[], Awaitable[Any]],
        interval_seconds: float,
        run_on_start: bool = True
    ) -> ScheduledJob:
        if name in self.jobs:
            raise ValueError(f"Job already registered: {name}")
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")

        job = ScheduledJob(name=name, interval_seconds=interval_seconds, func=func, run_on_start=run_on_start)
        self.jobs[name] = job

        if self.is_running:
            self._tasks[name] = asyncio.create_task(self._run_loop(job), name=f"privacy-job-{name}")
        return job

    async def start(self) -> None:
        """Start a loop task for every registered job. Calling twice is a no-op."""
        if self.is_running:
            logger.warning("Privacy scheduler already running")
            return

        for job in self.jobs.values():
            self._tasks[job.name] = asyncio.create_task(self._run_loop(job), name=f"privacy-job-{job.name}")

        logger.info("Privacy scheduler started", jobs=list(self.jobs))

    async def stop(self) -> None:
        """Cancel all job loops and wait for them to finish."""
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()

        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()

        logger.info("Privacy scheduler stopped")

    async def _run_loop(self, job: ScheduledJob) -> None:
        if not job.run_on_start:
            await asyncio.sleep(job.interval_seconds)

        while True:
            await self.run_job(job.name)
            await asyncio.sleep(job.interval_seconds)

    async def run_job(self, name: str) -> Any:
        """Run a job once. Failures are logged and recorded, never raised."""
        job = self.jobs.get(name)
        if job is None:
            raise KeyError(name)

        job.last_run_at = utc_now()
        job.run_count += 1

        try:
            result = await job.func()
            job.last_error = None
            logger.debug("Scheduled job completed", job=name, run_count=job.run_count)
            return result

        except asyncio.CancelledError:
            raise
        except Exception as e:
            job.last_error = str(e)
            job.failure_count += 1
            logger.error("Scheduled job failed", job=name, error=str(e))
            return None

    def get_status(self) -> Dict[str, Any]:
        """Get status of the scheduler and its jobs."""
        jobs: List[Dict[str, Any]] = []
        for job in self.jobs.values():
            task = self._tasks.get(job.name)
            jobs.append({
                "name": job.name,
                "interval_seconds": job.interval_seconds,
                "active": task is not None and not task.done(),
                "run_count": job.run_count,
                "failure_count": job.failure_count,
                "last_run_at": job.last_run_at.isoformat() if job.last_run_at else None,
                "last_error": job.last_error,
            })

        return {
            "scheduler_status": "running" if self.is_running else "stopped",
            "active_jobs": len([task for task in self._tasks.values() if not task.done()]),
            "jobs": jobs,
            "last_check": utc_now().isoformat(),
        }
