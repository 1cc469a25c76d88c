"""
Job runner for the periodic signal jobs.

Uses APScheduler's AsyncIOScheduler to fire each job on its own interval
trigger (coalesced, one instance at a time). Every scheduled firing first
asks the SchedulePolicy whether the job may run now (NSE trading days,
market windows in IST); manual triggers through run_now bypass the policy.

Jobs are plain async callables returning a JSON-friendly summary dict, so
the runner knows nothing about signals beyond the Job names.
"""

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from signal_engine.domain.signals.ports import Clock, utc_now
from signal_engine.domain.signals.schedule_policy import Job, SchedulePolicy

logger = logging.getLogger(__name__)

JobFn = Callable[[], Awaitable[dict]]


class TaskStatus(Enum):
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass
class TaskResult:
    """Result of a job execution."""

    task_name: str
    status: TaskStatus
    started_at: str
    finished_at: Optional[str] = None
    duration_seconds: float = 0.0
    details: dict = field(default_factory=dict)
    error: Optional[str] = None


class SignalJobRunner:
    """Schedules and runs the signal jobs.

    Args:
        jobs: Async callable per job.
        policy: Decides whether a scheduled firing may run.
        intervals: Interval in seconds per job; jobs without one are manual only.
        clock: Injectable time source.
        timezone: Scheduler timezone.

    Usage:
        runner = SignalJobRunner(jobs, policy, intervals)
        runner.start()               # inside a running event loop
        await runner.run_now("notify")
        runner.stop()
    """

    def __init__(
        self,
        jobs: dict[Job, JobFn],
        policy: SchedulePolicy,
        intervals: Optional[dict[Job, int]] = None,
        clock: Clock = utc_now,
        timezone: str = "Asia/Kolkata",
    ) -> None:
        self._jobs = dict(jobs)
        self._policy = policy
        self._intervals = dict(intervals or {})
        self._clock = clock
        self._timezone = timezone
        self._scheduler: Optional[AsyncIOScheduler] = None
        self._task_history: list[TaskResult] = []
        self._max_history = 200

    @property
    def is_running(self) -> bool:
        return self._scheduler is not None

    @property
    def task_history(self) -> list[TaskResult]:
        return list(self._task_history)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Start the scheduler with one interval trigger per configured job."""
        if self._scheduler is not None:
            logger.warning("Job runner already running.")
            return

        self._scheduler = AsyncIOScheduler(
            timezone=self._timezone,
            job_defaults={"coalesce": True, "max_instances": 1},
        )
        for job, seconds in self._intervals.items():
            if job not in self._jobs or seconds <= 0:
                continue
            self._scheduler.add_job(
                self.run_scheduled,
                IntervalTrigger(seconds=seconds),
                args=[job],
                id=job.value,
                name=f"signals:{job.value}",
            )
        self._scheduler.start()
        logger.info(
            "Job runner started with %d jobs.", len(self._scheduler.get_jobs())
        )

    def stop(self) -> None:
        """Stop the scheduler without waiting for running jobs."""
        if self._scheduler is not None:
            self._scheduler.shutdown(wait=False)
            self._scheduler = None
        logger.info("Job runner stopped.")

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def run_scheduled(self, job: Job) -> TaskResult:
        """Run a job if the schedule policy allows it right now."""
        now = self._clock()
        if not self._policy.should_run(job, now):
            logger.debug("Job %s outside its window, skipped", job.value)
            return TaskResult(
                task_name=job.value,
                status=TaskStatus.SKIPPED,
                started_at=now.isoformat(),
                finished_at=now.isoformat(),
            )
        return await self._run(job)

    async def run_now(self, task_name: str) -> TaskResult:
        """Run a named job immediately, ignoring the schedule policy.

        Raises:
            KeyError: If no job is registered under that name.
        """
        try:
            job = Job(task_name)
        except ValueError:
            raise KeyError(task_name) from None
        if job not in self._jobs:
            raise KeyError(task_name)
        return await self._run(job)

    async def _run(self, job: Job) -> TaskResult:
        start = time.monotonic()
        started_at = self._clock().isoformat()
        try:
            details = await self._jobs[job]()
            result = TaskResult(
                task_name=job.value,
                status=TaskStatus.COMPLETED,
                started_at=started_at,
                finished_at=self._clock().isoformat(),
                duration_seconds=round(time.monotonic() - start, 2),
                details=details or {},
            )
        except Exception as exc:
            result = TaskResult(
                task_name=job.value,
                status=TaskStatus.FAILED,
                started_at=started_at,
                finished_at=self._clock().isoformat(),
                duration_seconds=round(time.monotonic() - start, 2),
                error=str(exc),
            )
            logger.exception("Job %s failed.", job.value)

        self._record_result(result)
        return result

    def _record_result(self, result: TaskResult) -> None:
        self._task_history.append(result)
        if len(self._task_history) > self._max_history:
            self._task_history = self._task_history[-self._max_history:]

    # ------------------------------------------------------------------
    # Status & introspection
    # ------------------------------------------------------------------

    def get_status(self) -> dict[str, Any]:
        jobs = []
        if self._scheduler is not None:
            jobs = [
                {
                    "id": j.id,
                    "name": j.name,
                    "next_run": str(j.next_run_time),
                    "trigger": str(j.trigger),
                }
                for j in self._scheduler.get_jobs()
            ]
        return {
            "running": self.is_running,
            "jobs": jobs,
            "recent_tasks": [
                {
                    "task": r.task_name,
                    "status": r.status.value,
                    "duration": r.duration_seconds,
                    "started_at": r.started_at,
                }
                for r in self._task_history[-10:]
            ],
        }
