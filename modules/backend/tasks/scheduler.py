"""
Report Scheduler.

Runs due report jobs on a fixed tick and manages callers' subscriptions.

Each tick:
    1. loads enabled jobs with next_run <= now
    2. runs them concurrently, at most `max_concurrent_jobs` at a time,
       each inside its own error boundary
    3. persists every outcome in one transaction:
         success → last_run, next_run, and a sent_reports row
         failure → a job_errors row and a recomputed next_run

A failing job never stops the others and is not retried before its next
occurrence. Job execution is delegated to a runner coroutine so that the
scheduler knows nothing about rendering or delivery.

Usage:
    scheduler = ReportScheduler.from_config(app_config.scheduler, get_session_factory(), runner)
    scheduler.start()
    ...
    await scheduler.stop()
"""

import asyncio
from collections.abc import Awaitable, Callable
from datetime import datetime
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from modules.backend.core.exceptions import SchedulingError
from modules.backend.core.logging import get_logger, log_with_source
from modules.backend.core.utils import utc_now
from modules.backend.models.scheduling import JobType, coerce_job_type, job_id_for
from modules.backend.repositories.jobs import JobRepository
from modules.backend.tasks.recurrence import next_occurrence
from modules.backend.tasks.reports import JobOutcome, JobSpec

logger = get_logger(__name__)

JobRunner = Callable[[JobSpec, datetime], Awaitable[dict[str, Any]]]


class ReportScheduler:
    """Tick loop and job management for recurring reports."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        runner: JobRunner,
        tick_interval_seconds: float = 60,
        max_concurrent_jobs: int = 10,
        default_schedule: str = "daily 09:00",
        default_timezone: str = "UTC",
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._session_factory = session_factory
        self._runner = runner
        self.tick_interval_seconds = tick_interval_seconds
        self.max_concurrent_jobs = max_concurrent_jobs
        self.default_schedule = default_schedule
        self.default_timezone = default_timezone
        self._clock = clock
        self._stop_event = asyncio.Event()
        self._task: asyncio.Task | None = None
        self._stats = {"ticks": 0, "jobs_succeeded": 0, "jobs_failed": 0}
        self._last_tick: datetime | None = None

    @classmethod
    def from_config(
        cls,
        scheduler: Any,
        session_factory: async_sessionmaker[AsyncSession],
        runner: JobRunner,
    ) -> "ReportScheduler":
        return cls(
            session_factory,
            runner,
            tick_interval_seconds=scheduler.tick_interval_seconds,
            max_concurrent_jobs=scheduler.max_concurrent_jobs,
            default_schedule=scheduler.default_schedule,
            default_timezone=scheduler.default_timezone,
        )

    # -------------------------------------------------------------------------
    # Tick loop
    # -------------------------------------------------------------------------

    async def tick(self, now: datetime | None = None) -> list[JobOutcome]:
        """Run every due job once and persist the outcomes."""
        now = now or self._clock()
        self._last_tick = now
        self._stats["ticks"] += 1

        async with self._session_factory() as session:
            jobs = [JobSpec.from_job(job) for job in await JobRepository(session).get_due(now)]
        if not jobs:
            return []

        log_with_source(logger, "tasks", "info", "Running due report jobs", count=len(jobs))
        semaphore = asyncio.Semaphore(self.max_concurrent_jobs)
        outcomes = await asyncio.gather(*(self._execute(job, now, semaphore) for job in jobs))

        async with self._session_factory() as session:
            repo = JobRepository(session)
            for outcome in outcomes:
                await self._persist(repo, outcome)
            await session.commit()

        return list(outcomes)

    async def _execute(self, job: JobSpec, now: datetime, semaphore: asyncio.Semaphore) -> JobOutcome:
        async with semaphore:
            try:
                report = await self._runner(job, now)
            except Exception as e:
                self._stats["jobs_failed"] += 1
                log_with_source(
                    logger, "tasks", "error", "Report job failed",
                    job_id=job.id,
                    caller_id=job.caller_id,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                return JobOutcome(job=job, ran_at=now, error=e)

        self._stats["jobs_succeeded"] += 1
        log_with_source(logger, "tasks", "info", "Report job completed", job_id=job.id, caller_id=job.caller_id)
        return JobOutcome(job=job, ran_at=now, report=report)

    async def _persist(self, repo: JobRepository, outcome: JobOutcome) -> None:
        job = await repo.get_by_id_or_none(outcome.job.id)
        if job is None:
            return

        try:
            next_run = next_occurrence(job.type, job.schedule, job.timezone, outcome.ran_at)
        except SchedulingError as e:
            # An unparseable schedule would make the job due on every tick
            job.enabled = False
            await repo.record_error(job.id, e)
            log_with_source(logger, "tasks", "error", "Job disabled, invalid schedule", job_id=job.id, error=str(e))
            return

        if outcome.succeeded:
            await repo.mark_run(job, outcome.ran_at, next_run)
            await repo.record_sent(
                caller_id=job.caller_id,
                chat_id=job.chat_id,
                report_type=job.type,
                report_data=outcome.report or {},
                sent_at=outcome.ran_at,
            )
        else:
            job.next_run = next_run
            await repo.record_error(job.id, outcome.error)

    async def run(self) -> None:
        """Tick every `tick_interval_seconds` until stop() is called."""
        log_with_source(logger, "tasks", "info", "Report scheduler started", interval=self.tick_interval_seconds)
        while not self._stop_event.is_set():
            try:
                await self.tick()
            except Exception as e:
                log_with_source(logger, "tasks", "error", "Scheduler tick failed", error=str(e))
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.tick_interval_seconds)
            except TimeoutError:
                pass
        log_with_source(logger, "tasks", "info", "Report scheduler stopped")

    def start(self) -> asyncio.Task:
        if self._task is None or self._task.done():
            self._stop_event.clear()
            self._task = asyncio.create_task(self.run(), name="report-scheduler")
        return self._task

    async def stop(self) -> None:
        """Signal the loop to exit and wait for an in-flight tick to finish."""
        self._stop_event.set()
        if self._task is not None:
            await self._task
            self._task = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def stats(self) -> dict[str, Any]:
        return {
            **self._stats,
            "running": self.is_running,
            "last_tick": self._last_tick.isoformat() if self._last_tick else None,
            "tick_interval_seconds": self.tick_interval_seconds,
        }

    # -------------------------------------------------------------------------
    # Job management
    # -------------------------------------------------------------------------

    async def schedule_report(
        self,
        caller_id: int,
        chat_id: int,
        job_type: JobType | str = JobType.DAILY,
        schedule: str | None = None,
        timezone: str | None = None,
        config: dict[str, Any] | None = None,
    ) -> JobSpec:
        """
        Create or re-enable a caller's report job.

        Raises:
            SchedulingError: If the schedule or timezone is invalid
        """
        job_type = coerce_job_type(job_type)
        schedule = schedule or self._default_schedule_for(job_type)
        timezone = timezone or self.default_timezone
        next_run = next_occurrence(job_type, schedule, timezone, self._clock())

        job_id = job_id_for(job_type, caller_id)
        async with self._session_factory() as session:
            repo = JobRepository(session)
            existing = await repo.get_by_id_or_none(job_id)
            merged = {**(existing.config if existing else {}), **(config or {})}
            job = await repo.upsert(
                job_id,
                caller_id=caller_id,
                chat_id=chat_id,
                type=job_type.value,
                schedule=schedule,
                timezone=timezone,
                next_run=next_run,
                enabled=True,
                config=merged,
            )
            spec = JobSpec.from_job(job)
            await session.commit()

        log_with_source(
            logger, "tasks", "info", "Report job scheduled",
            job_id=job_id, caller_id=caller_id, schedule=schedule, next_run=next_run.isoformat(),
        )
        return spec

    def _default_schedule_for(self, job_type: JobType) -> str:
        if job_type is JobType.DAILY:
            return self.default_schedule
        at = self.default_schedule.split()[-1]
        return f"weekly mon {at}" if job_type is JobType.WEEKLY else f"monthly 1 {at}"

    async def cancel_reports(self, caller_id: int) -> int:
        """Disable every report job of a caller; returns how many were enabled."""
        async with self._session_factory() as session:
            repo = JobRepository(session)
            jobs = await repo.list_for_caller(caller_id)
            was_enabled = sum(1 for job in jobs if job.enabled)
            await repo.set_enabled(caller_id, False)
            await session.commit()

        log_with_source(logger, "tasks", "info", "Report jobs disabled", caller_id=caller_id, count=was_enabled)
        return was_enabled

    async def list_jobs(self, caller_id: int) -> list[JobSpec]:
        async with self._session_factory() as session:
            jobs = await JobRepository(session).list_for_caller(caller_id)
            return [JobSpec.from_job(job) for job in jobs]

    async def is_subscribed(self, caller_id: int) -> bool:
        async with self._session_factory() as session:
            jobs = await JobRepository(session).list_for_caller(caller_id)
            return any(job.enabled for job in jobs)

    async def preferences_for(self, caller_id: int) -> dict[str, Any] | None:
        """Stored report preferences of a caller, from the daily job's config."""
        async with self._session_factory() as session:
            job = await JobRepository(session).get_by_id_or_none(job_id_for(JobType.DAILY, caller_id))
            if job is None:
                return None
            return (job.config or {}).get("preferences")

    async def update_preferences(self, caller_id: int, preferences: dict[str, Any]) -> bool:
        """Store preferences on the caller's daily job; False if there is none."""
        async with self._session_factory() as session:
            job = await JobRepository(session).get_by_id_or_none(job_id_for(JobType.DAILY, caller_id))
            if job is None:
                return False
            # Reassign so the JSON column is flagged dirty
            job.config = {**(job.config or {}), "preferences": preferences}
            await session.commit()
        return True

    async def enabled_jobs(self) -> int:
        async with self._session_factory() as session:
            return await JobRepository(session).count_enabled()
