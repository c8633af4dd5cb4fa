"""
Job Repository.

Data access for scheduled report jobs, their error log, and the log of
sent reports. Callers own the session and its transaction.
"""

import traceback
from datetime import datetime
from typing import Any

from sqlalchemy import select

from modules.backend.core.utils import utc_now
from modules.backend.models.scheduling import JobError, ScheduledJob, SentReport
from modules.backend.repositories.base import BaseRepository


class JobRepository(BaseRepository[ScheduledJob]):
    """Repository for ScheduledJob plus its JobError and SentReport rows."""

    model = ScheduledJob

    async def get_due(self, now: datetime, limit: int | None = None) -> list[ScheduledJob]:
        """Enabled jobs whose next run is at or before `now`, oldest first."""
        query = (
            select(ScheduledJob)
            .where(ScheduledJob.enabled == True)  # noqa: E712
            .where(ScheduledJob.next_run <= now)
            .order_by(ScheduledJob.next_run)
        )
        if limit is not None:
            query = query.limit(limit)
        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def list_for_caller(self, caller_id: int) -> list[ScheduledJob]:
        result = await self.session.execute(
            select(ScheduledJob)
            .where(ScheduledJob.caller_id == caller_id)
            .order_by(ScheduledJob.id)
        )
        return list(result.scalars().all())

    async def count_enabled(self) -> int:
        result = await self.session.execute(
            select(ScheduledJob.id).where(ScheduledJob.enabled == True)  # noqa: E712
        )
        return len(result.scalars().all())

    async def upsert(self, job_id: str, **fields: Any) -> ScheduledJob:
        """Create the job, or overwrite the given fields of an existing one."""
        job = await self.get_by_id_or_none(job_id)
        if job is None:
            return await self.create(id=job_id, **fields)

        for key, value in fields.items():
            setattr(job, key, value)
        await self.session.flush()
        return job

    async def set_enabled(self, caller_id: int, enabled: bool) -> list[ScheduledJob]:
        """Enable or disable every job of a caller. Rows are never deleted."""
        jobs = await self.list_for_caller(caller_id)
        for job in jobs:
            job.enabled = enabled
        await self.session.flush()
        return jobs

    async def mark_run(self, job: ScheduledJob, ran_at: datetime, next_run: datetime) -> None:
        job.last_run = ran_at
        job.next_run = next_run
        await self.session.flush()

    async def record_error(self, job_id: str, error: BaseException) -> JobError:
        stack = "".join(traceback.format_exception(type(error), error, error.__traceback__))
        entry = JobError(
            job_id=job_id,
            error_message=str(error) or type(error).__name__,
            error_stack=stack,
            timestamp=utc_now(),
        )
        self.session.add(entry)
        await self.session.flush()
        return entry

    async def record_sent(
        self,
        caller_id: int,
        chat_id: int,
        report_type: str,
        report_data: dict[str, Any],
        sent_at: datetime | None = None,
    ) -> SentReport:
        entry = SentReport(
            caller_id=caller_id,
            chat_id=chat_id,
            report_type=report_type,
            report_data=report_data,
            sent_at=sent_at or utc_now(),
        )
        self.session.add(entry)
        await self.session.flush()
        return entry

    async def errors_for(self, job_id: str, limit: int = 20) -> list[JobError]:
        result = await self.session.execute(
            select(JobError)
            .where(JobError.job_id == job_id)
            .order_by(JobError.timestamp.desc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def sent_for(self, caller_id: int, limit: int = 20) -> list[SentReport]:
        result = await self.session.execute(
            select(SentReport)
            .where(SentReport.caller_id == caller_id)
            .order_by(SentReport.sent_at.desc())
            .limit(limit)
        )
        return list(result.scalars().all())
