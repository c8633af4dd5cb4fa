"""
Scheduling Models.

Persistent state of the report scheduler:
    scheduled_jobs  one row per caller and report type ("daily_12345")
    job_errors      failures of individual job runs, with traceback
    sent_reports    reports delivered by scheduled runs
"""

from datetime import datetime
from enum import Enum
from typing import Any
from uuid import uuid4

from sqlalchemy import JSON, BigInteger, Boolean, DateTime, ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from modules.backend.core.utils import utc_now
from modules.backend.models.base import Base, TimestampMixin


class JobType(str, Enum):
    DAILY = "DAILY"
    WEEKLY = "WEEKLY"
    MONTHLY = "MONTHLY"


def coerce_job_type(value: JobType | str) -> JobType:
    """Accept a JobType or its case-insensitive name."""
    if isinstance(value, JobType):
        return value
    return JobType(value.upper())


def job_id_for(job_type: JobType | str, caller_id: int) -> str:
    """Stable job id, e.g. daily_12345."""
    return f"{coerce_job_type(job_type).value.lower()}_{caller_id}"


class ScheduledJob(TimestampMixin, Base):
    """A recurring report for one caller."""

    __tablename__ = "scheduled_jobs"
    __table_args__ = (Index("ix_scheduled_jobs_due", "enabled", "next_run"),)

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    caller_id: Mapped[int] = mapped_column(BigInteger, nullable=False, index=True)
    chat_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    type: Mapped[str] = mapped_column(String(16), nullable=False)
    schedule: Mapped[str] = mapped_column(String(64), nullable=False)
    timezone: Mapped[str] = mapped_column(String(64), nullable=False, default="UTC")
    last_run: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    next_run: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    config: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)

    def __repr__(self) -> str:
        return f"<ScheduledJob(id={self.id}, next_run={self.next_run}, enabled={self.enabled})>"


class JobError(Base):
    __tablename__ = "job_errors"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid4()))
    job_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("scheduled_jobs.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    error_message: Mapped[str] = mapped_column(Text, nullable=False)
    error_stack: Mapped[str | None] = mapped_column(Text, nullable=True)
    timestamp: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utc_now)


class SentReport(Base):
    __tablename__ = "sent_reports"

    report_id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid4()))
    caller_id: Mapped[int] = mapped_column(BigInteger, nullable=False, index=True)
    chat_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    report_type: Mapped[str] = mapped_column(String(16), nullable=False)
    report_data: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    sent_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utc_now)
