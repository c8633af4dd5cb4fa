"""
Background Tasks Package.

In-process report scheduling backed by the SQL job store.

    recurrence  - schedule strings ("daily:09:00") and next-run computation
    reports     - report data assembly, risk scoring, job bookkeeping types
    scheduler   - ReportScheduler tick loop and job lifecycle

Usage:
    from modules.backend.tasks import ReportScheduler

    scheduler = ReportScheduler(session_factory, run_job, tick_interval_seconds=60)
    await scheduler.start()
    await scheduler.schedule_report(caller_id, chat_id, JobType.DAILY, "daily 09:00")
"""

from modules.backend.tasks.recurrence import next_occurrence, parse_schedule
from modules.backend.tasks.reports import ReportBuilder, calculate_risk_score
from modules.backend.tasks.scheduler import ReportScheduler

__all__ = [
    "ReportBuilder",
    "ReportScheduler",
    "calculate_risk_score",
    "next_occurrence",
    "parse_schedule",
]
