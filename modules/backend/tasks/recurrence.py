"""
Report Recurrence.

Computes the next run of a report job from its schedule string. Schedules
are evaluated in the job's IANA timezone and returned as naive UTC, like
every other datetime in the application.

Schedule Format:
    "daily HH:MM"             every day
    "weekly <mon..sun> HH:MM" once a week on the given weekday
    "monthly <1..31> HH:MM"   once a month; 31 means the last day of short months

Examples:
    >>> next_occurrence("DAILY", "daily 09:00", "UTC", datetime(2024, 1, 15, 10, 0))
    datetime.datetime(2024, 1, 16, 9, 0)
    >>> next_occurrence("DAILY", "daily 09:00", "UTC", datetime(2024, 1, 15, 8, 0))
    datetime.datetime(2024, 1, 15, 9, 0)
"""

import calendar
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from modules.backend.core.exceptions import SchedulingError
from modules.backend.models.scheduling import JobType, coerce_job_type

WEEKDAYS = {"mon": 0, "tue": 1, "wed": 2, "thu": 3, "fri": 4, "sat": 5, "sun": 6}


@dataclass(frozen=True)
class Recurrence:
    job_type: JobType
    at: time
    weekday: int | None = None
    day_of_month: int | None = None


def _parse_time(value: str, schedule: str) -> time:
    try:
        hours, minutes = value.split(":")
        return time(int(hours), int(minutes))
    except ValueError as e:
        raise SchedulingError(f"Invalid time '{value}' in schedule '{schedule}'") from e


def parse_schedule(job_type: JobType | str, schedule: str) -> Recurrence:
    """
    Parse a schedule string for a job of the given type.

    Raises:
        SchedulingError: If the schedule is malformed or names another job type
    """
    try:
        job_type = coerce_job_type(job_type)
    except ValueError as e:
        raise SchedulingError(f"Unknown job type '{job_type}'") from e

    parts = schedule.strip().lower().split()
    if not parts:
        raise SchedulingError("Schedule is empty")
    if parts[0] != job_type.value.lower():
        raise SchedulingError(f"Schedule '{schedule}' does not match job type {job_type.value}")

    if job_type is JobType.DAILY and len(parts) == 2:
        return Recurrence(job_type, _parse_time(parts[1], schedule))

    if job_type is JobType.WEEKLY and len(parts) == 3:
        weekday = WEEKDAYS.get(parts[1][:3])
        if weekday is None:
            raise SchedulingError(f"Invalid weekday '{parts[1]}' in schedule '{schedule}'")
        return Recurrence(job_type, _parse_time(parts[2], schedule), weekday=weekday)

    if job_type is JobType.MONTHLY and len(parts) == 3:
        if not parts[1].isdigit() or not 1 <= int(parts[1]) <= 31:
            raise SchedulingError(f"Invalid day of month '{parts[1]}' in schedule '{schedule}'")
        return Recurrence(job_type, _parse_time(parts[2], schedule), day_of_month=int(parts[1]))

    raise SchedulingError(f"Malformed {job_type.value.lower()} schedule '{schedule}'")


def _zone(tz_name: str) -> ZoneInfo:
    try:
        return ZoneInfo(tz_name)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise SchedulingError(f"Unknown timezone '{tz_name}'") from e


def _month_day(year: int, month: int, day: int) -> date:
    return date(year, month, min(day, calendar.monthrange(year, month)[1]))


def _add_month(year: int, month: int) -> tuple[int, int]:
    return (year + 1, 1) if month == 12 else (year, month + 1)


def next_occurrence(
    job_type: JobType | str,
    schedule: str,
    tz_name: str,
    now: datetime,
) -> datetime:
    """
    First occurrence of `schedule` strictly after `now`.

    Args:
        job_type: DAILY, WEEKLY or MONTHLY
        schedule: Schedule string matching the job type
        tz_name: IANA timezone the schedule is expressed in
        now: Reference time, naive UTC

    Returns:
        Naive UTC datetime

    Raises:
        SchedulingError: If the schedule or timezone is invalid
    """
    recurrence = parse_schedule(job_type, schedule)
    zone = _zone(tz_name)
    local_today = now.replace(tzinfo=timezone.utc).astimezone(zone).date()

    def to_utc(day: date) -> datetime:
        local = datetime.combine(day, recurrence.at, tzinfo=zone)
        return local.astimezone(timezone.utc).replace(tzinfo=None)

    if recurrence.job_type is JobType.DAILY:
        day = local_today
        while to_utc(day) <= now:
            day += timedelta(days=1)
        return to_utc(day)

    if recurrence.job_type is JobType.WEEKLY:
        day = local_today + timedelta(days=(recurrence.weekday - local_today.weekday()) % 7)
        while to_utc(day) <= now:
            day += timedelta(days=7)
        return to_utc(day)

    year, month = local_today.year, local_today.month
    day = _month_day(year, month, recurrence.day_of_month)
    while to_utc(day) <= now:
        year, month = _add_month(year, month)
        day = _month_day(year, month, recurrence.day_of_month)
    return to_utc(day)
