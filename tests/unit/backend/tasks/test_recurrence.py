"""
Unit Tests for Report Recurrence.

All datetimes are naive UTC.
"""

from datetime import datetime, time

import pytest

from modules.backend.core.exceptions import SchedulingError
from modules.backend.models.scheduling import JobType
from modules.backend.tasks.recurrence import Recurrence, next_occurrence, parse_schedule


class TestParseSchedule:
    def test_daily(self):
        assert parse_schedule("DAILY", "daily 09:00") == Recurrence(JobType.DAILY, time(9, 0))

    def test_weekly_accepts_full_day_names(self):
        recurrence = parse_schedule(JobType.WEEKLY, "Weekly Friday 18:30")

        assert recurrence.weekday == 4
        assert recurrence.at == time(18, 30)

    def test_monthly(self):
        assert parse_schedule("monthly", "monthly 31 07:15").day_of_month == 31

    @pytest.mark.parametrize(
        ("job_type", "schedule"),
        [
            ("DAILY", "weekly mon 09:00"),
            ("WEEKLY", "daily 09:00"),
            ("DAILY", ""),
            ("DAILY", "daily"),
            ("DAILY", "daily 9"),
            ("DAILY", "daily 25:00"),
            ("DAILY", "daily 09:00 extra"),
            ("WEEKLY", "weekly someday 09:00"),
            ("MONTHLY", "monthly 0 09:00"),
            ("MONTHLY", "monthly 32 09:00"),
            ("MONTHLY", "monthly first 09:00"),
            ("HOURLY", "hourly 09:00"),
        ],
    )
    def test_invalid(self, job_type, schedule):
        with pytest.raises(SchedulingError):
            parse_schedule(job_type, schedule)


class TestNextOccurrence:
    def test_daily_after_time_rolls_to_tomorrow(self):
        assert next_occurrence("DAILY", "daily 09:00", "UTC", datetime(2024, 1, 15, 10, 0)) == datetime(2024, 1, 16, 9, 0)

    def test_daily_before_time_is_today(self):
        assert next_occurrence("DAILY", "daily 09:00", "UTC", datetime(2024, 1, 15, 8, 0)) == datetime(2024, 1, 15, 9, 0)

    def test_exact_time_is_not_repeated(self):
        assert next_occurrence("DAILY", "daily 09:00", "UTC", datetime(2024, 1, 15, 9, 0)) == datetime(2024, 1, 16, 9, 0)

    def test_timezone_is_applied(self):
        # 09:00 in Berlin is 08:00 UTC in winter
        result = next_occurrence("DAILY", "daily 09:00", "Europe/Berlin", datetime(2024, 1, 15, 10, 0))

        assert result == datetime(2024, 1, 16, 8, 0)

    def test_daylight_saving_change(self):
        # New York switches to EDT on 2024-03-10
        result = next_occurrence("DAILY", "daily 09:00", "America/New_York", datetime(2024, 3, 9, 15, 0))

        assert result == datetime(2024, 3, 10, 13, 0)

    def test_weekly_same_day_later(self):
        # 2024-01-15 is a Monday
        assert next_occurrence("WEEKLY", "weekly mon 09:00", "UTC", datetime(2024, 1, 15, 8, 0)) == datetime(2024, 1, 15, 9, 0)

    def test_weekly_same_day_passed(self):
        assert next_occurrence("WEEKLY", "weekly mon 09:00", "UTC", datetime(2024, 1, 15, 10, 0)) == datetime(2024, 1, 22, 9, 0)

    def test_weekly_other_day(self):
        assert next_occurrence("WEEKLY", "weekly fri 18:30", "UTC", datetime(2024, 1, 15, 10, 0)) == datetime(2024, 1, 19, 18, 30)

    def test_monthly_clamps_to_short_month(self):
        assert next_occurrence("MONTHLY", "monthly 31 09:00", "UTC", datetime(2024, 1, 31, 10, 0)) == datetime(2024, 2, 29, 9, 0)
        assert next_occurrence("MONTHLY", "monthly 31 09:00", "UTC", datetime(2024, 2, 29, 10, 0)) == datetime(2024, 3, 31, 9, 0)

    def test_monthly_rolls_over_year(self):
        assert next_occurrence("MONTHLY", "monthly 1 09:00", "UTC", datetime(2024, 12, 5, 0, 0)) == datetime(2025, 1, 1, 9, 0)

    def test_unknown_timezone(self):
        with pytest.raises(SchedulingError, match="timezone"):
            next_occurrence("DAILY", "daily 09:00", "Mars/Olympus_Mons", datetime(2024, 1, 15, 10, 0))
