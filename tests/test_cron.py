"""Tests for the cron expression parser."""

from datetime import datetime, timezone

import pytest

from marketqueue_core.scheduler.cron import DAILY_6AM, MONDAY_8AM, CronParser


def utc(*args):
    return datetime(*args, tzinfo=timezone.utc)


class TestParsing:
    def test_wildcards(self):
        schedule = CronParser("* * * * *").schedule
        assert len(schedule.minutes) == 60
        assert len(schedule.weekdays) == 7

    def test_lists_ranges_and_steps(self):
        schedule = CronParser("0,30 9-17 */10 * *").schedule
        assert schedule.minutes == {0, 30}
        assert schedule.hours == set(range(9, 18))
        assert schedule.days == {1, 11, 21, 31}

    def test_step_on_range(self):
        assert CronParser("10-30/10 * * * *").schedule.minutes == {10, 20, 30}

    def test_names(self):
        schedule = CronParser("0 0 * jan,jul mon-fri").schedule
        assert schedule.months == {1, 7}
        assert schedule.weekdays == {1, 2, 3, 4, 5}

    def test_sunday_as_seven(self):
        assert CronParser("0 0 * * 7").schedule.weekdays == {0}

    def test_six_fields_ignore_seconds(self):
        assert CronParser("30 0 6 * * *").schedule.hours == {6}

    @pytest.mark.parametrize(
        "expression",
        ["* * * *", "60 * * * *", "* 24 * * *", "* * 0 * *", "* * * 13 *", "* * * * 8", "*/0 * * * *", "x * * * *"],
    )
    def test_invalid(self, expression):
        with pytest.raises(ValueError):
            CronParser(expression)


class TestNextRun:
    def test_daily_six_am(self):
        parser = CronParser(DAILY_6AM)
        assert parser.next_run(utc(2026, 3, 10, 5, 59, 30)) == utc(2026, 3, 10, 6, 0)
        assert parser.next_run(utc(2026, 3, 10, 6, 0)) == utc(2026, 3, 11, 6, 0)

    def test_strictly_after(self):
        parser = CronParser("* * * * *")
        assert parser.next_run(utc(2026, 3, 10, 6, 0)) == utc(2026, 3, 10, 6, 1)

    def test_monday_eight_am(self):
        # 2026-03-10 is a Tuesday
        assert CronParser(MONDAY_8AM).next_run(utc(2026, 3, 10, 12, 0)) == utc(2026, 3, 16, 8, 0)

    def test_sunday(self):
        assert CronParser("0 0 * * 0").next_run(utc(2026, 3, 10)) == utc(2026, 3, 15, 0, 0)

    def test_month_rollover(self):
        assert CronParser("0 0 1 * *").next_run(utc(2026, 12, 15)) == utc(2027, 1, 1)

    def test_leap_day(self):
        assert CronParser("0 0 29 2 *").next_run(utc(2026, 3, 1)) == utc(2028, 2, 29)

    def test_day_of_month_or_weekday(self):
        # 1st of the month or any Friday
        runs = CronParser("0 0 1 * fri").get_next_runs(3, utc(2026, 3, 25))
        assert runs == [utc(2026, 3, 27), utc(2026, 4, 1), utc(2026, 4, 3)]

    def test_restricted_weekday_alone(self):
        parser = CronParser("0 12 * * 3")
        assert parser.matches(utc(2026, 3, 11, 12, 0))
        assert not parser.matches(utc(2026, 3, 12, 12, 0))

    def test_impossible_date(self):
        with pytest.raises(ValueError):
            CronParser("0 0 31 2 *").next_run(utc(2026, 1, 1))

    def test_hourly_runs(self):
        runs = CronParser("0 * * * *").get_next_runs(3, utc(2026, 3, 10, 23, 15))
        assert runs == [utc(2026, 3, 11, 0, 0), utc(2026, 3, 11, 1, 0), utc(2026, 3, 11, 2, 0)]
