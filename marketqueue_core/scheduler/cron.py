"""MarketQueue Cron Parser - Cron Expression Parser.

Copyright (c) 2024-2026 BlackRoad OS, Inc. All rights reserved.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Set


@dataclass
class CronSchedule:
    """Parsed cron schedule.

    Weekdays use cron numbering, 0 = Sunday. When both day-of-month and
    day-of-week are restricted a day matches if either matches.
    """

    minutes: Set[int] = field(default_factory=lambda: set(range(60)))
    hours: Set[int] = field(default_factory=lambda: set(range(24)))
    days: Set[int] = field(default_factory=lambda: set(range(1, 32)))
    months: Set[int] = field(default_factory=lambda: set(range(1, 13)))
    weekdays: Set[int] = field(default_factory=lambda: set(range(7)))
    days_restricted: bool = False
    weekdays_restricted: bool = False

    def matches_day(self, dt: datetime) -> bool:
        day_ok = dt.day in self.days
        weekday_ok = (dt.weekday() + 1) % 7 in self.weekdays
        if self.days_restricted and self.weekdays_restricted:
            return day_ok or weekday_ok
        return day_ok and weekday_ok

    def matches(self, dt: datetime) -> bool:
        """Check if datetime matches schedule."""
        return (
            dt.minute in self.minutes
            and dt.hour in self.hours
            and dt.month in self.months
            and self.matches_day(dt)
        )


class CronParser:
    """Cron expression parser.

    Supports standard 5-field cron expressions, or 6 fields with a
    leading seconds field (ignored):
    - minute (0-59)
    - hour (0-23)
    - day of month (1-31)
    - month (1-12 or jan-dec)
    - day of week (0-7 or sun-sat, 0 and 7 = Sunday)

    Special characters:
    - * : any value
    - , : value list
    - - : range
    - / : step
    """

    WEEKDAYS = {"sun": 0, "mon": 1, "tue": 2, "wed": 3, "thu": 4, "fri": 5, "sat": 6}
    MONTHS = {"jan": 1, "feb": 2, "mar": 3, "apr": 4, "may": 5, "jun": 6,
              "jul": 7, "aug": 8, "sep": 9, "oct": 10, "nov": 11, "dec": 12}

    # Four years covers every leap-day schedule
    MAX_SEARCH_DAYS = 366 * 4 + 1

    def __init__(self, expression: str):
        self.expression = expression
        self.schedule = self._parse(expression)

    def _parse(self, expression: str) -> CronSchedule:
        """Parse cron expression."""
        parts = expression.strip().split()

        if len(parts) == 5:
            minute, hour, day, month, weekday = parts
        elif len(parts) == 6:
            _, minute, hour, day, month, weekday = parts
        else:
            raise ValueError(f"Invalid cron expression: {expression!r}")

        weekdays = self._parse_field(weekday, 0, 7, self.WEEKDAYS)
        if 7 in weekdays:
            weekdays.discard(7)
            weekdays.add(0)

        return CronSchedule(
            minutes=self._parse_field(minute, 0, 59),
            hours=self._parse_field(hour, 0, 23),
            days=self._parse_field(day, 1, 31),
            months=self._parse_field(month, 1, 12, self.MONTHS),
            weekdays=weekdays,
            days_restricted=not day.startswith(("*", "?")),
            weekdays_restricted=not weekday.startswith(("*", "?")),
        )

    def _value(self, token: str, names: Optional[Dict[str, int]]) -> int:
        token = token.lower()
        if names and token in names:
            return names[token]
        try:
            return int(token)
        except ValueError:
            raise ValueError(f"Invalid cron value {token!r} in {self.expression!r}") from None

    def _parse_field(
        self,
        spec: str,
        min_val: int,
        max_val: int,
        names: Optional[Dict[str, int]] = None,
    ) -> Set[int]:
        """Parse a cron field."""
        values: Set[int] = set()

        for part in spec.split(","):
            step = 1
            if "/" in part:
                part, step_str = part.split("/", 1)
                step = self._value(step_str, None)
                if step <= 0:
                    raise ValueError(f"Invalid cron step in {self.expression!r}")

            if part in ("*", "?"):
                start, end = min_val, max_val
            elif "-" in part:
                lo, hi = part.split("-", 1)
                start, end = self._value(lo, names), self._value(hi, names)
            else:
                start = self._value(part, names)
                end = max_val if step > 1 else start

            if start < min_val or end > max_val or start > end:
                raise ValueError(
                    f"Cron field {spec!r} out of range {min_val}-{max_val} in {self.expression!r}"
                )
            values.update(range(start, end + 1, step))

        return values

    def matches(self, dt: datetime) -> bool:
        """Check if datetime matches schedule."""
        return self.schedule.matches(dt)

    def next_run(self, from_time: Optional[datetime] = None) -> datetime:
        """Calculate the first matching minute strictly after ``from_time``."""
        dt = (from_time or datetime.now(timezone.utc)).replace(second=0, microsecond=0)
        dt += timedelta(minutes=1)
        limit = dt + timedelta(days=self.MAX_SEARCH_DAYS)
        schedule = self.schedule

        while dt < limit:
            if dt.month not in schedule.months or not schedule.matches_day(dt):
                dt = (dt + timedelta(days=1)).replace(hour=0, minute=0)
                continue
            if dt.hour not in schedule.hours:
                dt = (dt + timedelta(hours=1)).replace(minute=0)
                continue
            if dt.minute not in schedule.minutes:
                dt += timedelta(minutes=1)
                continue
            return dt

        raise ValueError(f"No matching time found for {self.expression!r}")

    def get_next_runs(self, count: int, from_time: Optional[datetime] = None) -> List[datetime]:
        """Get next N run times."""
        runs = []
        current = from_time

        for _ in range(count):
            next_run = self.next_run(current)
            runs.append(next_run)
            current = next_run

        return runs


# Common cron expressions
EVERY_MINUTE = "* * * * *"
EVERY_HOUR = "0 * * * *"
EVERY_DAY = "0 0 * * *"
EVERY_WEEK = "0 0 * * 0"
EVERY_MONTH = "0 0 1 * *"
DAILY_6AM = "0 6 * * *"
MONDAY_8AM = "0 8 * * 1"


__all__ = [
    "CronParser",
    "CronSchedule",
    "EVERY_MINUTE",
    "EVERY_HOUR",
    "EVERY_DAY",
    "EVERY_WEEK",
    "EVERY_MONTH",
    "DAILY_6AM",
    "MONDAY_8AM",
]
