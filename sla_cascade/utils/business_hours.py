"""Working-hours calculator with public holiday support.

SLA clocks only run inside the configured daily window, on weekdays (unless
weekends are enabled), excluding public holidays of the configured country.
Window bounds are resolved in the schedule's IANA timezone and all arithmetic
is done in UTC, so minute counts are DST-safe.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from functools import lru_cache
from typing import Any, Mapping
from zoneinfo import ZoneInfo

import holidays

MIDNIGHT = time(0, 0)
MAX_SCAN_DAYS = 3660


@lru_cache(maxsize=64)
def get_holidays(country: str, year: int) -> frozenset[date]:
    """Cache holiday sets per (country, year)."""
    return frozenset(holidays.country_holidays(country, years=year).keys())


def is_supported_holiday_country(country: str) -> bool:
    return country.upper() in holidays.list_supported_countries()


def parse_time(value: time | str) -> time:
    """Accept a `time` or an "HH:MM[:SS]" string."""
    if isinstance(value, time):
        return value
    return time.fromisoformat(value)


@dataclass(frozen=True)
class WorkingSchedule:
    """Daily working window. An `end` of 00:00 means the window runs to midnight."""

    start: time = time(8, 0)
    end: time = time(18, 0)
    include_weekends: bool = False
    timezone: str = "UTC"
    holiday_country: str | None = None

    @classmethod
    def from_snapshot(cls, snapshot: Mapping[str, Any]) -> "WorkingSchedule":
        return cls(
            start=parse_time(snapshot["working_hours_start"]),
            end=parse_time(snapshot["working_hours_end"]),
            include_weekends=bool(snapshot.get("working_hours_weekend", False)),
            timezone=snapshot.get("timezone") or "UTC",
            holiday_country=snapshot.get("holiday_country") or None,
        )

    @property
    def tz(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)

    def is_working_day(self, day: date) -> bool:
        """Check if a local date is a working day (weekday unless weekends on, not a holiday)."""
        if day.weekday() >= 5 and not self.include_weekends:
            return False
        if self.holiday_country and day in get_holidays(self.holiday_country, day.year):
            return False
        return True

    def window_utc(self, day: date) -> tuple[datetime, datetime] | None:
        """Working window of a local date as UTC bounds, or None on non-working days."""
        if not self.is_working_day(day):
            return None
        tz = self.tz
        start_local = datetime.combine(day, self.start, tzinfo=tz)
        if self.end == MIDNIGHT:
            end_local = datetime.combine(day + timedelta(days=1), MIDNIGHT, tzinfo=tz)
        else:
            end_local = datetime.combine(day, self.end, tzinfo=tz)
        start_utc = start_local.astimezone(timezone.utc)
        end_utc = end_local.astimezone(timezone.utc)
        if end_utc <= start_utc:
            return None
        return start_utc, end_utc


def _local_date(dt: datetime, schedule: WorkingSchedule) -> date:
    return dt.astimezone(schedule.tz).date()


def is_working_time(dt: datetime, schedule: WorkingSchedule) -> bool:
    """Check if an aware datetime falls inside the working window."""
    window = schedule.window_utc(_local_date(dt, schedule))
    if window is None:
        return False
    return window[0] <= dt < window[1]


def next_working_start(dt: datetime, schedule: WorkingSchedule) -> datetime:
    """Return `dt` if it is working time, else the start of the next window (UTC)."""
    day = _local_date(dt, schedule)
    for _ in range(MAX_SCAN_DAYS):
        window = schedule.window_utc(day)
        if window is not None and dt < window[1]:
            return max(window[0], dt.astimezone(timezone.utc))
        day += timedelta(days=1)
    raise ValueError("No working time found in schedule")


def add_working_minutes(start: datetime, minutes: float, schedule: WorkingSchedule) -> datetime:
    """
    Add working minutes to an aware datetime.

    Args:
        start: Start instant (any timezone; naive is treated as UTC)
        minutes: Working minutes to add
        schedule: Working window definition

    Returns:
        Deadline in UTC
    """
    if start.tzinfo is None:
        start = start.replace(tzinfo=timezone.utc)
    start = start.astimezone(timezone.utc)
    remaining = timedelta(minutes=minutes)
    if remaining <= timedelta(0):
        return start

    day = _local_date(start, schedule)
    for _ in range(MAX_SCAN_DAYS):
        window = schedule.window_utc(day)
        if window is not None:
            window_start, window_end = window
            lower = max(window_start, start)
            if window_end > lower:
                available = window_end - lower
                if remaining <= available:
                    return lower + remaining
                remaining -= available
        day += timedelta(days=1)
    raise ValueError("No working time found in schedule")


def working_minutes_between(start: datetime, end: datetime, schedule: WorkingSchedule) -> float:
    """Working minutes elapsed from `start` to `end` (0 when end <= start)."""
    if start.tzinfo is None:
        start = start.replace(tzinfo=timezone.utc)
    if end.tzinfo is None:
        end = end.replace(tzinfo=timezone.utc)
    if end <= start:
        return 0.0

    total = timedelta(0)
    day = _local_date(start, schedule)
    last_day = _local_date(end, schedule)
    while day <= last_day:
        window = schedule.window_utc(day)
        if window is not None:
            lower = max(window[0], start)
            upper = min(window[1], end)
            if upper > lower:
                total += upper - lower
        day += timedelta(days=1)
    return total.total_seconds() / 60
