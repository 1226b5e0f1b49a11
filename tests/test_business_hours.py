from datetime import datetime, time, timedelta, timezone

import pytest

from sla_cascade.utils.business_hours import (
    WorkingSchedule,
    add_working_minutes,
    is_working_time,
    next_working_start,
    working_minutes_between,
)

UTC = timezone.utc
WEEKDAYS = WorkingSchedule(start=time(8, 0), end=time(18, 0), timezone="UTC")


def _utc(*args) -> datetime:
    return datetime(*args, tzinfo=UTC)


def test_add_minutes_inside_window():
    start = _utc(2026, 3, 11, 10, 0)  # Wednesday
    assert add_working_minutes(start, 30, WEEKDAYS) == _utc(2026, 3, 11, 10, 30)


def test_add_minutes_rolls_to_next_morning():
    start = _utc(2026, 3, 11, 17, 50)
    assert add_working_minutes(start, 30, WEEKDAYS) == _utc(2026, 3, 12, 8, 20)


def test_add_minutes_skips_weekend():
    start = _utc(2026, 3, 13, 17, 50)  # Friday
    assert add_working_minutes(start, 30, WEEKDAYS) == _utc(2026, 3, 16, 8, 20)


def test_add_minutes_includes_weekend_when_enabled():
    schedule = WorkingSchedule(start=time(8, 0), end=time(18, 0), include_weekends=True, timezone="UTC")
    start = _utc(2026, 3, 13, 17, 50)
    assert add_working_minutes(start, 30, schedule) == _utc(2026, 3, 14, 8, 20)


def test_clock_starts_at_next_window_when_outside_hours():
    start = _utc(2026, 3, 11, 20, 0)
    assert add_working_minutes(start, 10, WEEKDAYS) == _utc(2026, 3, 12, 8, 10)


def test_public_holiday_is_skipped():
    # Tiradentes (21 April) is a national holiday in Brazil
    schedule = WorkingSchedule(start=time(8, 0), end=time(18, 0), timezone="UTC", holiday_country="BR")
    start = _utc(2026, 4, 20, 17, 50)
    assert add_working_minutes(start, 30, schedule) == _utc(2026, 4, 22, 8, 20)


def test_midnight_end_runs_window_to_end_of_day():
    schedule = WorkingSchedule(start=time(8, 0), end=time(0, 0), timezone="UTC")
    start = _utc(2026, 3, 11, 23, 50)
    assert add_working_minutes(start, 20, schedule) == _utc(2026, 3, 12, 8, 10)


def test_local_timezone_window():
    schedule = WorkingSchedule(start=time(8, 0), end=time(18, 0), timezone="America/Sao_Paulo")
    # 10:00 UTC is 07:00 in Sao Paulo (UTC-3): clock starts at 08:00 local = 11:00 UTC
    start = _utc(2026, 3, 11, 10, 0)
    assert add_working_minutes(start, 30, schedule) == _utc(2026, 3, 11, 11, 30)


def test_elapsed_excludes_nights_and_weekends():
    start = _utc(2026, 3, 13, 17, 0)  # Friday
    end = _utc(2026, 3, 16, 9, 0)  # Monday
    assert working_minutes_between(start, end, WEEKDAYS) == pytest.approx(120)


def test_elapsed_is_zero_for_reversed_range():
    start = _utc(2026, 3, 11, 12, 0)
    assert working_minutes_between(start, start - timedelta(hours=1), WEEKDAYS) == 0


@pytest.mark.parametrize("minutes", [1, 45, 600, 1500])
def test_deadline_gap_equals_requested_working_minutes(minutes):
    start = _utc(2026, 3, 12, 16, 37)
    deadline = add_working_minutes(start, minutes, WEEKDAYS)
    assert deadline >= start
    assert working_minutes_between(start, deadline, WEEKDAYS) == pytest.approx(minutes)


def test_is_working_time_and_next_start():
    assert is_working_time(_utc(2026, 3, 11, 9, 0), WEEKDAYS)
    assert not is_working_time(_utc(2026, 3, 11, 18, 0), WEEKDAYS)
    assert not is_working_time(_utc(2026, 3, 14, 10, 0), WEEKDAYS)
    assert next_working_start(_utc(2026, 3, 14, 10, 0), WEEKDAYS) == _utc(2026, 3, 16, 8, 0)
    inside = _utc(2026, 3, 11, 9, 15)
    assert next_working_start(inside, WEEKDAYS) == inside


def test_snapshot_schedule_parses_strings():
    schedule = WorkingSchedule.from_snapshot(
        {
            "working_hours_start": "09:00:00",
            "working_hours_end": "17:30:00",
            "working_hours_weekend": True,
            "timezone": "UTC",
            "holiday_country": "",
        }
    )
    assert schedule.start == time(9, 0)
    assert schedule.end == time(17, 30)
    assert schedule.include_weekends is True
    assert schedule.holiday_country is None
