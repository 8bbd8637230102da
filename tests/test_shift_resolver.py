"""Shift resolver tests — date attribution, schedule windows, weekly offs."""

from __future__ import annotations

from datetime import date, datetime, time, timezone
from types import SimpleNamespace

from attendance_engine.shifts.resolver import (
    attribute_date,
    crosses_midnight,
    is_weekly_off,
    shift_window,
    weekly_off_days,
)


def _shift(start, end, *, night=False, weekly_offs=None):
    return SimpleNamespace(
        start_time=start,
        end_time=end,
        is_night_shift=night,
        weekly_offs=weekly_offs,
    )


DAY_SHIFT = _shift(time(9, 0), time(18, 0))
LATE_SHIFT = _shift(time(14, 0), time(23, 0), night=True)
OVERNIGHT = _shift(time(22, 0), time(6, 0), night=True)


def test_day_shift_uses_local_date():
    ts = datetime(2026, 3, 2, 1, 30, tzinfo=timezone.utc)
    assert attribute_date(ts, DAY_SHIFT, "UTC") == date(2026, 3, 2)


def test_no_shift_uses_local_date_in_branch_timezone():
    # 20:00 UTC is 01:30 the next day in Kolkata
    ts = datetime(2026, 3, 2, 20, 0, tzinfo=timezone.utc)
    assert attribute_date(ts, None, "Asia/Kolkata") == date(2026, 3, 3)


def test_night_shift_early_morning_punch_goes_to_previous_date():
    ts = datetime(2026, 3, 3, 1, 30, tzinfo=timezone.utc)
    assert attribute_date(ts, LATE_SHIFT, "UTC") == date(2026, 3, 2)


def test_night_shift_punch_after_spill_keeps_own_date():
    ts = datetime(2026, 3, 3, 4, 0, tzinfo=timezone.utc)
    assert attribute_date(ts, LATE_SHIFT, "UTC") == date(2026, 3, 3)


def test_overnight_shift_checkout_attributed_to_start_date():
    checkout = datetime(2026, 3, 3, 5, 55, tzinfo=timezone.utc)
    checkin = datetime(2026, 3, 2, 22, 5, tzinfo=timezone.utc)
    assert attribute_date(checkout, OVERNIGHT, "UTC") == date(2026, 3, 2)
    assert attribute_date(checkin, OVERNIGHT, "UTC") == date(2026, 3, 2)


def test_night_flag_on_morning_shift_has_no_spill():
    early = _shift(time(6, 0), time(14, 0), night=True)
    ts = datetime(2026, 3, 3, 1, 0, tzinfo=timezone.utc)
    assert attribute_date(ts, early, "UTC") == date(2026, 3, 3)


def test_night_attribution_in_local_timezone():
    # 20:00 UTC → 01:30 IST on the 3rd, inside the 14:00–23:00 spill
    ts = datetime(2026, 3, 2, 20, 0, tzinfo=timezone.utc)
    assert attribute_date(ts, LATE_SHIFT, "Asia/Kolkata") == date(2026, 3, 2)


def test_attribution_is_deterministic():
    ts = datetime(2026, 3, 3, 2, 59, tzinfo=timezone.utc)
    results = {attribute_date(ts, LATE_SHIFT, "UTC") for _ in range(5)}
    assert results == {date(2026, 3, 2)}


def test_crosses_midnight():
    assert crosses_midnight(OVERNIGHT)
    assert not crosses_midnight(DAY_SHIFT)


def test_shift_window_overnight_ends_next_day():
    window = shift_window(OVERNIGHT, date(2026, 3, 2), "UTC")
    assert window.scheduled_in == datetime(2026, 3, 2, 22, 0, tzinfo=timezone.utc)
    assert window.scheduled_out == datetime(2026, 3, 3, 6, 0, tzinfo=timezone.utc)


def test_shift_window_converts_local_to_utc():
    window = shift_window(DAY_SHIFT, date(2026, 3, 2), "Asia/Kolkata")
    assert window.scheduled_in == datetime(2026, 3, 2, 3, 30, tzinfo=timezone.utc)


def test_weekly_offs_list_and_mapping():
    assert weekly_off_days(_shift(time(9), time(18), weekly_offs=[6])) == {6}
    mapping = {"saturday": True, "sunday": False, "Friday": True}
    assert weekly_off_days(_shift(time(9), time(18), weekly_offs=mapping)) == {4, 5}


def test_weekly_offs_default_to_weekend():
    assert weekly_off_days(None) == {5, 6}
    assert weekly_off_days(_shift(time(9), time(18))) == {5, 6}


def test_is_weekly_off():
    saturday = date(2026, 3, 7)
    monday = date(2026, 3, 2)
    assert is_weekly_off(DAY_SHIFT, saturday)
    assert not is_weekly_off(DAY_SHIFT, monday)
