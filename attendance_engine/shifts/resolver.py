"""Shift resolver — pure date attribution and schedule helpers.

Every function here is deterministic: the same shift, timestamp and
timezone always yield the same answer. Online ingestion and the nightly
reconciliation both key daily records by ``attribute_date`` so replays
land on the same (user, date).
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Any, Iterable, Optional

from attendance_engine.common.constants import DEFAULT_WEEKLY_OFFS
from attendance_engine.common.timeutils import local_datetime, to_local

_DAY_NAMES = {
    "monday": 0, "tuesday": 1, "wednesday": 2, "thursday": 3,
    "friday": 4, "saturday": 5, "sunday": 6,
}


@dataclass(frozen=True)
class ShiftWindow:
    """Scheduled in/out for one attributed date, as aware UTC datetimes."""

    scheduled_in: datetime
    scheduled_out: datetime


def crosses_midnight(shift: Any) -> bool:
    return shift.end_time <= shift.start_time


def attribute_date(
    timestamp: datetime,
    shift: Optional[Any],
    tz_name: Optional[str],
    buffer_hours: int = 4,
) -> date:
    """Return the calendar date a punch belongs to.

    Day shifts use the punch's own local date. For a night shift, the
    shift end (on the next day when the shift crosses midnight) plus
    *buffer_hours* may spill past midnight; a punch whose local hour is at
    or before that spill-over hour, and before the shift's own start hour,
    belongs to the previous date.
    """
    local = to_local(timestamp, tz_name)
    if shift is None or not shift.is_night_shift:
        return local.date()

    end_hour = shift.end_time.hour + (24 if crosses_midnight(shift) else 0)
    spill_hour = end_hour + buffer_hours - 24
    if spill_hour < 0:
        return local.date()
    if local.hour <= spill_hour and local.hour < shift.start_time.hour:
        return local.date() - timedelta(days=1)
    return local.date()


def shift_window(shift: Any, day: date, tz_name: Optional[str]) -> ShiftWindow:
    """Scheduled start and end of *shift* for attributed date *day*."""
    scheduled_in = local_datetime(day, shift.start_time, tz_name)
    out_day = day + timedelta(days=1) if crosses_midnight(shift) else day
    scheduled_out = local_datetime(out_day, shift.end_time, tz_name)
    return ShiftWindow(scheduled_in=scheduled_in, scheduled_out=scheduled_out)


def weekly_off_days(shift: Optional[Any]) -> set[int]:
    """Weekday numbers (0=Mon … 6=Sun) that are weekly offs for *shift*.

    ``weekly_offs`` is JSON: a list of weekday ints, or a mapping of day
    names to booleans. Missing or malformed data falls back to Sat/Sun.
    """
    if shift is None or shift.weekly_offs is None:
        return set(DEFAULT_WEEKLY_OFFS)

    days_data = shift.weekly_offs
    if isinstance(days_data, dict):
        return {
            _DAY_NAMES[k.lower()]
            for k, v in days_data.items()
            if v and k.lower() in _DAY_NAMES
        }
    if isinstance(days_data, Iterable) and not isinstance(days_data, str):
        return {int(d) for d in days_data if 0 <= int(d) <= 6}
    return set(DEFAULT_WEEKLY_OFFS)


def is_weekly_off(shift: Optional[Any], day: date) -> bool:
    return day.weekday() in weekly_off_days(shift)
