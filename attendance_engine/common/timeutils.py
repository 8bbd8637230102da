"""Timezone helpers shared by the shift resolver, aggregator and batch."""

from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone
from typing import Optional
from zoneinfo import ZoneInfo

from attendance_engine.config import settings


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Normalise a datetime to aware UTC.

    Naive values are taken as UTC (the storage convention for every
    timestamp column).
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def get_zone(tz_name: Optional[str]) -> ZoneInfo:
    return ZoneInfo(tz_name or settings.DEFAULT_TIMEZONE)


def localize(value: Optional[datetime], tz_name: Optional[str]) -> Optional[datetime]:
    """Aware UTC for *value*, reading a naive wall-clock time in *tz_name*."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=get_zone(tz_name))
    return value.astimezone(timezone.utc)


def to_local(value: datetime, tz_name: Optional[str]) -> datetime:
    return as_utc(value).astimezone(get_zone(tz_name))


def local_today(tz_name: Optional[str] = None) -> date:
    return utcnow().astimezone(get_zone(tz_name)).date()


def local_datetime(day: date, at: time, tz_name: Optional[str]) -> datetime:
    """Aware UTC datetime for wall-clock *at* on *day* in *tz_name*."""
    return datetime.combine(day, at, tzinfo=get_zone(tz_name)).astimezone(timezone.utc)


def date_range(start: date, end: date) -> list[date]:
    return [start + timedelta(days=i) for i in range((end - start).days + 1)]
