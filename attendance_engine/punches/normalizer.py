"""Punch normalizer — raw payload parsing, dedup window and sequencing rules.

Pure helpers used by ``PunchService``. Nothing here touches the database.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Iterable, Optional

from attendance_engine.common.constants import ProviderType, PunchType
from attendance_engine.common.exceptions import ValidationException
from attendance_engine.common.timeutils import as_utc, get_zone
from attendance_engine.punches.providers import map_punch_type

_USER_KEYS = ("user_id", "userId", "uid")
_TIME_KEYS = ("timestamp", "time")
_STATUS_KEYS = ("status", "type", "punch")

ALLOWED_TRANSITIONS: dict[PunchType, frozenset[PunchType]] = {
    PunchType.in_: frozenset({PunchType.out, PunchType.break_start}),
    PunchType.out: frozenset({PunchType.in_}),
    PunchType.break_start: frozenset({PunchType.break_end}),
    PunchType.break_end: frozenset({PunchType.in_, PunchType.break_start}),
    PunchType.remote_in: frozenset({PunchType.remote_out, PunchType.break_start}),
    PunchType.remote_out: frozenset({PunchType.remote_in}),
}
FIRST_PUNCH_TYPES = frozenset({PunchType.in_, PunchType.remote_in})

IN_TYPES = frozenset({PunchType.in_, PunchType.remote_in})
OUT_TYPES = frozenset({PunchType.out, PunchType.remote_out})


@dataclass
class NormalizedEntry:
    raw_user_id: str
    timestamp: datetime
    punch_type: PunchType
    raw: dict[str, Any] = field(default_factory=dict)


def _first(entry: dict[str, Any], keys: Iterable[str]) -> Any:
    for key in keys:
        value = entry.get(key)
        if value not in (None, ""):
            return value
    return None


def parse_timestamp(value: Any, tz_name: Optional[str] = None) -> datetime:
    """Parse epoch seconds/milliseconds, ISO-8601 strings or datetimes.

    Naive wall-clock values are read in the terminal's timezone; the result
    is always aware UTC.
    """
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, (int, float)) and not isinstance(value, bool):
        seconds = value / 1000 if value > 1e11 else value
        return datetime.fromtimestamp(seconds, tz=timezone.utc)
    elif isinstance(value, str):
        text = value.strip()
        if text.isdigit():
            return parse_timestamp(int(text), tz_name)
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    else:
        raise ValueError(f"Unsupported timestamp: {value!r}")

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=get_zone(tz_name))
    return as_utc(parsed)


def normalize_machine_entry(
    entry: dict[str, Any],
    provider: ProviderType,
    tz_name: Optional[str] = None,
) -> NormalizedEntry:
    """Turn one raw terminal record into a ``NormalizedEntry``.

    Raises ``ValidationException`` for a missing subject, an unparseable
    timestamp or a status code the provider table cannot map.
    """
    errors: dict[str, list[str]] = {}

    raw_user = _first(entry, _USER_KEYS)
    if raw_user is None:
        errors["user_id"] = ["Missing device user id."]

    timestamp = None
    raw_time = _first(entry, _TIME_KEYS)
    if raw_time is None:
        errors["timestamp"] = ["Missing timestamp."]
    else:
        try:
            timestamp = parse_timestamp(raw_time, tz_name)
        except (ValueError, OverflowError, OSError):
            errors["timestamp"] = [f"Invalid timestamp {raw_time!r}."]

    code = _first(entry, _STATUS_KEYS)
    punch_type = map_punch_type(code, provider)
    if punch_type is None:
        errors["status"] = [f"Unknown punch code {code!r} for provider '{provider.value}'."]

    if errors:
        raise ValidationException(errors)

    return NormalizedEntry(
        raw_user_id=str(raw_user),
        timestamp=timestamp,
        punch_type=punch_type,
        raw=dict(entry),
    )


def within_window(a: datetime, b: datetime, window_seconds: int) -> bool:
    return abs(as_utc(a) - as_utc(b)) <= timedelta(seconds=window_seconds)


def is_duplicate(
    timestamp: datetime,
    existing: Iterable[datetime],
    window_seconds: int,
) -> bool:
    """True when any same-type punch lies within the dedup window."""
    return any(within_window(timestamp, other, window_seconds) for other in existing)


def is_valid_sequence(previous: Optional[PunchType], current: PunchType) -> bool:
    if previous is None:
        return current in FIRST_PUNCH_TYPES
    return current in ALLOWED_TRANSITIONS.get(previous, frozenset())
