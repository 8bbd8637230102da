"""Daily record derivation.

``derive_daily_record`` is the single function that turns a day's punches,
its shift and the day facts (holiday, weekly off, approved leave, approved
work-from-home / on-duty) into the canonical daily figures. Online punch
ingestion, approved corrections and the nightly reconciliation all call it
with the full punch set, so arrival order never affects the result.
"""

from __future__ import annotations

import uuid
from dataclasses import asdict, dataclass, field
from datetime import date, datetime, timedelta
from typing import Any, Iterable, Optional, Sequence

from attendance_engine.common.constants import (
    DEFAULT_FULL_DAY_MINUTES,
    DEFAULT_HALF_DAY_MINUTES,
    DEFAULT_OVERTIME_MULTIPLIER,
    PAYOUT_MULTIPLIERS,
    UNPAID_LEAVE_TYPES,
    AttendanceStatus,
    ProcessingState,
    PunchType,
    RequestType,
)
from attendance_engine.common.timeutils import as_utc
from attendance_engine.punches.normalizer import IN_TYPES, OUT_TYPES
from attendance_engine.shifts.resolver import shift_window

# Punch states that count toward aggregation
COUNTED_STATES = frozenset({
    ProcessingState.processed,
    ProcessingState.flagged,
    ProcessingState.corrected,
})


# ── Inputs ──────────────────────────────────────────────────────────

@dataclass(frozen=True)
class LeaveFact:
    request_id: uuid.UUID
    leave_type: Optional[str]
    is_half_day: bool = False


@dataclass(frozen=True)
class PresenceFact:
    """Approved work-from-home or on-duty request for the date."""

    request_id: uuid.UUID
    request_type: RequestType


@dataclass(frozen=True)
class DayFacts:
    day: date
    timezone: Optional[str] = None
    holiday_name: Optional[str] = None
    is_weekly_off: bool = False
    leave: Optional[LeaveFact] = None
    presence: Optional[PresenceFact] = None
    day_closed: bool = True


# ── Output ──────────────────────────────────────────────────────────

@dataclass
class DerivedRecord:
    shift_id: Optional[uuid.UUID] = None
    status: Optional[AttendanceStatus] = None
    first_in: Optional[datetime] = None
    last_out: Optional[datetime] = None
    total_work_minutes: int = 0
    break_minutes: int = 0
    net_work_minutes: int = 0
    overtime_minutes: int = 0
    is_late: bool = False
    late_by_minutes: int = 0
    is_early_departure: bool = False
    is_half_day: bool = False
    is_overtime: bool = False
    payout_multiplier: float = 0.0
    overtime_multiplier: float = 0.0
    holiday_name: Optional[str] = None
    punch_ids: list[str] = field(default_factory=list)
    leave_request_id: Optional[uuid.UUID] = None
    regularization_request_id: Optional[uuid.UUID] = None
    is_regularized: bool = False

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


DERIVED_FIELDS: tuple[str, ...] = tuple(DerivedRecord.__dataclass_fields__)


# ── Helpers ─────────────────────────────────────────────────────────

def _minutes(start: datetime, end: datetime) -> int:
    return max(0, int((as_utc(end) - as_utc(start)).total_seconds() // 60))


def _pick(punches: Sequence[Any], types: frozenset[PunchType]) -> list[Any]:
    """Punches of *types*; corrected ones supersede the rest when present."""
    matching = [p for p in punches if p.punch_type in types]
    corrected = [p for p in matching if p.processing_state == ProcessingState.corrected]
    return corrected or matching


def paired_break_minutes(punches: Sequence[Any]) -> Optional[int]:
    """Sum of break_start → break_end spans; None when the day has no break punches."""
    has_breaks = False
    opened: Optional[datetime] = None
    total = 0
    for punch in punches:
        if punch.punch_type == PunchType.break_start:
            has_breaks = True
            if opened is None:
                opened = punch.timestamp
        elif punch.punch_type == PunchType.break_end:
            has_breaks = True
            if opened is not None:
                total += _minutes(opened, punch.timestamp)
                opened = None
    return total if has_breaks else None


def _thresholds(shift: Optional[Any]) -> tuple[int, int]:
    if shift is None:
        return DEFAULT_HALF_DAY_MINUTES, DEFAULT_FULL_DAY_MINUTES
    return (
        shift.half_day_minutes or DEFAULT_HALF_DAY_MINUTES,
        shift.full_day_minutes or DEFAULT_FULL_DAY_MINUTES,
    )


def _overtime_rate(shift: Optional[Any]) -> Optional[float]:
    """Multiplier for overtime minutes, or None when overtime is disabled."""
    if shift is None:
        return DEFAULT_OVERTIME_MULTIPLIER
    if not shift.overtime_enabled:
        return None
    if shift.is_night_shift:
        return float(shift.night_overtime_multiplier)
    return float(shift.overtime_multiplier)


# ── Derivation ──────────────────────────────────────────────────────

def derive_daily_record(
    punches: Iterable[Any],
    shift: Optional[Any],
    facts: DayFacts,
) -> DerivedRecord:
    """Fold one (user, date) into a ``DerivedRecord``.

    *punches* are objects exposing ``id``, ``punch_type``, ``timestamp``,
    ``processing_state`` and ``request_id``; punches outside
    ``COUNTED_STATES`` are ignored. A result with ``status=None`` means
    nothing applies yet (an open day with no punches and no approved
    request), and callers should not create a record for it.
    """
    counted = sorted(
        (p for p in punches if p.processing_state in COUNTED_STATES),
        key=lambda p: (as_utc(p.timestamp), str(p.id)),
    )

    record = DerivedRecord(
        shift_id=shift.id if shift is not None else None,
        holiday_name=facts.holiday_name,
        punch_ids=[str(p.id) for p in counted],
    )

    corrections = [p for p in counted if p.processing_state == ProcessingState.corrected]
    if corrections:
        record.regularization_request_id = corrections[-1].request_id
        record.is_regularized = corrections[-1].request_id is not None

    # ── Times and hours ─────────────────────────────────────────────
    ins = _pick(counted, IN_TYPES)
    outs = _pick(counted, OUT_TYPES)
    first_in = min((as_utc(p.timestamp) for p in ins), default=None)
    last_out = max((as_utc(p.timestamp) for p in outs), default=None)
    if first_in is not None and last_out is not None and last_out < first_in:
        last_out = None
    record.first_in = first_in
    record.last_out = last_out

    complete = first_in is not None and last_out is not None and last_out > first_in
    half_day_minutes, full_day_minutes = _thresholds(shift)

    if complete:
        record.total_work_minutes = _minutes(first_in, last_out)
        breaks = paired_break_minutes(counted)
        if breaks is None:
            breaks = shift.break_minutes if shift is not None else 0
        record.break_minutes = breaks
        record.net_work_minutes = max(0, record.total_work_minutes - breaks)

        rate = _overtime_rate(shift)
        overtime = record.net_work_minutes - full_day_minutes
        if rate is not None and overtime > 0:
            record.overtime_minutes = overtime
            record.is_overtime = True
            record.overtime_multiplier = rate

    # ── Schedule flags ──────────────────────────────────────────────
    if shift is not None:
        window = shift_window(shift, facts.day, facts.timezone)
        grace = timedelta(minutes=shift.grace_minutes or 0)
        if first_in is not None and first_in > window.scheduled_in + grace:
            record.is_late = True
            record.late_by_minutes = _minutes(window.scheduled_in, first_in)
        if complete:
            early_cutoff = window.scheduled_out - timedelta(
                minutes=shift.early_departure_minutes or 0,
            )
            record.is_early_departure = last_out < early_cutoff

    if complete and record.net_work_minutes < half_day_minutes:
        record.is_half_day = True

    # ── Status precedence ───────────────────────────────────────────
    if facts.leave is not None:
        record.status = AttendanceStatus.on_leave
        record.leave_request_id = facts.leave.request_id
        record.is_half_day = facts.leave.is_half_day
        unpaid = (facts.leave.leave_type or "").lower() in UNPAID_LEAVE_TYPES
        record.payout_multiplier = 0.0 if unpaid else PAYOUT_MULTIPLIERS[AttendanceStatus.on_leave]
        return record

    if facts.presence is not None:
        record.status = (
            AttendanceStatus.on_duty
            if facts.presence.request_type == RequestType.on_duty
            else AttendanceStatus.work_from_home
        )
        record.payout_multiplier = PAYOUT_MULTIPLIERS[record.status]
        return record

    if counted:
        if not complete:
            record.status = (
                AttendanceStatus.missed_punch if facts.day_closed else AttendanceStatus.present
            )
        elif record.is_half_day:
            record.status = AttendanceStatus.half_day
        elif record.is_late:
            record.status = AttendanceStatus.late
        else:
            record.status = AttendanceStatus.present

        if facts.holiday_name:
            record.status = AttendanceStatus.holiday_worked
        elif facts.is_weekly_off:
            record.status = AttendanceStatus.week_off_worked
    elif facts.holiday_name and facts.day_closed:
        record.status = AttendanceStatus.holiday
    elif facts.is_weekly_off and facts.day_closed:
        record.status = AttendanceStatus.week_off
    elif facts.day_closed:
        record.status = AttendanceStatus.absent

    if record.status is not None:
        record.payout_multiplier = PAYOUT_MULTIPLIERS[record.status]
    return record
