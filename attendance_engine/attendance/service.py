"""Attendance service layer — daily record recompute and read views.

Business logic:
  - ``recompute`` is the only writer of ``daily_attendance`` rows. It loads
    the full punch set and the day facts, calls ``derive_daily_record`` and
    writes back only the fields that changed
  - Row-level mutual exclusion per (user, date): insert-if-missing, then
    SELECT ... FOR UPDATE inside the caller's transaction
  - Read operations for self, team, and single-day views
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Optional, Sequence

from sqlalchemy import func, or_, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from attendance_engine.approvals.models import AttendanceRequest
from attendance_engine.attendance.derivation import (
    COUNTED_STATES,
    DERIVED_FIELDS,
    DayFacts,
    DerivedRecord,
    LeaveFact,
    PresenceFact,
    derive_daily_record,
)
from attendance_engine.attendance.models import DailyAttendance
from attendance_engine.attendance.schemas import (
    AttendanceListResponse,
    AttendanceSummary,
    DailyAttendanceResponse,
    EmployeeBrief,
)
from attendance_engine.common.constants import (
    MAX_DATE_RANGE_DAYS,
    AttendanceStatus,
    RequestStatus,
    RequestType,
    UserRole,
)
from attendance_engine.common.exceptions import (
    ForbiddenException,
    NotFoundException,
    ValidationException,
)
from attendance_engine.common.pagination import build_meta
from attendance_engine.common.timeutils import as_utc, local_today, utcnow
from attendance_engine.directory.models import Employee
from attendance_engine.directory.service import DirectoryService
from attendance_engine.holidays.service import HolidayService
from attendance_engine.punches.models import PunchEvent
from attendance_engine.shifts.resolver import is_weekly_off
from attendance_engine.shifts.schemas import ShiftBrief

logger = logging.getLogger(__name__)


@dataclass
class RecomputeResult:
    """Outcome of one recompute: created / updated / unchanged / skipped."""

    outcome: str
    record: Optional[DailyAttendance] = None

    @property
    def changed(self) -> bool:
        return self.outcome in ("created", "updated")


def _same(current: Any, new: Any) -> bool:
    if isinstance(current, datetime) or isinstance(new, datetime):
        return as_utc(current) == as_utc(new)
    if isinstance(current, float) or isinstance(new, float):
        if current is None or new is None:
            return current is new
        return abs(float(current) - float(new)) < 1e-9
    if isinstance(current, uuid.UUID) or isinstance(new, uuid.UUID):
        return (str(current) if current is not None else None) == (
            str(new) if new is not None else None
        )
    return current == new


# ═════════════════════════════════════════════════════════════════════
# AttendanceService
# ═════════════════════════════════════════════════════════════════════


class AttendanceService:
    """Async daily-attendance operations: recompute and read."""

    # ── Day facts ───────────────────────────────────────────────────

    @staticmethod
    async def _approved_request_on(
        db: AsyncSession,
        organization_id: uuid.UUID,
        user_id: uuid.UUID,
        day: date,
        request_types: Sequence[RequestType],
    ) -> Optional[AttendanceRequest]:
        result = await db.execute(
            select(AttendanceRequest)
            .where(
                AttendanceRequest.organization_id == organization_id,
                AttendanceRequest.user_id == user_id,
                AttendanceRequest.request_type.in_(list(request_types)),
                AttendanceRequest.status == RequestStatus.approved,
                AttendanceRequest.target_date <= day,
                or_(
                    AttendanceRequest.end_date.is_(None) & (AttendanceRequest.target_date == day),
                    AttendanceRequest.end_date >= day,
                ),
            )
            .order_by(AttendanceRequest.decided_at.desc())
        )
        return result.scalars().first()

    @staticmethod
    async def load_day_facts(
        db: AsyncSession,
        organization_id: uuid.UUID,
        employee: Employee,
        day: date,
        *,
        day_closed: Optional[bool] = None,
    ) -> DayFacts:
        """Collect holiday, weekly-off and approved-request facts for *day*."""
        tz_name = DirectoryService.timezone_for(employee)
        if day_closed is None:
            day_closed = day < local_today(tz_name)

        holiday = await HolidayService.get_holiday(
            db, organization_id, employee.branch_id, day,
        )
        weekly_off = is_weekly_off(employee.shift, day)

        # Leave only covers working days inside its range
        leave = None
        if holiday is None and not weekly_off:
            leave_request = await AttendanceService._approved_request_on(
                db, organization_id, employee.id, day, [RequestType.leave],
            )
            if leave_request is not None:
                leave = LeaveFact(
                    request_id=leave_request.id,
                    leave_type=leave_request.leave_type,
                    is_half_day=bool(leave_request.is_half_day),
                )

        presence = None
        presence_request = await AttendanceService._approved_request_on(
            db, organization_id, employee.id, day,
            [RequestType.work_from_home, RequestType.on_duty],
        )
        if presence_request is not None:
            presence = PresenceFact(
                request_id=presence_request.id,
                request_type=presence_request.request_type,
            )

        return DayFacts(
            day=day,
            timezone=tz_name,
            holiday_name=holiday.name if holiday is not None else None,
            is_weekly_off=weekly_off,
            leave=leave,
            presence=presence,
            day_closed=day_closed,
        )

    @staticmethod
    async def load_day_punches(
        db: AsyncSession,
        organization_id: uuid.UUID,
        user_id: uuid.UUID,
        day: date,
    ) -> Sequence[PunchEvent]:
        result = await db.execute(
            select(PunchEvent)
            .where(
                PunchEvent.organization_id == organization_id,
                PunchEvent.user_id == user_id,
                PunchEvent.attributed_date == day,
                PunchEvent.processing_state.in_(list(COUNTED_STATES)),
            )
            .order_by(PunchEvent.timestamp, PunchEvent.id)
        )
        return result.scalars().all()

    # ── Row locking ─────────────────────────────────────────────────

    @staticmethod
    async def _ensure_row(
        db: AsyncSession,
        organization_id: uuid.UUID,
        user_id: uuid.UUID,
        day: date,
    ) -> bool:
        """INSERT ... ON CONFLICT DO NOTHING; True when a row was created."""
        insert = pg_insert if db.get_bind().dialect.name == "postgresql" else sqlite_insert
        now = utcnow()
        stmt = (
            insert(DailyAttendance)
            .values(
                id=uuid.uuid4(),
                organization_id=organization_id,
                user_id=user_id,
                date=day,
                punch_ids=[],
                created_at=now,
                updated_at=now,
            )
            .on_conflict_do_nothing(index_elements=["user_id", "date"])
        )
        result = await db.execute(stmt)
        return result.rowcount == 1

    @staticmethod
    async def _lock_row(
        db: AsyncSession,
        user_id: uuid.UUID,
        day: date,
    ) -> Optional[DailyAttendance]:
        result = await db.execute(
            select(DailyAttendance)
            .where(DailyAttendance.user_id == user_id, DailyAttendance.date == day)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return result.scalars().first()

    @staticmethod
    async def lock_day(
        db: AsyncSession,
        organization_id: uuid.UUID,
        user_id: uuid.UUID,
        day: date,
    ) -> DailyAttendance:
        """Create the (user, day) row if missing and hold its row lock.

        Punch writers take this lock before their duplicate and sequence
        checks; it is released when the caller's transaction ends.
        """
        await AttendanceService._ensure_row(db, organization_id, user_id, day)
        return await AttendanceService._lock_row(db, user_id, day)

    @staticmethod
    def apply_derived(record: DailyAttendance, derived: DerivedRecord) -> list[str]:
        """Copy changed fields onto *record*; returns the changed field names."""
        changed: list[str] = []
        for name in DERIVED_FIELDS:
            new = getattr(derived, name)
            if not _same(getattr(record, name), new):
                setattr(record, name, new)
                changed.append(name)
        if changed:
            record.updated_at = utcnow()
        return changed

    # ── Recompute ───────────────────────────────────────────────────

    @staticmethod
    async def recompute(
        db: AsyncSession,
        organization_id: uuid.UUID,
        user_id: uuid.UUID,
        day: date,
        *,
        day_closed: Optional[bool] = None,
        employee: Optional[Employee] = None,
    ) -> RecomputeResult:
        """Re-derive the (user, day) record from scratch inside the caller's transaction.

        Idempotent: when nothing changed no column (``updated_at``
        included) is written.
        """
        if employee is None:
            employee = await DirectoryService.get_employee(
                db, organization_id, user_id, active_only=False,
            )

        punches = await AttendanceService.load_day_punches(db, organization_id, user_id, day)
        facts = await AttendanceService.load_day_facts(
            db, organization_id, employee, day, day_closed=day_closed,
        )
        derived = derive_daily_record(punches, employee.shift, facts)

        if derived.status is None:
            record = await AttendanceService._lock_row(db, user_id, day)
            if record is None:
                return RecomputeResult(outcome="skipped")
            changed = AttendanceService.apply_derived(record, derived)
            await db.flush()
            return RecomputeResult(outcome="updated" if changed else "unchanged", record=record)

        created = await AttendanceService._ensure_row(db, organization_id, user_id, day)
        record = await AttendanceService._lock_row(db, user_id, day)
        # A row left blank by lock_day counts as new
        created = created or record.status is None
        changed = AttendanceService.apply_derived(record, derived)
        await db.flush()

        if created:
            outcome = "created"
        else:
            outcome = "updated" if changed else "unchanged"
        if changed:
            logger.debug(
                "Daily record %s for user %s on %s: %s",
                outcome, user_id, day, ", ".join(changed),
            )
        return RecomputeResult(outcome=outcome, record=record)

    # ── Response builders ───────────────────────────────────────────

    @staticmethod
    def build_record_response(record: DailyAttendance) -> DailyAttendanceResponse:
        """Convert an ORM DailyAttendance to a response schema."""
        employee = record.__dict__.get("employee")
        shift = record.__dict__.get("shift")
        return DailyAttendanceResponse(
            id=record.id,
            user_id=record.user_id,
            date=record.date,
            status=record.status,
            first_in=as_utc(record.first_in),
            last_out=as_utc(record.last_out),
            total_work_hours=round((record.total_work_minutes or 0) / 60, 2),
            break_hours=round((record.break_minutes or 0) / 60, 2),
            net_work_hours=round((record.net_work_minutes or 0) / 60, 2),
            overtime_hours=round((record.overtime_minutes or 0) / 60, 2),
            is_late=record.is_late,
            late_by_minutes=record.late_by_minutes or 0,
            is_early_departure=record.is_early_departure,
            is_half_day=record.is_half_day,
            is_overtime=record.is_overtime,
            payout_multiplier=record.payout_multiplier or 0.0,
            overtime_multiplier=record.overtime_multiplier or 0.0,
            holiday_name=record.holiday_name,
            punch_ids=list(record.punch_ids or []),
            leave_request_id=record.leave_request_id,
            regularization_request_id=record.regularization_request_id,
            is_regularized=record.is_regularized,
            shift=ShiftBrief.model_validate(shift) if shift is not None else None,
            employee=EmployeeBrief.model_validate(employee) if employee is not None else None,
            updated_at=as_utc(record.updated_at),
        )

    @staticmethod
    def build_summary(records: Sequence[DailyAttendance]) -> AttendanceSummary:
        """Aggregate attendance statistics from a list of records."""
        summary = AttendanceSummary()
        net_minutes = 0
        overtime_minutes = 0
        worked_days = 0
        payable = 0.0

        buckets = {
            AttendanceStatus.present: "present",
            AttendanceStatus.late: "late",
            AttendanceStatus.absent: "absent",
            AttendanceStatus.half_day: "half_day",
            AttendanceStatus.on_leave: "on_leave",
            AttendanceStatus.missed_punch: "missed_punch",
            AttendanceStatus.holiday: "holidays",
            AttendanceStatus.week_off: "week_offs",
            AttendanceStatus.work_from_home: "remote",
            AttendanceStatus.on_duty: "remote",
        }

        for r in records:
            if r.status is None:
                continue
            summary.days += 1
            bucket = buckets.get(r.status)
            if bucket:
                setattr(summary, bucket, getattr(summary, bucket) + 1)
            if r.net_work_minutes:
                net_minutes += r.net_work_minutes
                worked_days += 1
            overtime_minutes += r.overtime_minutes or 0
            payable += r.payout_multiplier or 0.0

        summary.total_net_hours = round(net_minutes / 60, 2)
        summary.avg_net_hours = round(net_minutes / 60 / worked_days, 2) if worked_days else 0.0
        summary.total_overtime_hours = round(overtime_minutes / 60, 2)
        summary.payable_days = round(payable, 2)
        return summary

    @staticmethod
    def _validate_date_range(from_date: date, to_date: date) -> None:
        """Ensure date range is valid and within MAX_DATE_RANGE_DAYS."""
        if from_date > to_date:
            raise ValidationException(
                {"date_range": ["from_date must be before or equal to to_date."]}
            )
        if (to_date - from_date).days > MAX_DATE_RANGE_DAYS:
            raise ValidationException(
                {"date_range": [f"Date range cannot exceed {MAX_DATE_RANGE_DAYS} days."]}
            )

    # ── Read views ──────────────────────────────────────────────────

    @staticmethod
    async def _list_for_users(
        db: AsyncSession,
        organization_id: uuid.UUID,
        user_ids: Optional[list[uuid.UUID]],
        from_date: date,
        to_date: date,
        *,
        page: int,
        page_size: int,
    ) -> AttendanceListResponse:
        AttendanceService._validate_date_range(from_date, to_date)

        filters = [
            DailyAttendance.organization_id == organization_id,
            DailyAttendance.date >= from_date,
            DailyAttendance.date <= to_date,
        ]
        if user_ids is not None:
            if not user_ids:
                return AttendanceListResponse(
                    data=[], meta=build_meta(page, page_size, 0), summary=AttendanceSummary(),
                )
            filters.append(DailyAttendance.user_id.in_(user_ids))

        total = (
            await db.execute(select(func.count()).select_from(DailyAttendance).where(*filters))
        ).scalar_one()

        result = await db.execute(
            select(DailyAttendance)
            .where(*filters)
            .options(selectinload(DailyAttendance.shift), selectinload(DailyAttendance.employee))
            .order_by(DailyAttendance.date.desc(), DailyAttendance.user_id)
            .offset((page - 1) * page_size)
            .limit(page_size)
        )
        records = result.scalars().all()

        # Summary covers the full range, not just the current page
        all_records = (
            await db.execute(select(DailyAttendance).where(*filters))
        ).scalars().all()

        return AttendanceListResponse(
            data=[AttendanceService.build_record_response(r) for r in records],
            meta=build_meta(page, page_size, total),
            summary=AttendanceService.build_summary(all_records),
        )

    @staticmethod
    async def get_my_attendance(
        db: AsyncSession,
        organization_id: uuid.UUID,
        user_id: uuid.UUID,
        from_date: date,
        to_date: date,
        *,
        page: int = 1,
        page_size: int = 50,
    ) -> AttendanceListResponse:
        """Own records in a date range with summary."""
        return await AttendanceService._list_for_users(
            db, organization_id, [user_id], from_date, to_date,
            page=page, page_size=page_size,
        )

    @staticmethod
    async def get_team_attendance(
        db: AsyncSession,
        organization_id: uuid.UUID,
        manager: Employee,
        role: UserRole,
        from_date: date,
        to_date: date,
        *,
        page: int = 1,
        page_size: int = 50,
    ) -> AttendanceListResponse:
        """Direct reports for managers; the whole organization for HR."""
        user_ids: Optional[list[uuid.UUID]] = None
        if role not in (UserRole.hr_admin, UserRole.system_admin):
            user_ids = await DirectoryService.direct_report_ids(db, organization_id, manager.id)
        return await AttendanceService._list_for_users(
            db, organization_id, user_ids, from_date, to_date,
            page=page, page_size=page_size,
        )

    @staticmethod
    async def get_day(
        db: AsyncSession,
        organization_id: uuid.UUID,
        requester: Employee,
        role: UserRole,
        user_id: uuid.UUID,
        day: date,
    ) -> DailyAttendanceResponse:
        """One user's record for a date; managers see only direct reports."""
        if role not in (UserRole.hr_admin, UserRole.system_admin) and user_id != requester.id:
            reports = await DirectoryService.direct_report_ids(
                db, organization_id, requester.id,
            )
            if user_id not in reports:
                raise ForbiddenException(detail="You can only view your direct reports.")

        result = await db.execute(
            select(DailyAttendance)
            .where(
                DailyAttendance.organization_id == organization_id,
                DailyAttendance.user_id == user_id,
                DailyAttendance.date == day,
            )
            .options(selectinload(DailyAttendance.shift), selectinload(DailyAttendance.employee))
        )
        record = result.scalars().first()
        if record is None:
            raise NotFoundException("DailyAttendance", f"{user_id}/{day.isoformat()}")
        return AttendanceService.build_record_response(record)

    @staticmethod
    async def get_record(
        db: AsyncSession,
        organization_id: uuid.UUID,
        user_id: uuid.UUID,
        day: date,
    ) -> Optional[DailyAttendance]:
        result = await db.execute(
            select(DailyAttendance).where(
                DailyAttendance.organization_id == organization_id,
                DailyAttendance.user_id == user_id,
                DailyAttendance.date == day,
            )
        )
        return result.scalars().first()
