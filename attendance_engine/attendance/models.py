"""Daily attendance ORM model — one canonical row per (user, date)."""

from __future__ import annotations

import uuid
from datetime import date, datetime, timezone
from typing import TYPE_CHECKING, Optional

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from attendance_engine.common.constants import AttendanceStatus
from attendance_engine.common.types import str_enum
from attendance_engine.database import Base

if TYPE_CHECKING:
    from attendance_engine.directory.models import Employee
    from attendance_engine.shifts.models import Shift


class DailyAttendance(Base):
    """Derived daily record. Written only by ``AttendanceService.recompute``.

    ``status`` is NULL while a row exists but nothing currently applies to
    the date (for example after an approved future leave is cancelled).
    """

    __tablename__ = "daily_attendance"
    __table_args__ = (
        sa.UniqueConstraint("user_id", "date", name="uq_daily_attendance_user_date"),
        sa.Index("ix_daily_attendance_org_date", "organization_id", "date"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    organization_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), nullable=False,
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("employees.id"), nullable=False,
    )
    date: Mapped[date] = mapped_column(sa.Date, nullable=False)
    shift_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("shifts.id"),
    )
    status: Mapped[Optional[AttendanceStatus]] = mapped_column(
        str_enum(AttendanceStatus, "attendance_status"),
    )
    first_in: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))
    last_out: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))
    total_work_minutes: Mapped[int] = mapped_column(sa.Integer, default=0)
    break_minutes: Mapped[int] = mapped_column(sa.Integer, default=0)
    net_work_minutes: Mapped[int] = mapped_column(sa.Integer, default=0)
    overtime_minutes: Mapped[int] = mapped_column(sa.Integer, default=0)
    is_late: Mapped[bool] = mapped_column(sa.Boolean, default=False)
    late_by_minutes: Mapped[int] = mapped_column(sa.Integer, default=0)
    is_early_departure: Mapped[bool] = mapped_column(sa.Boolean, default=False)
    is_half_day: Mapped[bool] = mapped_column(sa.Boolean, default=False)
    is_overtime: Mapped[bool] = mapped_column(sa.Boolean, default=False)
    payout_multiplier: Mapped[float] = mapped_column(sa.Float, default=0.0)
    overtime_multiplier: Mapped[float] = mapped_column(sa.Float, default=0.0)
    holiday_name: Mapped[Optional[str]] = mapped_column(sa.String(150))
    punch_ids: Mapped[list] = mapped_column(JSONB, default=list)
    leave_request_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True))
    regularization_request_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True),
    )
    is_regularized: Mapped[bool] = mapped_column(sa.Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )

    # Relationships
    employee: Mapped[Employee] = relationship()
    shift: Mapped[Optional[Shift]] = relationship()

    def __repr__(self) -> str:
        return f"<DailyAttendance user={self.user_id} {self.date} {self.status}>"
