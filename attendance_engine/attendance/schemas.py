"""Daily attendance Pydantic v2 schemas.

Minutes are stored; responses expose hours rounded to two decimals.
"""

import uuid
from datetime import date, datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from attendance_engine.common.constants import AttendanceStatus
from attendance_engine.common.pagination import PaginationMeta
from attendance_engine.shifts.schemas import ShiftBrief


class EmployeeBrief(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    employee_code: str
    display_name: str


class DailyAttendanceResponse(BaseModel):
    """Single derived attendance record for a day."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    user_id: uuid.UUID
    date: date
    status: Optional[AttendanceStatus] = None
    first_in: Optional[datetime] = None
    last_out: Optional[datetime] = None
    total_work_hours: float = 0.0
    break_hours: float = 0.0
    net_work_hours: float = 0.0
    overtime_hours: float = 0.0
    is_late: bool = False
    late_by_minutes: int = 0
    is_early_departure: bool = False
    is_half_day: bool = False
    is_overtime: bool = False
    payout_multiplier: float = 0.0
    overtime_multiplier: float = 0.0
    holiday_name: Optional[str] = None
    punch_ids: list[str] = []
    leave_request_id: Optional[uuid.UUID] = None
    regularization_request_id: Optional[uuid.UUID] = None
    is_regularized: bool = False
    shift: Optional[ShiftBrief] = None
    employee: Optional[EmployeeBrief] = None
    updated_at: Optional[datetime] = None


class AttendanceSummary(BaseModel):
    """Aggregated statistics for a date range."""

    days: int = 0
    present: int = 0
    late: int = 0
    absent: int = 0
    half_day: int = 0
    on_leave: int = 0
    missed_punch: int = 0
    holidays: int = 0
    week_offs: int = 0
    remote: int = 0
    total_net_hours: float = 0.0
    avg_net_hours: float = 0.0
    total_overtime_hours: float = 0.0
    payable_days: float = 0.0


class AttendanceListResponse(BaseModel):
    data: list[DailyAttendanceResponse]
    meta: PaginationMeta
    summary: AttendanceSummary


class RecomputeRequest(BaseModel):
    user_id: uuid.UUID
    date: date
    day_closed: Optional[bool] = Field(
        None, description="Force closed/open semantics; defaults to date < today.",
    )


class RecomputeResponse(BaseModel):
    outcome: str
    record: Optional[DailyAttendanceResponse] = None
