"""Attendance router — own, team and single-day views plus manual recompute."""


import uuid
from datetime import date

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from attendance_engine.attendance.schemas import (
    AttendanceListResponse,
    DailyAttendanceResponse,
    RecomputeRequest,
    RecomputeResponse,
)
from attendance_engine.attendance.service import AttendanceService
from attendance_engine.auth.dependencies import caller_role, get_current_user, require_role
from attendance_engine.common.constants import UserRole
from attendance_engine.database import get_db
from attendance_engine.directory.models import Employee

router = APIRouter(prefix="", tags=["attendance"])


# ── GET /me ─────────────────────────────────────────────────────────

@router.get("/me", response_model=AttendanceListResponse)
async def my_attendance(
    from_date: date = Query(..., description="Start date (inclusive)"),
    to_date: date = Query(..., description="End date (inclusive)"),
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=100),
    employee: Employee = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Get the current user's daily records with a range summary."""
    return await AttendanceService.get_my_attendance(
        db, employee.organization_id, employee.id, from_date, to_date,
        page=page, page_size=page_size,
    )


# ── GET /team ───────────────────────────────────────────────────────

@router.get("/team", response_model=AttendanceListResponse)
async def team_attendance(
    request: Request,
    from_date: date = Query(..., description="Start date (inclusive)"),
    to_date: date = Query(..., description="End date (inclusive)"),
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=100),
    employee: Employee = Depends(require_role(UserRole.manager)),
    db: AsyncSession = Depends(get_db),
):
    """Direct reports for managers; the whole organization for HR."""
    return await AttendanceService.get_team_attendance(
        db, employee.organization_id, employee, caller_role(request),
        from_date, to_date, page=page, page_size=page_size,
    )


# ── POST /recompute ─────────────────────────────────────────────────

@router.post("/recompute", response_model=RecomputeResponse)
async def recompute_day(
    body: RecomputeRequest,
    employee: Employee = Depends(require_role(UserRole.hr_admin)),
    db: AsyncSession = Depends(get_db),
):
    """Re-derive one (user, date) record from its punches and approved requests."""
    result = await AttendanceService.recompute(
        db, employee.organization_id, body.user_id, body.date, day_closed=body.day_closed,
    )
    return RecomputeResponse(
        outcome=result.outcome,
        record=(
            AttendanceService.build_record_response(result.record)
            if result.record is not None else None
        ),
    )


# ── GET /{user_id}/{day} ────────────────────────────────────────────

@router.get("/{user_id}/{day}", response_model=DailyAttendanceResponse)
async def day_record(
    user_id: uuid.UUID,
    day: date,
    request: Request,
    employee: Employee = Depends(require_role(UserRole.manager)),
    db: AsyncSession = Depends(get_db),
):
    return await AttendanceService.get_day(
        db, employee.organization_id, employee, caller_role(request), user_id, day,
    )
