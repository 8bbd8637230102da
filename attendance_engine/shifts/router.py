"""Shift router — list and create shifts for the caller's organization."""


from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from attendance_engine.auth.dependencies import get_current_user, require_role
from attendance_engine.common.constants import UserRole
from attendance_engine.database import get_db
from attendance_engine.directory.models import Employee
from attendance_engine.shifts.schemas import ShiftCreate, ShiftResponse
from attendance_engine.shifts.service import ShiftService

router = APIRouter(prefix="", tags=["shifts"])


# ── GET / ───────────────────────────────────────────────────────────

@router.get("", response_model=list[ShiftResponse])
async def list_shifts(
    is_active: Optional[bool] = Query(True),
    employee: Employee = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """List the organization's shifts."""
    return await ShiftService.list_shifts(
        db, employee.organization_id, is_active=is_active,
    )


# ── POST / ──────────────────────────────────────────────────────────

@router.post("", response_model=ShiftResponse, status_code=201)
async def create_shift(
    body: ShiftCreate,
    employee: Employee = Depends(require_role(UserRole.hr_admin)),
    db: AsyncSession = Depends(get_db),
):
    """Create a shift. Existing shifts are never edited; reassign users instead."""
    return await ShiftService.create_shift(db, employee.organization_id, body)
