"""Shift service — load a subject's shift and attribute punches to dates."""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import date, datetime
from typing import Optional, Sequence

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from attendance_engine.common.exceptions import ConflictError
from attendance_engine.config import settings
from attendance_engine.directory.models import Employee
from attendance_engine.directory.service import DirectoryService
from attendance_engine.shifts.models import Shift
from attendance_engine.shifts.resolver import attribute_date
from attendance_engine.shifts.schemas import ShiftCreate


@dataclass(frozen=True)
class ShiftResolution:
    shift: Optional[Shift]
    attributed_date: date
    timezone: str


class ShiftService:
    """Async shift lookups plus the resolver entry point."""

    @staticmethod
    async def get_for_employee(
        db: AsyncSession,
        organization_id: uuid.UUID,
        employee: Employee,
    ) -> Optional[Shift]:
        if employee.shift_id is None:
            return None
        result = await db.execute(
            select(Shift).where(
                Shift.id == employee.shift_id,
                Shift.organization_id == organization_id,
            )
        )
        return result.scalars().first()

    @staticmethod
    async def resolve(
        db: AsyncSession,
        organization_id: uuid.UUID,
        employee: Employee,
        timestamp: datetime,
    ) -> ShiftResolution:
        """Return (shift, attributed date) for a punch by *employee* at *timestamp*."""
        shift = await ShiftService.get_for_employee(db, organization_id, employee)
        tz_name = DirectoryService.timezone_for(employee)
        return ShiftResolution(
            shift=shift,
            attributed_date=attribute_date(
                timestamp, shift, tz_name, settings.NIGHT_SHIFT_BUFFER_HOURS,
            ),
            timezone=tz_name,
        )

    @staticmethod
    async def list_shifts(
        db: AsyncSession,
        organization_id: uuid.UUID,
        *,
        is_active: Optional[bool] = True,
    ) -> Sequence[Shift]:
        query = select(Shift).where(Shift.organization_id == organization_id)
        if is_active is not None:
            query = query.where(Shift.is_active == is_active)
        result = await db.execute(query.order_by(Shift.name))
        return result.scalars().all()

    @staticmethod
    async def create_shift(
        db: AsyncSession,
        organization_id: uuid.UUID,
        data: ShiftCreate,
    ) -> Shift:
        existing = await db.execute(
            select(Shift.id).where(
                Shift.organization_id == organization_id,
                Shift.name == data.name,
            )
        )
        if existing.first() is not None:
            raise ConflictError("name", data.name)

        shift = Shift(organization_id=organization_id, **data.model_dump())
        db.add(shift)
        try:
            await db.flush()
        except IntegrityError:
            raise ConflictError("name", data.name)
        return shift
