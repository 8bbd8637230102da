"""Holiday lookup adapter.

Optional holidays are not treated as days off; they only matter to the
leave module of the host HR system.
"""

from __future__ import annotations

import uuid
from datetime import date
from typing import Optional

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from attendance_engine.holidays.models import Holiday


class HolidayService:

    @staticmethod
    def _scope(organization_id: uuid.UUID, branch_id: Optional[uuid.UUID]):
        branch_clause = Holiday.branch_id.is_(None)
        if branch_id is not None:
            branch_clause = or_(branch_clause, Holiday.branch_id == branch_id)
        return (
            Holiday.organization_id == organization_id,
            Holiday.is_optional.is_(False),
            branch_clause,
        )

    @staticmethod
    async def get_holiday(
        db: AsyncSession,
        organization_id: uuid.UUID,
        branch_id: Optional[uuid.UUID],
        day: date,
    ) -> Optional[Holiday]:
        """Mandatory holiday on *day* for the branch, branch-specific first."""
        result = await db.execute(
            select(Holiday)
            .where(*HolidayService._scope(organization_id, branch_id), Holiday.date == day)
            .order_by(Holiday.branch_id.is_(None))
        )
        return result.scalars().first()

    @staticmethod
    async def holidays_between(
        db: AsyncSession,
        organization_id: uuid.UUID,
        branch_id: Optional[uuid.UUID],
        start: date,
        end: date,
    ) -> dict[date, str]:
        result = await db.execute(
            select(Holiday)
            .where(
                *HolidayService._scope(organization_id, branch_id),
                Holiday.date >= start,
                Holiday.date <= end,
            )
            .order_by(Holiday.date)
        )
        holidays: dict[date, str] = {}
        for holiday in result.scalars().all():
            holidays.setdefault(holiday.date, holiday.name)
        return holidays
