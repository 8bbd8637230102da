"""Leave-balance adapter — check / debit / credit and day counting.

The ledger itself belongs to the host HR system; this default adapter keeps
one ``LeaveBalance`` row per (user, leave type, year). Unpaid leave types
are never balance-limited.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from attendance_engine.common.constants import UNPAID_LEAVE_TYPES
from attendance_engine.common.exceptions import ValidationException
from attendance_engine.common.timeutils import date_range
from attendance_engine.leave.models import LeaveBalance


@dataclass(frozen=True)
class BalanceCheck:
    has_balance: bool
    balance: Decimal
    new_balance: Decimal


def calculate_leave_days(
    start: date,
    end: date,
    weekly_offs: set[int],
    holidays: set[date],
    *,
    is_half_day: bool = False,
) -> Decimal:
    """Working days in [start, end], skipping weekly offs and holidays.

    A half-day request covers a single date and counts 0.5.
    """
    total = Decimal("0")
    for day in date_range(start, end):
        if day.weekday() in weekly_offs or day in holidays:
            continue
        total += Decimal("1")
    if is_half_day and total > 0:
        return Decimal("0.5")
    return total


class LeaveBalanceService:

    @staticmethod
    def is_unpaid(leave_type: Optional[str]) -> bool:
        return (leave_type or "").lower() in UNPAID_LEAVE_TYPES

    @staticmethod
    async def _get_balance(
        db: AsyncSession,
        organization_id: uuid.UUID,
        user_id: uuid.UUID,
        leave_type: str,
        year: int,
        *,
        for_update: bool = False,
    ) -> Optional[LeaveBalance]:
        query = select(LeaveBalance).where(
            LeaveBalance.organization_id == organization_id,
            LeaveBalance.user_id == user_id,
            LeaveBalance.leave_type == leave_type,
            LeaveBalance.year == year,
        )
        if for_update:
            query = query.with_for_update()
        return (await db.execute(query)).scalars().first()

    @staticmethod
    async def check(
        db: AsyncSession,
        organization_id: uuid.UUID,
        user_id: uuid.UUID,
        leave_type: str,
        days: Decimal,
        *,
        year: Optional[int] = None,
    ) -> BalanceCheck:
        days = Decimal(str(days))
        if LeaveBalanceService.is_unpaid(leave_type):
            return BalanceCheck(has_balance=True, balance=Decimal("0"), new_balance=Decimal("0"))

        year = year or datetime.now(timezone.utc).year
        row = await LeaveBalanceService._get_balance(
            db, organization_id, user_id, leave_type, year,
        )
        balance = row.current_balance if row is not None else Decimal("0")
        return BalanceCheck(
            has_balance=balance >= days,
            balance=balance,
            new_balance=balance - days,
        )

    @staticmethod
    async def debit(
        db: AsyncSession,
        organization_id: uuid.UUID,
        user_id: uuid.UUID,
        leave_type: str,
        days: Decimal,
        *,
        year: int,
    ) -> Decimal:
        """Consume *days*; returns the balance afterwards."""
        days = Decimal(str(days))
        if LeaveBalanceService.is_unpaid(leave_type):
            return Decimal("0")

        row = await LeaveBalanceService._get_balance(
            db, organization_id, user_id, leave_type, year, for_update=True,
        )
        if row is None or row.current_balance < days:
            raise ValidationException(
                {"leave_type": [f"Insufficient '{leave_type}' balance for {days} day(s)."]}
            )
        row.used = Decimal(str(row.used or 0)) + days
        row.updated_at = datetime.now(timezone.utc)
        await db.flush()
        return row.current_balance

    @staticmethod
    async def credit(
        db: AsyncSession,
        organization_id: uuid.UUID,
        user_id: uuid.UUID,
        leave_type: str,
        days: Decimal,
        *,
        year: int,
    ) -> Decimal:
        """Return *days* to the balance (cancellation or reversal)."""
        days = Decimal(str(days))
        if LeaveBalanceService.is_unpaid(leave_type):
            return Decimal("0")

        row = await LeaveBalanceService._get_balance(
            db, organization_id, user_id, leave_type, year, for_update=True,
        )
        if row is None:
            return Decimal("0")
        row.used = max(Decimal("0"), Decimal(str(row.used or 0)) - days)
        row.updated_at = datetime.now(timezone.utc)
        await db.flush()
        return row.current_balance
