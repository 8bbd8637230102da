"""Directory service — subject resolution and reporting chains.

Read-only adapter over the externally-provisioned ``employees`` and
``branches`` tables. Every lookup is scoped by an explicit organization id.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from attendance_engine.common.constants import UserRole
from attendance_engine.common.exceptions import NotFoundException
from attendance_engine.config import settings
from attendance_engine.directory.models import Branch, Employee


@dataclass(frozen=True)
class ChainEntry:
    """One approver slot proposed for a new request."""

    user_id: uuid.UUID
    role: str
    order: int
    is_mandatory: bool = True


class DirectoryService:
    """Async lookups against the user directory."""

    @staticmethod
    def timezone_for(employee: Employee) -> str:
        if employee.branch is not None and employee.branch.timezone:
            return employee.branch.timezone
        return settings.DEFAULT_TIMEZONE

    @staticmethod
    async def get_employee(
        db: AsyncSession,
        organization_id: uuid.UUID,
        user_id: uuid.UUID,
        *,
        active_only: bool = True,
    ) -> Employee:
        """Load an employee (with branch + shift) inside the tenant or raise 404."""
        query = (
            select(Employee)
            .where(
                Employee.id == user_id,
                Employee.organization_id == organization_id,
            )
            .options(selectinload(Employee.branch), selectinload(Employee.shift))
        )
        if active_only:
            query = query.where(Employee.is_active.is_(True))
        employee = (await db.execute(query)).scalars().first()
        if employee is None:
            raise NotFoundException("Employee", user_id)
        return employee

    @staticmethod
    async def resolve_machine_user(
        db: AsyncSession,
        organization_id: uuid.UUID,
        machine_user_id: str,
    ) -> Optional[Employee]:
        """Map a device-scoped identifier to an active employee, or None."""
        result = await db.execute(
            select(Employee)
            .where(
                Employee.organization_id == organization_id,
                Employee.machine_user_id == str(machine_user_id),
                Employee.is_active.is_(True),
            )
            .options(selectinload(Employee.branch), selectinload(Employee.shift))
        )
        return result.scalars().first()

    @staticmethod
    async def get_branch(
        db: AsyncSession,
        organization_id: uuid.UUID,
        branch_id: Optional[uuid.UUID],
    ) -> Optional[Branch]:
        if branch_id is None:
            return None
        result = await db.execute(
            select(Branch).where(
                Branch.id == branch_id,
                Branch.organization_id == organization_id,
            )
        )
        return result.scalars().first()

    @staticmethod
    async def list_attendance_users(
        db: AsyncSession,
        organization_id: uuid.UUID,
    ) -> Sequence[Employee]:
        """Active, attendance-enabled employees of an organization."""
        result = await db.execute(
            select(Employee)
            .where(
                Employee.organization_id == organization_id,
                Employee.is_active.is_(True),
                Employee.attendance_enabled.is_(True),
            )
            .order_by(Employee.employee_code)
        )
        return result.scalars().all()

    @staticmethod
    async def list_organization_ids(db: AsyncSession) -> list[uuid.UUID]:
        result = await db.execute(
            select(Employee.organization_id)
            .where(Employee.is_active.is_(True))
            .distinct()
        )
        return [row[0] for row in result.all()]

    @staticmethod
    async def direct_report_ids(
        db: AsyncSession,
        organization_id: uuid.UUID,
        manager_id: uuid.UUID,
    ) -> list[uuid.UUID]:
        result = await db.execute(
            select(Employee.id).where(
                Employee.organization_id == organization_id,
                Employee.reporting_manager_id == manager_id,
                Employee.is_active.is_(True),
            )
        )
        return [row[0] for row in result.all()]

    @staticmethod
    async def build_approval_chain(
        db: AsyncSession,
        organization_id: uuid.UUID,
        employee: Employee,
    ) -> list[ChainEntry]:
        """Direct manager first, then the organization's HR approver.

        The submitter is never placed in their own chain.
        """
        chain: list[ChainEntry] = []

        if employee.reporting_manager_id and employee.reporting_manager_id != employee.id:
            manager = (
                await db.execute(
                    select(Employee).where(
                        Employee.id == employee.reporting_manager_id,
                        Employee.organization_id == organization_id,
                        Employee.is_active.is_(True),
                    )
                )
            ).scalars().first()
            if manager is not None:
                chain.append(ChainEntry(user_id=manager.id, role="manager", order=1))

        taken = {entry.user_id for entry in chain} | {employee.id}
        hr_result = await db.execute(
            select(Employee)
            .where(
                Employee.organization_id == organization_id,
                Employee.role == UserRole.hr_admin,
                Employee.is_active.is_(True),
            )
            .order_by(Employee.employee_code)
        )
        for hr in hr_result.scalars().all():
            if hr.id not in taken:
                chain.append(ChainEntry(user_id=hr.id, role="hr", order=len(chain) + 1))
                break

        return chain
