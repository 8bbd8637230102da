"""Directory ORM models: Branch, Employee.

Reference data owned by the tenant/HR system. The attendance engine only
reads these rows; they are provisioned externally.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Optional

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from attendance_engine.common.constants import UserRole
from attendance_engine.common.types import str_enum
from attendance_engine.database import Base

if TYPE_CHECKING:
    from attendance_engine.shifts.models import Shift


# ═════════════════════════════════════════════════════════════════════
# Branch
# ═════════════════════════════════════════════════════════════════════


class Branch(Base):
    """Work-site with an optional geofence reference point."""

    __tablename__ = "branches"
    __table_args__ = (
        sa.UniqueConstraint("organization_id", "name", name="uq_branch_org_name"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    organization_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), nullable=False, index=True,
    )
    name: Mapped[str] = mapped_column(sa.String(100), nullable=False)
    timezone: Mapped[str] = mapped_column(sa.String(50), default="Asia/Kolkata")
    latitude: Mapped[Optional[float]] = mapped_column(sa.Float)
    longitude: Mapped[Optional[float]] = mapped_column(sa.Float)
    geofence_radius_meters: Mapped[float] = mapped_column(sa.Float, default=100.0)
    is_active: Mapped[bool] = mapped_column(sa.Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc),
    )

    # ── Relationships ───────────────────────────────────────────────
    employees: Mapped[list[Employee]] = relationship(back_populates="branch")

    @property
    def has_geofence(self) -> bool:
        return self.latitude is not None and self.longitude is not None

    def __repr__(self) -> str:
        return f"<Branch {self.name!r}>"


# ═════════════════════════════════════════════════════════════════════
# Employee
# ═════════════════════════════════════════════════════════════════════


class Employee(Base):
    """Attendance subject: tenant, branch, shift, reporting line, device id."""

    __tablename__ = "employees"
    __table_args__ = (
        sa.UniqueConstraint(
            "organization_id", "employee_code", name="uq_employee_org_code",
        ),
        sa.UniqueConstraint(
            "organization_id", "machine_user_id", name="uq_employee_org_machine_user",
        ),
        sa.Index("ix_employees_org_active", "organization_id", "is_active"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    organization_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), nullable=False,
    )
    branch_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("branches.id"),
    )
    employee_code: Mapped[str] = mapped_column(sa.String(30), nullable=False)
    first_name: Mapped[str] = mapped_column(sa.String(100), nullable=False)
    last_name: Mapped[Optional[str]] = mapped_column(sa.String(100))
    email: Mapped[str] = mapped_column(sa.String(200), nullable=False)
    role: Mapped[UserRole] = mapped_column(
        str_enum(UserRole, "user_role"), default=UserRole.employee,
    )
    reporting_manager_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("employees.id"),
    )
    shift_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("shifts.id"),
    )
    machine_user_id: Mapped[Optional[str]] = mapped_column(sa.String(50))
    is_active: Mapped[bool] = mapped_column(sa.Boolean, default=True)
    attendance_enabled: Mapped[bool] = mapped_column(sa.Boolean, default=True)
    geofence_required: Mapped[bool] = mapped_column(sa.Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc),
    )

    # ── Relationships ───────────────────────────────────────────────
    branch: Mapped[Optional[Branch]] = relationship(back_populates="employees")
    shift: Mapped[Optional["Shift"]] = relationship()
    reporting_manager: Mapped[Optional[Employee]] = relationship(
        remote_side=[id], foreign_keys=[reporting_manager_id],
    )

    @property
    def display_name(self) -> str:
        return " ".join(p for p in (self.first_name, self.last_name) if p)

    def __repr__(self) -> str:
        return f"<Employee {self.employee_code} ({self.display_name})>"
