"""Leave balance ORM model — the local ledger behind LeaveBalanceService."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from decimal import Decimal

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from attendance_engine.database import Base


class LeaveBalance(Base):
    __tablename__ = "leave_balances"
    __table_args__ = (
        sa.UniqueConstraint(
            "user_id", "leave_type", "year", name="uq_leave_balance",
        ),
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
    leave_type: Mapped[str] = mapped_column(sa.String(50), nullable=False)
    year: Mapped[int] = mapped_column(sa.Integer, nullable=False)
    allotted: Mapped[Decimal] = mapped_column(sa.Numeric(5, 1), default=Decimal("0"))
    used: Mapped[Decimal] = mapped_column(sa.Numeric(5, 1), default=Decimal("0"))
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )

    @property
    def current_balance(self) -> Decimal:
        return Decimal(str(self.allotted or 0)) - Decimal(str(self.used or 0))
