"""Holiday ORM model."""

from __future__ import annotations

import uuid
from datetime import date, datetime, timezone
from typing import Optional

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from attendance_engine.database import Base


class Holiday(Base):
    """Organization-wide (``branch_id`` NULL) or branch-specific holiday."""

    __tablename__ = "holidays"
    __table_args__ = (
        sa.UniqueConstraint(
            "organization_id", "branch_id", "date", name="uq_holiday_org_branch_date",
        ),
        sa.Index("ix_holiday_org_date", "organization_id", "date"),
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
    name: Mapped[str] = mapped_column(sa.String(150), nullable=False)
    date: Mapped[date] = mapped_column(sa.Date, nullable=False)
    is_optional: Mapped[bool] = mapped_column(sa.Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )

    def __repr__(self) -> str:
        return f"<Holiday {self.name!r} {self.date}>"
