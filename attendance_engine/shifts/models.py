"""Shift ORM model."""

from __future__ import annotations

import uuid
from datetime import datetime, time, timezone

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column

from attendance_engine.database import Base


class Shift(Base):
    __tablename__ = "shifts"
    __table_args__ = (
        sa.UniqueConstraint("organization_id", "name", name="uq_shift_org_name"),
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
    start_time: Mapped[time] = mapped_column(sa.Time, nullable=False)
    end_time: Mapped[time] = mapped_column(sa.Time, nullable=False)
    break_minutes: Mapped[int] = mapped_column(sa.Integer, default=60)
    grace_minutes: Mapped[int] = mapped_column(sa.Integer, default=15)
    early_departure_minutes: Mapped[int] = mapped_column(sa.Integer, default=30)
    half_day_minutes: Mapped[int] = mapped_column(sa.Integer, default=240)
    full_day_minutes: Mapped[int] = mapped_column(sa.Integer, default=480)
    is_night_shift: Mapped[bool] = mapped_column(sa.Boolean, default=False)
    weekly_offs: Mapped[list] = mapped_column(JSONB, default=lambda: [5, 6])
    overtime_enabled: Mapped[bool] = mapped_column(sa.Boolean, default=True)
    overtime_multiplier: Mapped[float] = mapped_column(sa.Float, default=1.5)
    night_overtime_multiplier: Mapped[float] = mapped_column(sa.Float, default=2.0)
    is_active: Mapped[bool] = mapped_column(sa.Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )

    def __repr__(self) -> str:
        return f"<Shift {self.name!r} {self.start_time}-{self.end_time}>"
