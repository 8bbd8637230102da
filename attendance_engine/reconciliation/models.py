"""Reconciliation ORM model: one row per batch run."""

from __future__ import annotations

import uuid
from datetime import date, datetime, timezone
from typing import Optional

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column

from attendance_engine.common.constants import ReconciliationStatus
from attendance_engine.common.types import str_enum
from attendance_engine.database import Base


class ReconciliationRun(Base):
    """Counts and failures of a nightly (or manual) reconciliation sweep."""

    __tablename__ = "reconciliation_runs"
    __table_args__ = (
        sa.Index("ix_reconciliation_org_date", "organization_id", "target_date"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    organization_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), nullable=False,
    )
    target_date: Mapped[date] = mapped_column(sa.Date, nullable=False)
    status: Mapped[ReconciliationStatus] = mapped_column(
        str_enum(ReconciliationStatus, "reconciliation_status"),
        default=ReconciliationStatus.running,
    )
    triggered_by: Mapped[str] = mapped_column(sa.String(20), default="api")
    actor_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True))

    users_total: Mapped[int] = mapped_column(sa.Integer, default=0)
    created_count: Mapped[int] = mapped_column(sa.Integer, default=0)
    updated_count: Mapped[int] = mapped_column(sa.Integer, default=0)
    unchanged_count: Mapped[int] = mapped_column(sa.Integer, default=0)
    skipped_count: Mapped[int] = mapped_column(sa.Integer, default=0)
    failed_count: Mapped[int] = mapped_column(sa.Integer, default=0)
    failed_user_ids: Mapped[list] = mapped_column(JSONB, default=list)
    orphans_reattributed: Mapped[int] = mapped_column(sa.Integer, default=0)
    overdue_flagged: Mapped[int] = mapped_column(sa.Integer, default=0)

    started_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )
    finished_at: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))

    def __repr__(self) -> str:
        return f"<ReconciliationRun {self.target_date} {self.status}>"
