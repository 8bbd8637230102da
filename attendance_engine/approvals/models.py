"""Approval workflow ORM models: AttendanceRequest, RequestApprover, RequestHistory."""

from __future__ import annotations

import uuid
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import TYPE_CHECKING, Optional

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from attendance_engine.common.constants import (
    ApproverStatus,
    RequestPriority,
    RequestStatus,
    RequestSubType,
    RequestType,
)
from attendance_engine.common.types import str_enum
from attendance_engine.database import Base

if TYPE_CHECKING:
    from attendance_engine.directory.models import Employee

_OPEN_STATUS_CLAUSE = sa.text("status IN ('pending', 'under_review')")


class AttendanceRequest(Base):
    """Regularization or leave request driven through the approver chain."""

    __tablename__ = "attendance_requests"
    __table_args__ = (
        sa.Index(
            "uq_request_user_date_open",
            "user_id",
            "target_date",
            unique=True,
            postgresql_where=_OPEN_STATUS_CLAUSE,
            sqlite_where=_OPEN_STATUS_CLAUSE,
        ),
        sa.Index("ix_request_org_status", "organization_id", "status"),
        sa.Index("ix_request_user_type", "user_id", "request_type"),
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
    request_type: Mapped[RequestType] = mapped_column(
        str_enum(RequestType, "request_type"), nullable=False,
    )
    sub_type: Mapped[Optional[RequestSubType]] = mapped_column(
        str_enum(RequestSubType, "request_sub_type"),
    )
    target_date: Mapped[date] = mapped_column(sa.Date, nullable=False)
    end_date: Mapped[Optional[date]] = mapped_column(sa.Date)

    # ── Leave ───────────────────────────────────────────────────────
    leave_type: Mapped[Optional[str]] = mapped_column(sa.String(50))
    is_half_day: Mapped[bool] = mapped_column(sa.Boolean, default=False)
    days_count: Mapped[Optional[Decimal]] = mapped_column(sa.Numeric(5, 1))
    balance_before: Mapped[Optional[Decimal]] = mapped_column(sa.Numeric(5, 1))
    balance_after: Mapped[Optional[Decimal]] = mapped_column(sa.Numeric(5, 1))
    reversal_of_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("attendance_requests.id"),
    )

    # ── Correction payload ──────────────────────────────────────────
    new_first_in: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))
    new_last_out: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))
    old_first_in: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))
    old_last_out: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))
    reason: Mapped[str] = mapped_column(sa.Text, nullable=False)

    # ── Workflow ────────────────────────────────────────────────────
    status: Mapped[RequestStatus] = mapped_column(
        str_enum(RequestStatus, "request_status"), default=RequestStatus.pending,
    )
    priority: Mapped[RequestPriority] = mapped_column(
        str_enum(RequestPriority, "request_priority"), default=RequestPriority.medium,
    )
    source: Mapped[str] = mapped_column(sa.String(20), default="web")
    approval_required: Mapped[int] = mapped_column(sa.Integer, default=0)
    current_approver_level: Mapped[Optional[int]] = mapped_column(sa.Integer)
    submitted_at: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))
    sla_due_at: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))
    is_overdue: Mapped[bool] = mapped_column(sa.Boolean, default=False)
    response_time_hours: Mapped[Optional[float]] = mapped_column(sa.Float)
    linked_attendance_ids: Mapped[list] = mapped_column(JSONB, default=list)
    linked_punch_ids: Mapped[list] = mapped_column(JSONB, default=list)

    decided_at: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))
    decided_by: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True))
    rejection_reason: Mapped[Optional[str]] = mapped_column(sa.Text)
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))
    cancelled_by: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True))
    cancellation_reason: Mapped[Optional[str]] = mapped_column(sa.Text)

    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )

    # Relationships
    employee: Mapped[Employee] = relationship(foreign_keys=[user_id])
    approvers: Mapped[list[RequestApprover]] = relationship(
        back_populates="request",
        cascade="all, delete-orphan",
        order_by="RequestApprover.order",
    )

    @property
    def last_date(self) -> date:
        return self.end_date or self.target_date

    def __repr__(self) -> str:
        return f"<AttendanceRequest {self.request_type} {self.target_date} {self.status}>"


class RequestApprover(Base):
    """One slot in a request's ordered approver chain."""

    __tablename__ = "request_approvers"
    __table_args__ = (
        sa.Index("ix_request_approver_pending", "approver_id", "status"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    request_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        sa.ForeignKey("attendance_requests.id", ondelete="CASCADE"),
        nullable=False,
    )
    approver_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("employees.id"), nullable=False,
    )
    role: Mapped[str] = mapped_column(sa.String(30), nullable=False)
    status: Mapped[ApproverStatus] = mapped_column(
        str_enum(ApproverStatus, "approver_status"), default=ApproverStatus.pending,
    )
    order: Mapped[int] = mapped_column(sa.Integer, nullable=False)
    is_mandatory: Mapped[bool] = mapped_column(sa.Boolean, default=True)
    comments: Mapped[Optional[str]] = mapped_column(sa.Text)
    forwarded_to_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("employees.id"),
    )
    acted_at: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )

    # Relationships
    request: Mapped[AttendanceRequest] = relationship(back_populates="approvers")


class RequestHistory(Base):
    """Append-only action log for a request."""

    __tablename__ = "request_history"
    __table_args__ = (
        sa.Index("ix_request_history_request", "request_id", "created_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    request_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        sa.ForeignKey("attendance_requests.id", ondelete="CASCADE"),
        nullable=False,
    )
    action: Mapped[str] = mapped_column(sa.String(30), nullable=False)
    actor_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True))
    remarks: Mapped[Optional[str]] = mapped_column(sa.Text)
    old_status: Mapped[Optional[str]] = mapped_column(sa.String(20))
    new_status: Mapped[Optional[str]] = mapped_column(sa.String(20))
    extra: Mapped[Optional[dict]] = mapped_column("metadata", JSONB)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )
