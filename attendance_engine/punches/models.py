"""Punch ORM models: AttendanceMachine, PunchEvent."""

from __future__ import annotations

import uuid
from datetime import date, datetime, timezone
from typing import Optional

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import INET, JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from attendance_engine.common.constants import (
    MachineAuthMode,
    MachineStatus,
    ProcessingState,
    ProviderType,
    PunchSource,
    PunchType,
    VerificationState,
)
from attendance_engine.common.types import str_enum
from attendance_engine.database import Base


class AttendanceMachine(Base):
    """Registered biometric / RFID terminal."""

    __tablename__ = "attendance_machines"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    organization_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), nullable=False, index=True,
    )
    branch_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("branches.id"),
    )
    name: Mapped[str] = mapped_column(sa.String(100), nullable=False)
    serial_number: Mapped[Optional[str]] = mapped_column(sa.String(100))
    provider_type: Mapped[ProviderType] = mapped_column(
        str_enum(ProviderType, "provider_type"), default=ProviderType.generic,
    )
    api_key: Mapped[str] = mapped_column(sa.String(80), unique=True, nullable=False)
    api_secret: Mapped[str] = mapped_column(sa.String(128), nullable=False)
    auth_mode: Mapped[MachineAuthMode] = mapped_column(
        str_enum(MachineAuthMode, "machine_auth_mode"), default=MachineAuthMode.key,
    )
    ip_address: Mapped[Optional[str]] = mapped_column(INET)
    status: Mapped[MachineStatus] = mapped_column(
        str_enum(MachineStatus, "machine_status"), default=MachineStatus.active,
    )
    last_sync_at: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))
    sync_count: Mapped[int] = mapped_column(sa.Integer, default=0)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )

    def __repr__(self) -> str:
        return f"<AttendanceMachine {self.name!r} ({self.provider_type})>"


class PunchEvent(Base):
    """Append-only punch log. Rows are never deleted."""

    __tablename__ = "punch_events"
    __table_args__ = (
        sa.Index("ix_punch_user_date", "user_id", "attributed_date"),
        sa.Index("ix_punch_user_type_ts", "user_id", "punch_type", "timestamp"),
        sa.Index("ix_punch_org_state", "organization_id", "processing_state"),
        sa.Index("ix_punch_request", "request_id"),
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
    user_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("employees.id"),
    )
    raw_user_id: Mapped[Optional[str]] = mapped_column(sa.String(50))
    machine_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("attendance_machines.id"),
    )
    source: Mapped[PunchSource] = mapped_column(
        str_enum(PunchSource, "punch_source"), nullable=False,
    )
    punch_type: Mapped[PunchType] = mapped_column(
        str_enum(PunchType, "punch_type"), nullable=False,
    )
    timestamp: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), nullable=False,
    )
    received_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc),
    )
    attributed_date: Mapped[Optional[date]] = mapped_column(sa.Date)
    latitude: Mapped[Optional[float]] = mapped_column(sa.Float)
    longitude: Mapped[Optional[float]] = mapped_column(sa.Float)
    accuracy: Mapped[Optional[float]] = mapped_column(sa.Float)
    distance_from_branch: Mapped[Optional[float]] = mapped_column(sa.Float)
    location_hash: Mapped[Optional[str]] = mapped_column(sa.String(64))
    verification_state: Mapped[VerificationState] = mapped_column(
        str_enum(VerificationState, "verification_state"),
        default=VerificationState.unverified,
    )
    processing_state: Mapped[ProcessingState] = mapped_column(
        str_enum(ProcessingState, "processing_state"),
        default=ProcessingState.pending,
    )
    flag_reason: Mapped[Optional[str]] = mapped_column(sa.String(50))
    request_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("attendance_requests.id"),
    )
    device_id: Mapped[Optional[str]] = mapped_column(sa.String(100))
    ip_address: Mapped[Optional[str]] = mapped_column(INET)
    raw_data: Mapped[Optional[dict]] = mapped_column(JSONB)

    # Relationships
    machine: Mapped[Optional[AttendanceMachine]] = relationship()

    def __repr__(self) -> str:
        return (
            f"<PunchEvent {self.punch_type} {self.timestamp} "
            f"user={self.user_id} {self.processing_state}>"
        )
