"""Punch and machine Pydantic v2 schemas."""

import uuid
from datetime import date, datetime
from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator

from attendance_engine.common.constants import (
    MachineAuthMode,
    MachineStatus,
    ProcessingState,
    ProviderType,
    PunchSource,
    PunchType,
    VerificationState,
)


# ═════════════════════════════════════════════════════════════════════
# User punches
# ═════════════════════════════════════════════════════════════════════


class PunchCreate(BaseModel):
    """Web / mobile punch by the authenticated user."""

    punch_type: PunchType
    source: PunchSource = PunchSource.web
    latitude: Optional[float] = Field(None, ge=-90, le=90)
    longitude: Optional[float] = Field(None, ge=-180, le=180)
    accuracy: Optional[float] = Field(None, ge=0)
    device_id: Optional[str] = Field(None, max_length=100)

    @model_validator(mode="after")
    def validate_location(self) -> "PunchCreate":
        if (self.latitude is None) != (self.longitude is None):
            raise ValueError("latitude and longitude must be provided together")
        if self.source not in (PunchSource.web, PunchSource.mobile):
            raise ValueError("source must be 'web' or 'mobile'")
        return self


class PunchResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    punch_type: PunchType
    source: PunchSource
    timestamp: datetime
    attributed_date: Optional[date] = None
    processing_state: ProcessingState
    verification_state: VerificationState
    flag_reason: Optional[str] = None
    distance_from_branch: Optional[float] = None


class OrphanPunchResponse(PunchResponse):
    raw_user_id: Optional[str] = None
    machine_id: Optional[uuid.UUID] = None
    received_at: Optional[datetime] = None


class ReattributeResponse(BaseModel):
    reattributed: int
    remaining: int
    recomputed_days: int


# ═════════════════════════════════════════════════════════════════════
# Machine ingestion
# ═════════════════════════════════════════════════════════════════════


class MachinePunchEntry(BaseModel):
    """One raw terminal record. Vendor aliases are accepted."""

    model_config = ConfigDict(extra="allow")

    user_id: Optional[Union[str, int]] = None
    uid: Optional[Union[str, int]] = None
    userId: Optional[Union[str, int]] = None
    timestamp: Optional[Union[str, int, float]] = None
    time: Optional[Union[str, int, float]] = None
    status: Optional[Union[str, int]] = None
    type: Optional[Union[str, int]] = None


class MachineSyncError(BaseModel):
    index: int
    error: str
    detail: Any = None


class MachineSyncResponse(BaseModel):
    synced: int = 0
    processed: int = 0
    orphaned: int = 0
    duplicates: int = 0
    rejected: int = 0
    flagged: int = 0
    errors: list[MachineSyncError] = []


# ═════════════════════════════════════════════════════════════════════
# Machines
# ═════════════════════════════════════════════════════════════════════


class MachineCreate(BaseModel):
    name: str = Field(..., min_length=2, max_length=100)
    branch_id: Optional[uuid.UUID] = None
    serial_number: Optional[str] = Field(None, max_length=100)
    provider_type: ProviderType = ProviderType.generic
    auth_mode: MachineAuthMode = MachineAuthMode.key
    ip_address: Optional[str] = Field(None, max_length=45)


class MachineResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    name: str
    branch_id: Optional[uuid.UUID] = None
    serial_number: Optional[str] = None
    provider_type: ProviderType
    auth_mode: MachineAuthMode
    status: MachineStatus
    last_sync_at: Optional[datetime] = None
    sync_count: int = 0
    created_at: Optional[datetime] = None


class MachineCredentialsResponse(MachineResponse):
    """Returned once at registration; the secret is never shown again."""

    api_key: str
    api_secret: str
