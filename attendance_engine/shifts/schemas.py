"""Shift Pydantic v2 schemas."""


import uuid
from datetime import time
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class ShiftCreate(BaseModel):
    """Payload for creating a shift."""

    name: str = Field(..., min_length=2, max_length=100)
    start_time: time
    end_time: time
    break_minutes: int = Field(60, ge=0, le=600)
    grace_minutes: int = Field(15, ge=0, le=240)
    early_departure_minutes: int = Field(30, ge=0, le=240)
    half_day_minutes: int = Field(240, ge=0, le=1440)
    full_day_minutes: int = Field(480, ge=1, le=1440)
    is_night_shift: bool = False
    weekly_offs: list[int] = Field(default_factory=lambda: [5, 6])
    overtime_enabled: bool = True
    overtime_multiplier: float = Field(1.5, ge=1.0, le=5.0)
    night_overtime_multiplier: float = Field(2.0, ge=1.0, le=5.0)

    @field_validator("weekly_offs")
    @classmethod
    def validate_weekly_offs(cls, value: list[int]) -> list[int]:
        if any(d < 0 or d > 6 for d in value):
            raise ValueError("weekly_offs must contain weekday numbers 0 (Mon) to 6 (Sun).")
        return sorted(set(value))


class ShiftResponse(BaseModel):
    """Shift details."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    name: str
    start_time: time
    end_time: time
    break_minutes: int
    grace_minutes: int
    early_departure_minutes: int
    half_day_minutes: int
    full_day_minutes: int
    is_night_shift: bool
    weekly_offs: list[int]
    overtime_enabled: bool
    overtime_multiplier: float
    night_overtime_multiplier: float
    is_active: bool


class ShiftBrief(BaseModel):
    """Minimal shift info embedded in attendance responses."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    name: str
    start_time: time
    end_time: time
    is_night_shift: Optional[bool] = None
