"""Approval request Pydantic v2 schemas.

Naming conventions:
  - *Create / *Request  → request bodies (write)
  - *Response           → response bodies (read)
"""

from __future__ import annotations

import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from attendance_engine.approvals.workflow import (
    CORRECTION_TYPES,
    REQUIRED_TIMES,
    infer_sub_type,
)
from attendance_engine.common.constants import (
    ApproverStatus,
    DecisionAction,
    RequestPriority,
    RequestStatus,
    RequestSubType,
    RequestType,
)


# ═════════════════════════════════════════════════════════════════════
# Write
# ═════════════════════════════════════════════════════════════════════


class RequestCreate(BaseModel):
    """Submit (or save as draft) a regularization or leave request."""

    request_type: RequestType
    sub_type: Optional[RequestSubType] = None
    target_date: date
    end_date: Optional[date] = None
    reason: str = Field(..., min_length=10, max_length=500)
    new_first_in: Optional[datetime] = None
    new_last_out: Optional[datetime] = None
    leave_type: Optional[str] = Field(None, max_length=50)
    is_half_day: bool = False
    reversal_of_id: Optional[uuid.UUID] = None
    priority: RequestPriority = RequestPriority.medium
    source: Literal["web", "mobile", "admin"] = "web"
    save_as_draft: bool = False

    @model_validator(mode="after")
    def validate_payload(self) -> RequestCreate:
        if self.request_type in CORRECTION_TYPES:
            if self.sub_type is None:
                self.sub_type = infer_sub_type(
                    self.request_type,
                    self.new_first_in is not None,
                    self.new_last_out is not None,
                )
            if self.sub_type is None:
                raise ValueError("new_first_in or new_last_out is required")
            needs_in, needs_out = REQUIRED_TIMES[self.sub_type]
            if needs_in and self.new_first_in is None:
                raise ValueError(f"new_first_in is required for {self.sub_type.value}")
            if needs_out and self.new_last_out is None:
                raise ValueError(f"new_last_out is required for {self.sub_type.value}")
            if self.new_first_in is not None and self.new_last_out is not None:
                # Naive values are branch wall-clock time, resolved by the service
                if (self.new_first_in.tzinfo is None) != (self.new_last_out.tzinfo is None):
                    raise ValueError(
                        "new_first_in and new_last_out must both include a UTC offset "
                        "or both omit it"
                    )
                if self.new_first_in >= self.new_last_out:
                    raise ValueError("new_first_in must be before new_last_out")

        if self.request_type == RequestType.leave:
            if not self.leave_type:
                raise ValueError("leave_type is required for leave requests")
            if self.end_date is None:
                self.end_date = self.target_date
            if self.end_date < self.target_date:
                raise ValueError("end_date must be on or after target_date")
            if self.is_half_day and self.end_date != self.target_date:
                raise ValueError("A half-day leave must cover a single date")
        elif self.end_date is not None and self.end_date < self.target_date:
            raise ValueError("end_date must be on or after target_date")

        if self.request_type == RequestType.leave_reversal and self.reversal_of_id is None:
            raise ValueError("reversal_of_id is required for leave reversal")
        return self


class DecisionRequest(BaseModel):
    action: DecisionAction
    comments: Optional[str] = Field(None, max_length=1000)
    forward_to: Optional[uuid.UUID] = None
    forward_mandatory: bool = True

    @model_validator(mode="after")
    def validate_forward(self) -> DecisionRequest:
        if self.action == DecisionAction.forward and self.forward_to is None:
            raise ValueError("forward_to is required when forwarding")
        return self


class CancelRequest(BaseModel):
    reason: str = Field(..., min_length=5, max_length=500)


# ═════════════════════════════════════════════════════════════════════
# Read
# ═════════════════════════════════════════════════════════════════════


class ApproverResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    approver_id: uuid.UUID
    role: str
    status: ApproverStatus
    order: int
    is_mandatory: bool
    comments: Optional[str] = None
    forwarded_to_id: Optional[uuid.UUID] = None
    acted_at: Optional[datetime] = None


class RequestResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    user_id: uuid.UUID
    request_type: RequestType
    sub_type: Optional[RequestSubType] = None
    target_date: date
    end_date: Optional[date] = None
    reason: str
    status: RequestStatus
    priority: RequestPriority
    source: str
    new_first_in: Optional[datetime] = None
    new_last_out: Optional[datetime] = None
    old_first_in: Optional[datetime] = None
    old_last_out: Optional[datetime] = None
    leave_type: Optional[str] = None
    is_half_day: bool = False
    days_count: Optional[Decimal] = None
    balance_before: Optional[Decimal] = None
    balance_after: Optional[Decimal] = None
    reversal_of_id: Optional[uuid.UUID] = None
    approval_required: int = 0
    current_approver_level: Optional[int] = None
    submitted_at: Optional[datetime] = None
    sla_due_at: Optional[datetime] = None
    is_overdue: bool = False
    response_time_hours: Optional[float] = None
    linked_attendance_ids: list[str] = []
    linked_punch_ids: list[str] = []
    decided_at: Optional[datetime] = None
    decided_by: Optional[uuid.UUID] = None
    rejection_reason: Optional[str] = None
    cancelled_at: Optional[datetime] = None
    cancellation_reason: Optional[str] = None
    created_at: Optional[datetime] = None
    approvers: list[ApproverResponse] = []


class HistoryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    action: str
    actor_id: Optional[uuid.UUID] = None
    remarks: Optional[str] = None
    old_status: Optional[str] = None
    new_status: Optional[str] = None
    extra: Optional[dict] = Field(None, serialization_alias="metadata")
    created_at: datetime
