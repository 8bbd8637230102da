"""Reconciliation Pydantic v2 schemas."""

import uuid
from datetime import date, datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict

from attendance_engine.common.constants import ReconciliationStatus


class ReconciliationRunRequest(BaseModel):
    target_date: Optional[date] = None


class ReconciliationRunResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    organization_id: uuid.UUID
    target_date: date
    status: ReconciliationStatus
    triggered_by: str
    users_total: int = 0
    created_count: int = 0
    updated_count: int = 0
    unchanged_count: int = 0
    skipped_count: int = 0
    failed_count: int = 0
    failed_user_ids: list[str] = []
    orphans_reattributed: int = 0
    overdue_flagged: int = 0
    started_at: datetime
    finished_at: Optional[datetime] = None
