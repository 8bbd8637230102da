"""Notification inbox for the signed-in employee."""

import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from attendance_engine.auth.dependencies import get_current_user
from attendance_engine.common.pagination import PaginationParams
from attendance_engine.database import get_db
from attendance_engine.directory.models import Employee
from attendance_engine.notifications.schemas import (
    MarkReadResponse,
    NotificationListResponse,
    NotificationResponse,
)
from attendance_engine.notifications.service import NotificationService

router = APIRouter(prefix="", tags=["notifications"])


@router.get("", response_model=NotificationListResponse)
async def list_notifications(
    is_read: Optional[bool] = Query(default=None),
    pagination: PaginationParams = Depends(),
    employee: Employee = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await NotificationService.get_notifications(
        db, employee.organization_id, employee.id, pagination, is_read=is_read,
    )


@router.put("/{notification_id}/read", response_model=MarkReadResponse)
async def mark_read(
    notification_id: uuid.UUID,
    employee: Employee = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Idempotent; only the recipient may mark a notification read."""
    notification = await NotificationService.mark_read(
        db, employee.organization_id, notification_id, employee.id,
    )
    return MarkReadResponse(data=NotificationResponse.model_validate(notification))
