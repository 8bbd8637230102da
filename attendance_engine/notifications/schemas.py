"""Response bodies for the notification inbox."""

import uuid
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict

from attendance_engine.common.constants import NotificationType
from attendance_engine.common.pagination import PaginationMeta


class NotificationResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    type: NotificationType
    title: str
    message: str
    # Deep link into the client, e.g. "/requests/<id>"
    action_url: Optional[str] = None
    entity_type: Optional[str] = None
    entity_id: Optional[uuid.UUID] = None
    is_read: bool
    read_at: Optional[datetime] = None
    created_at: Optional[datetime] = None


class NotificationListMeta(PaginationMeta):
    unread: int


class NotificationListResponse(BaseModel):
    data: list[NotificationResponse]
    meta: NotificationListMeta


class MarkReadResponse(BaseModel):
    message: str = "Notification marked as read"
    data: NotificationResponse
