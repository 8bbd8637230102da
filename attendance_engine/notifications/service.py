"""In-app notifications for the request workflow.

Rows are written inside the caller's transaction, so a rolled-back
decision never leaves a notification behind. Delivery over mail or push
is left to the host platform, which can poll ``GET /notifications``.
"""

from __future__ import annotations

import uuid
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from attendance_engine.common.constants import NotificationType
from attendance_engine.common.exceptions import ForbiddenException, NotFoundException
from attendance_engine.common.pagination import PaginationParams, paginate
from attendance_engine.common.timeutils import utcnow
from attendance_engine.notifications.models import Notification
from attendance_engine.notifications.schemas import (
    NotificationListMeta,
    NotificationListResponse,
    NotificationResponse,
)


class NotificationService:

    @staticmethod
    async def create_notification(
        db: AsyncSession,
        *,
        organization_id: uuid.UUID,
        recipient_id: uuid.UUID,
        type: NotificationType = NotificationType.info,
        title: str,
        message: str,
        action_url: Optional[str] = None,
        entity_type: Optional[str] = None,
        entity_id: Optional[uuid.UUID] = None,
    ) -> Notification:
        notification = Notification(
            organization_id=organization_id,
            recipient_id=recipient_id,
            type=type,
            title=title,
            message=message,
            action_url=action_url,
            entity_type=entity_type,
            entity_id=entity_id,
        )
        db.add(notification)
        await db.flush()
        return notification

    @staticmethod
    async def get_notifications(
        db: AsyncSession,
        organization_id: uuid.UUID,
        employee_id: uuid.UUID,
        pagination: PaginationParams,
        *,
        is_read: Optional[bool] = None,
    ) -> NotificationListResponse:
        """Newest first; ``meta.unread`` ignores the *is_read* filter."""
        query = (
            select(Notification)
            .where(
                Notification.organization_id == organization_id,
                Notification.recipient_id == employee_id,
            )
            .order_by(Notification.created_at.desc())
        )
        if is_read is not None:
            query = query.where(Notification.is_read == is_read)

        page = await paginate(
            db, query, pagination, transform=NotificationResponse.model_validate,
        )
        unread = await NotificationService.get_unread_count(db, organization_id, employee_id)
        return NotificationListResponse(
            data=page.data,
            meta=NotificationListMeta(**page.meta.model_dump(), unread=unread),
        )

    @staticmethod
    async def mark_read(
        db: AsyncSession,
        organization_id: uuid.UUID,
        notification_id: uuid.UUID,
        employee_id: uuid.UUID,
    ) -> Notification:
        notification = (
            await db.execute(
                select(Notification).where(
                    Notification.id == notification_id,
                    Notification.organization_id == organization_id,
                )
            )
        ).scalars().first()

        if notification is None:
            raise NotFoundException("Notification", notification_id)
        if notification.recipient_id != employee_id:
            raise ForbiddenException("You can only mark your own notifications as read.")

        # Re-reading keeps the first read_at
        if not notification.is_read:
            notification.is_read = True
            notification.read_at = utcnow()
            await db.flush()
        return notification

    @staticmethod
    async def get_unread_count(
        db: AsyncSession,
        organization_id: uuid.UUID,
        employee_id: uuid.UUID,
    ) -> int:
        return (
            await db.execute(
                select(func.count())
                .select_from(Notification)
                .where(
                    Notification.organization_id == organization_id,
                    Notification.recipient_id == employee_id,
                    Notification.is_read.is_(False),
                )
            )
        ).scalar_one()


# ── Request workflow dispatchers ────────────────────────────────────
# Take the AttendanceRequest ORM row; importing approvals here would be circular.


def _describe(request) -> str:
    label = request.request_type.value.replace("_", " ")
    if request.end_date and request.end_date != request.target_date:
        return f"{label} request for {request.target_date} to {request.end_date}"
    return f"{label} request for {request.target_date}"


async def _notify_about_request(
    db: AsyncSession,
    request,
    recipient_id: uuid.UUID,
    type: NotificationType,
    title: str,
    message: str,
) -> Notification:
    return await NotificationService.create_notification(
        db,
        organization_id=request.organization_id,
        recipient_id=recipient_id,
        type=type,
        title=title,
        message=message,
        action_url=f"/requests/{request.id}",
        entity_type="attendance_request",
        entity_id=request.id,
    )


async def notify_request_submitted(db: AsyncSession, request, approver_id: uuid.UUID):
    return await _notify_about_request(
        db, request, approver_id, NotificationType.action_required,
        "Approval Required", f"A {_describe(request)} requires your approval.",
    )


async def notify_request_forwarded(db: AsyncSession, request, forwarded_to_id: uuid.UUID):
    return await _notify_about_request(
        db, request, forwarded_to_id, NotificationType.action_required,
        "Request Forwarded to You",
        f"A {_describe(request)} was forwarded to you for approval.",
    )


async def notify_request_approved(db: AsyncSession, request):
    return await _notify_about_request(
        db, request, request.user_id, NotificationType.approval,
        "Request Approved", f"Your {_describe(request)} has been approved.",
    )


async def notify_request_rejected(db: AsyncSession, request, reason: Optional[str]):
    message = f"Your {_describe(request)} was rejected."
    if reason:
        message += f" Reason: {reason}"
    return await _notify_about_request(
        db, request, request.user_id, NotificationType.alert, "Request Rejected", message,
    )


async def notify_request_cancelled(db: AsyncSession, request, recipient_id: uuid.UUID):
    return await _notify_about_request(
        db, request, recipient_id, NotificationType.info,
        "Request Cancelled", f"The {_describe(request)} was cancelled by the submitter.",
    )
