"""Inventory notification inbox."""

from fastapi import APIRouter, Query
from typing import Optional

from mdrrmo_api.api.deps import DbSession, CurrentUser
from mdrrmo_api.models.notification import NotificationPriority, NotificationType
from mdrrmo_api.schemas.common import PageMeta, envelope
from mdrrmo_api.schemas.notification import NotificationResponse
from mdrrmo_api.services import notification_service

router = APIRouter()


@router.get("")
async def list_notifications(
    db: DbSession,
    current_user: CurrentUser,
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    type: Optional[NotificationType] = None,
    priority: Optional[NotificationPriority] = None,
    seen: Optional[bool] = None,
):
    notifications, total = await notification_service.list_notifications(
        db, page, page_size, type=type, priority=priority, seen=seen,
    )
    return envelope(
        [NotificationResponse.model_validate(n).model_dump(mode="json") for n in notifications],
        meta=PageMeta(total=total, page=page, page_size=page_size),
    )


@router.post("/mark-all-seen")
async def mark_all_seen(db: DbSession, current_user: CurrentUser):
    count = await notification_service.mark_all_seen(db)
    return envelope({"updated": count}, message="All notifications marked as seen")


@router.post("/{notification_id}/seen")
async def mark_seen(notification_id: int, db: DbSession, current_user: CurrentUser):
    notification = await notification_service.mark_seen(db, notification_id)
    return envelope(NotificationResponse.model_validate(notification).model_dump(mode="json"))


@router.delete("/{notification_id}")
async def delete_notification(notification_id: int, db: DbSession, current_user: CurrentUser):
    await notification_service.delete_notification(db, notification_id)
    return envelope(message="Notification deleted")


@router.post("/{notification_id}/restore")
async def restore_notification(notification_id: int, db: DbSession, current_user: CurrentUser):
    notification = await notification_service.restore_notification(db, notification_id)
    return envelope(
        NotificationResponse.model_validate(notification).model_dump(mode="json"),
        message="Notification restored",
    )
