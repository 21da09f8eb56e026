"""
Inventory notification emitter and inbox operations.

Emission is best-effort: the row is written inside a SAVEPOINT so that a
failed insert rolls back only itself and the caller's transaction carries on.
"""

import logging
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from mdrrmo_api.exceptions import ConflictError, NotFoundError
from mdrrmo_api.models.inventory import InventoryItem
from mdrrmo_api.models.notification import InventoryNotification, NotificationPriority, NotificationType
from mdrrmo_api.utils.pagination import paginate
from mdrrmo_api.utils.timeutils import utcnow

logger = logging.getLogger(__name__)


async def emit_notification(
    db: AsyncSession,
    type: NotificationType,
    title: str,
    message: str,
    priority: NotificationPriority = NotificationPriority.MEDIUM,
    inventory_item_id: Optional[int] = None,
    deployment_id: Optional[int] = None,
    user_id: Optional[int] = None,
) -> Optional[InventoryNotification]:
    """Add a notification to the current transaction. Never raises."""
    try:
        async with db.begin_nested():
            notification = InventoryNotification(
                type=type,
                priority=priority,
                title=title,
                message=message,
                inventory_item_id=inventory_item_id,
                deployment_id=deployment_id,
                user_id=user_id,
            )
            db.add(notification)
            await db.flush()
        return notification
    except Exception as e:
        logger.warning(f"Failed to emit {type.value} notification: {e}")
        return None


async def list_notifications(
    db: AsyncSession,
    page: int = 1,
    page_size: int = 20,
    type: Optional[NotificationType] = None,
    priority: Optional[NotificationPriority] = None,
    seen: Optional[bool] = None,
) -> tuple[list[InventoryNotification], int]:
    query = select(InventoryNotification).where(InventoryNotification.deleted_at.is_(None))
    if type:
        query = query.where(InventoryNotification.type == type)
    if priority:
        query = query.where(InventoryNotification.priority == priority)
    if seen is not None:
        query = query.where(InventoryNotification.seen == seen)

    query = query.order_by(InventoryNotification.created_at.desc(), InventoryNotification.id.desc())
    return await paginate(db, query, page, page_size)


async def _get_notification(db: AsyncSession, notification_id: int, deleted: bool = False) -> InventoryNotification:
    notification = await db.get(InventoryNotification, notification_id)
    if not notification or (notification.deleted_at is not None and not deleted):
        raise NotFoundError("Notification", notification_id)
    if deleted and notification.deleted_at is None:
        raise ConflictError(f"Notification {notification_id} is not deleted", ids=[notification_id])
    return notification


async def mark_seen(db: AsyncSession, notification_id: int) -> InventoryNotification:
    notification = await _get_notification(db, notification_id)
    notification.seen = True
    await db.commit()
    return notification


async def mark_all_seen(db: AsyncSession) -> int:
    result = await db.execute(
        update(InventoryNotification)
        .where(InventoryNotification.seen.is_(False), InventoryNotification.deleted_at.is_(None))
        .values(seen=True)
    )
    await db.commit()
    return result.rowcount or 0


async def delete_notification(db: AsyncSession, notification_id: int) -> None:
    """Soft delete; the row stays restorable."""
    notification = await _get_notification(db, notification_id)
    notification.deleted_at = utcnow()
    await db.commit()


async def restore_notification(db: AsyncSession, notification_id: int) -> InventoryNotification:
    notification = await _get_notification(db, notification_id, deleted=True)
    notification.deleted_at = None
    await db.commit()
    return notification


async def notify_low_stock(db: AsyncSession, item: InventoryItem, actor_id: Optional[int] = None) -> None:
    """Emit LOW_STOCK when the item is at or below its minimum level."""
    if (item.quantity_in_stock or 0) > (item.min_stock_level or 0):
        return
    await emit_notification(
        db,
        NotificationType.LOW_STOCK,
        title="Low Stock Alert",
        message=(
            f"{item.name} is at or below minimum stock level. "
            f"Current stock: {item.quantity_in_stock}, minimum required: {item.min_stock_level}"
        ),
        priority=NotificationPriority.HIGH if not item.quantity_in_stock else NotificationPriority.MEDIUM,
        inventory_item_id=item.id,
        user_id=actor_id,
    )
