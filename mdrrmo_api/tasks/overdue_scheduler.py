"""Overdue Deployment Sweep - flags equipment that has not come back on time.

Runs every OVERDUE_SWEEP_INTERVAL_MINUTES. Each deployment still out past
its expected return date gets one DEPLOYMENT_OVERDUE notification; a new one
is only raised after the previous one has been marked seen.
"""

import logging
from datetime import datetime, timedelta
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from mdrrmo_api.config import settings
from mdrrmo_api.database import async_session_maker
from mdrrmo_api.models.notification import InventoryNotification, NotificationPriority, NotificationType
from mdrrmo_api.services.deployment_service import list_overdue_deployments
from mdrrmo_api.services.notification_service import emit_notification
from mdrrmo_api.utils.timeutils import utcnow

logger = logging.getLogger(__name__)

# Global scheduler instance
scheduler: Optional[AsyncIOScheduler] = None


def get_scheduler() -> AsyncIOScheduler:
    """Get or create the scheduler instance."""
    global scheduler
    if scheduler is None:
        scheduler = AsyncIOScheduler()
    return scheduler


async def flag_overdue_deployments(db: AsyncSession, now: Optional[datetime] = None) -> int:
    """Emit DEPLOYMENT_OVERDUE for each overdue deployment without an unseen alert.

    Returns the number of notifications created.
    """
    now = now or utcnow()
    overdue = await list_overdue_deployments(db, now)
    if not overdue:
        return 0

    already_flagged = set((await db.execute(
        select(InventoryNotification.deployment_id).where(
            InventoryNotification.type == NotificationType.DEPLOYMENT_OVERDUE,
            InventoryNotification.seen.is_(False),
            InventoryNotification.deleted_at.is_(None),
            InventoryNotification.deployment_id.in_([d.id for d in overdue]),
        )
    )).scalars().all())

    created = 0
    for deployment in overdue:
        if deployment.id in already_flagged:
            continue
        late = now - deployment.expected_return_date
        priority = NotificationPriority.HIGH if late > timedelta(days=7) else NotificationPriority.MEDIUM
        notification = await emit_notification(
            db,
            NotificationType.DEPLOYMENT_OVERDUE,
            title="Deployment Overdue",
            message=(
                f"{deployment.quantity_deployed} x {deployment.item.name} deployed to "
                f"{deployment.deployment_location} was due back on "
                f"{deployment.expected_return_date:%Y-%m-%d %H:%M} ({late.days} days overdue)"
            ),
            priority=priority,
            inventory_item_id=deployment.inventory_item_id,
            deployment_id=deployment.id,
            user_id=deployment.deployed_by,
        )
        if notification is not None:
            created += 1

    await db.commit()
    return created


async def run_overdue_sweep():
    """Scheduled job: open a session and flag overdue deployments."""
    logger.info("Starting overdue deployment sweep...")
    try:
        async with async_session_maker() as db:
            created = await flag_overdue_deployments(db)
        logger.info(f"Overdue sweep complete: {created} notifications created")
    except Exception as e:
        logger.error(f"Overdue sweep failed: {e}", exc_info=True)


def start_overdue_scheduler():
    """Start the scheduler with the overdue sweep job."""
    global scheduler

    scheduler = get_scheduler()
    scheduler.add_job(
        run_overdue_sweep,
        IntervalTrigger(minutes=settings.OVERDUE_SWEEP_INTERVAL_MINUTES),
        id="overdue_deployments",
        name="Flag overdue deployments",
        replace_existing=True,
    )

    if not scheduler.running:
        scheduler.start()
        logger.info(
            f"Overdue deployment scheduler started (every {settings.OVERDUE_SWEEP_INTERVAL_MINUTES} minutes)"
        )


def stop_overdue_scheduler():
    """Stop the scheduler."""
    global scheduler

    if scheduler and scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("Overdue deployment scheduler stopped")
