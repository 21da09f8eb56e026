"""Serialized unit lookups and manual status changes."""

import logging
from typing import Optional

from sqlalchemy import select, or_
from sqlalchemy.ext.asyncio import AsyncSession

from mdrrmo_api.exceptions import ConflictError, NotFoundError
from mdrrmo_api.models.serialized_item import SerializedItem, SerializedItemHistory, SerializedItemStatus
from mdrrmo_api.services.cache_service import CacheService, INVENTORY_PATTERNS
from mdrrmo_api.services.stock_ledger import apply_stock_delta, lock_item
from mdrrmo_api.utils.pagination import paginate
from mdrrmo_api.utils.timeutils import utcnow

logger = logging.getLogger(__name__)

MANUAL_STATUSES = frozenset({
    SerializedItemStatus.AVAILABLE,
    SerializedItemStatus.MAINTENANCE,
    SerializedItemStatus.DAMAGED,
    SerializedItemStatus.LOST,
    SerializedItemStatus.RETIRED,
})

# Only deployment and return move units in or out of these
DEPLOYMENT_STATUSES = frozenset({SerializedItemStatus.DEPLOYED, SerializedItemStatus.PARTIAL_RETURN})


async def get_unit(db: AsyncSession, unit_id: int) -> SerializedItem:
    unit = (await db.execute(
        select(SerializedItem).where(SerializedItem.id == unit_id, SerializedItem.deleted_at.is_(None))
    )).scalar_one_or_none()
    if not unit:
        raise NotFoundError("Serialized item", unit_id)
    return unit


async def get_unit_by_serial(db: AsyncSession, serial_number: str) -> SerializedItem:
    unit = (await db.execute(
        select(SerializedItem).where(
            SerializedItem.serial_number == serial_number,
            SerializedItem.deleted_at.is_(None),
        )
    )).scalar_one_or_none()
    if not unit:
        raise NotFoundError(f"Serialized item {serial_number}")
    return unit


async def list_units(
    db: AsyncSession,
    page: int = 1,
    page_size: int = 50,
    item_id: Optional[int] = None,
    batch_id: Optional[int] = None,
    status: Optional[SerializedItemStatus] = None,
    search: Optional[str] = None,
) -> tuple[list[SerializedItem], int]:
    query = select(SerializedItem).where(SerializedItem.deleted_at.is_(None))
    if item_id:
        query = query.where(SerializedItem.inventory_item_id == item_id)
    if batch_id:
        query = query.where(SerializedItem.batch_id == batch_id)
    if status:
        query = query.where(SerializedItem.status == status)
    if search:
        query = query.where(or_(
            SerializedItem.serial_number.ilike(f"%{search}%"),
            SerializedItem.condition_notes.ilike(f"%{search}%"),
        ))
    query = query.order_by(SerializedItem.serial_number.asc())
    return await paginate(db, query, page, page_size)


async def unit_history(db: AsyncSession, unit_id: int) -> list[SerializedItemHistory]:
    await get_unit(db, unit_id)
    result = await db.execute(
        select(SerializedItemHistory)
        .where(SerializedItemHistory.serialized_item_id == unit_id)
        .order_by(SerializedItemHistory.created_at.asc(), SerializedItemHistory.id.asc())
    )
    return list(result.scalars().all())


async def change_unit_status(
    db: AsyncSession,
    unit_id: int,
    new_status: SerializedItemStatus,
    notes: Optional[str] = None,
    actor_id: Optional[int] = None,
    cache: Optional[CacheService] = None,
) -> SerializedItem:
    """Move a warehouse unit between AVAILABLE, MAINTENANCE, DAMAGED, LOST and RETIRED.

    Leaving AVAILABLE takes the unit out of stock; entering it puts it back.
    """
    try:
        if new_status not in MANUAL_STATUSES:
            raise ConflictError(
                f"Status {new_status.value} is set by deployments and returns only",
                ids=[unit_id],
            )
        unit = await get_unit(db, unit_id)
        item = await lock_item(db, unit.inventory_item_id, include_deleted=True)
        unit = (await db.execute(
            select(SerializedItem)
            .where(SerializedItem.id == unit_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )).scalar_one()

        if unit.status in DEPLOYMENT_STATUSES:
            raise ConflictError(
                f"Serialized item {unit.serial_number} is {unit.status.value}; record a return instead",
                ids=[unit_id],
            )

        old_status = unit.status
        if old_status != new_status:
            delta = int(new_status == SerializedItemStatus.AVAILABLE) - int(old_status == SerializedItemStatus.AVAILABLE)
            await apply_stock_delta(
                db, item, delta,
                reason=f"{unit.serial_number}: {old_status.value} -> {new_status.value}",
                reference_type="unit_status",
                reference_id=unit.id,
                actor_id=actor_id,
            )
            db.add(SerializedItemHistory(
                serialized_item_id=unit.id,
                old_status=old_status,
                new_status=new_status,
                notes=notes,
                changed_by=actor_id,
            ))
            unit.status = new_status
            if old_status == SerializedItemStatus.MAINTENANCE:
                unit.last_maintenance_date = utcnow()
            unit.append_notes(notes)
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    logger.info(f"Unit {unit.serial_number}: {old_status.value} -> {new_status.value}")
    if cache:
        await cache.invalidate(*INVENTORY_PATTERNS)
    return unit
