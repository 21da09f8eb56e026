"""
Batch receipt and batch administration.

``receive_batch`` is all-or-nothing: the batch row, any serialized units,
the stock increment and the expiry notification commit together, or the
session is rolled back and nothing is written.
"""

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Optional

from sqlalchemy import select, func, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from mdrrmo_api.config import settings
from mdrrmo_api.exceptions import ConflictError, NotFoundError, ValidationError, conflict_from_integrity_error
from mdrrmo_api.models.batch import Batch
from mdrrmo_api.models.inventory import InventoryItem
from mdrrmo_api.models.notification import NotificationPriority, NotificationType
from mdrrmo_api.models.serialized_item import SerializedItem, SerializedItemStatus
from mdrrmo_api.services.cache_service import CacheService, INVENTORY_PATTERNS
from mdrrmo_api.services.notification_service import emit_notification
from mdrrmo_api.services.serialization import (
    category_code_for,
    generate_batch_number,
    generate_serials,
    requires_serialization,
)
from mdrrmo_api.services.stock_ledger import apply_stock_delta, lock_item
from mdrrmo_api.utils.pagination import paginate
from mdrrmo_api.utils.timeutils import to_naive_utc, utcnow

logger = logging.getLogger(__name__)

BATCH_NUMBER_ATTEMPTS = 5

_METADATA_FIELDS = ("expiry_date", "supplier", "funding_source", "cost", "notes", "is_active")


@dataclass
class BatchReceipt:
    batch: Batch
    is_serialized: bool
    serial_numbers: list[str] = field(default_factory=list)


async def _unique_batch_number(db: AsyncSession, item_name: str) -> str:
    for _ in range(BATCH_NUMBER_ATTEMPTS):
        candidate = generate_batch_number(item_name)
        exists = (await db.execute(
            select(Batch.id).where(Batch.batch_number == candidate)
        )).scalar_one_or_none()
        if exists is None:
            return candidate
        logger.info(f"Batch number {candidate} already taken, regenerating")
    raise ConflictError("Could not allocate a unique batch number, please retry")


async def _notify_if_expiring(
    db: AsyncSession,
    item: InventoryItem,
    batch: Batch,
    reference: date,
    actor_id: Optional[int],
) -> None:
    if not batch.expiry_date:
        return
    days = (batch.expiry_date - reference).days
    if days > settings.EXPIRY_WARNING_DAYS:
        return
    label = f"Batch {batch.batch_number} of {item.name}"
    if days < 0:
        title, message = "Batch Already Expired", f"{label} expired {-days} days ago"
    elif days == 0:
        title, message = "Batch Expiring Soon", f"{label} expires today"
    else:
        title, message = "Batch Expiring Soon", f"{label} will expire in {days} days"
    priority = NotificationPriority.HIGH if days <= settings.EXPIRY_CRITICAL_DAYS else NotificationPriority.MEDIUM
    await emit_notification(
        db,
        NotificationType.EXPIRING_SOON,
        title=title,
        message=message,
        priority=priority,
        inventory_item_id=item.id,
        user_id=actor_id,
    )


async def _lock_batch(db: AsyncSession, batch_id: int, deleted: bool = False) -> Batch:
    query = (
        select(Batch)
        .where(Batch.id == batch_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    batch = (await db.execute(query)).unique().scalar_one_or_none()
    if not batch or (batch.deleted_at is not None and not deleted):
        raise NotFoundError("Batch", batch_id)
    if deleted and batch.deleted_at is None:
        raise ConflictError(f"Batch {batch.batch_number} is not deleted", ids=[batch_id])
    return batch


async def _batch_units(db: AsyncSession, batch_id: int) -> list[SerializedItem]:
    result = await db.execute(
        select(SerializedItem)
        .where(SerializedItem.batch_id == batch_id)
        .order_by(SerializedItem.id)
        .with_for_update()
    )
    return list(result.scalars().all())


async def receive_batch(
    db: AsyncSession,
    inventory_item_id: int,
    quantity: int,
    actor_id: Optional[int] = None,
    cache: Optional[CacheService] = None,
    expiry_date: Optional[date] = None,
    received_date: Optional[datetime] = None,
    supplier: Optional[str] = None,
    funding_source: Optional[str] = None,
    cost=None,
    notes: Optional[str] = None,
) -> BatchReceipt:
    """Record a stock receipt, minting serialized units when the item needs them."""
    try:
        if quantity is None or isinstance(quantity, bool) or quantity <= 0:
            raise ValidationError("Quantity must be a positive integer", field="quantity", ids=[quantity])
        try:
            item = await lock_item(db, inventory_item_id)
        except NotFoundError:
            raise ValidationError(
                f"Inventory item {inventory_item_id} not found",
                field="inventory_item_id",
                ids=[inventory_item_id],
            ) from None

        received_at = to_naive_utc(received_date) or utcnow()
        is_serialized = requires_serialization(item, item.category)
        batch = Batch(
            inventory_item_id=item.id,
            batch_number=await _unique_batch_number(db, item.name),
            quantity=quantity,
            expiry_date=expiry_date,
            received_date=received_at,
            received_by=actor_id,
            supplier=supplier,
            funding_source=funding_source,
            cost=cost,
            notes=notes,
            is_active=True,
        )
        db.add(batch)
        await db.flush()

        serial_numbers: list[str] = []
        if is_serialized:
            serial_numbers = generate_serials(batch.batch_number, quantity, category_code_for(item.category))
            db.add_all([
                SerializedItem(
                    serial_number=serial,
                    inventory_item_id=item.id,
                    batch_id=batch.id,
                    status=SerializedItemStatus.AVAILABLE,
                    created_by=actor_id,
                )
                for serial in serial_numbers
            ])

        await apply_stock_delta(
            db, item, quantity,
            reason=f"Batch {batch.batch_number} received",
            reference_type="batch_receipt",
            reference_id=batch.id,
            actor_id=actor_id,
        )
        await db.flush()

        await _notify_if_expiring(db, item, batch, received_at.date(), actor_id)
        await db.commit()
    except IntegrityError as exc:
        await db.rollback()
        raise conflict_from_integrity_error(exc) from exc
    except Exception:
        await db.rollback()
        raise

    logger.info(
        f"Received batch {batch.batch_number}: {quantity} x {item.name}"
        f"{' (serialized)' if is_serialized else ''}"
    )
    if cache:
        await cache.invalidate(*INVENTORY_PATTERNS)
    return BatchReceipt(batch=batch, is_serialized=is_serialized, serial_numbers=serial_numbers)


async def update_batch(
    db: AsyncSession,
    batch_id: int,
    changes: dict,
    actor_id: Optional[int] = None,
    cache: Optional[CacheService] = None,
) -> Batch:
    """Edit batch metadata. Quantity may change only on batches without serialized units."""
    try:
        batch = await _lock_batch(db, batch_id)
        item = await lock_item(db, batch.inventory_item_id)

        new_quantity = changes.get("quantity")
        if new_quantity is not None and new_quantity != batch.quantity:
            if new_quantity <= 0:
                raise ValidationError("Quantity must be a positive integer", field="quantity", ids=[new_quantity])
            unit_count = (await db.execute(
                select(func.count(SerializedItem.id)).where(SerializedItem.batch_id == batch.id)
            )).scalar()
            if unit_count:
                raise ConflictError(
                    f"Batch {batch.batch_number} has serialized units; its quantity cannot be changed",
                    ids=[batch.id],
                )
            await apply_stock_delta(
                db, item, new_quantity - batch.quantity,
                reason=f"Batch {batch.batch_number} quantity corrected from {batch.quantity} to {new_quantity}",
                reference_type="batch_update",
                reference_id=batch.id,
                actor_id=actor_id,
            )
            batch.quantity = new_quantity

        expiry_changed = "expiry_date" in changes and changes["expiry_date"] != batch.expiry_date
        for name in _METADATA_FIELDS:
            if name in changes:
                setattr(batch, name, changes[name])
        await db.flush()

        if expiry_changed:
            await _notify_if_expiring(db, item, batch, utcnow().date(), actor_id)
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    if cache:
        await cache.invalidate(*INVENTORY_PATTERNS)
    return batch


async def delete_batch(
    db: AsyncSession,
    batch_id: int,
    actor_id: Optional[int] = None,
    cache: Optional[CacheService] = None,
) -> Batch:
    """Soft-delete a batch, reversing its stock increment and retiring its units."""
    try:
        batch = await _lock_batch(db, batch_id)
        item = await lock_item(db, batch.inventory_item_id)
        units = await _batch_units(db, batch.id)

        busy = [u.id for u in units if u.status != SerializedItemStatus.AVAILABLE]
        if busy:
            raise ConflictError(
                f"Batch {batch.batch_number} has units that are not in the warehouse",
                ids=busy,
                field="serialized_item_ids",
            )

        await apply_stock_delta(
            db, item, -batch.quantity,
            reason=f"Batch {batch.batch_number} deleted",
            reference_type="batch_delete",
            reference_id=batch.id,
            actor_id=actor_id,
        )
        now = utcnow()
        batch.deleted_at = now
        batch.is_active = False
        for unit in units:
            unit.deleted_at = now
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    logger.info(f"Deleted batch {batch.batch_number} ({len(units)} units)")
    if cache:
        await cache.invalidate(*INVENTORY_PATTERNS)
    return batch


async def restore_batch(
    db: AsyncSession,
    batch_id: int,
    actor_id: Optional[int] = None,
    cache: Optional[CacheService] = None,
) -> Batch:
    try:
        batch = await _lock_batch(db, batch_id, deleted=True)
        item = await lock_item(db, batch.inventory_item_id)
        units = await _batch_units(db, batch.id)

        await apply_stock_delta(
            db, item, batch.quantity,
            reason=f"Batch {batch.batch_number} restored",
            reference_type="batch_restore",
            reference_id=batch.id,
            actor_id=actor_id,
        )
        batch.deleted_at = None
        batch.is_active = True
        for unit in units:
            unit.deleted_at = None
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    if cache:
        await cache.invalidate(*INVENTORY_PATTERNS)
    return batch


async def get_batch(db: AsyncSession, batch_id: int) -> Batch:
    batch = (await db.execute(
        select(Batch).where(Batch.id == batch_id, Batch.deleted_at.is_(None))
    )).unique().scalar_one_or_none()
    if not batch:
        raise NotFoundError("Batch", batch_id)
    return batch


async def list_batches(
    db: AsyncSession,
    page: int = 1,
    page_size: int = 20,
    item_id: Optional[int] = None,
    supplier: Optional[str] = None,
    is_active: Optional[bool] = None,
    expiring_soon: bool = False,
    search: Optional[str] = None,
    include_deleted: bool = False,
) -> tuple[list[Batch], int]:
    query = select(Batch)
    if not include_deleted:
        query = query.where(Batch.deleted_at.is_(None))
    if item_id:
        query = query.where(Batch.inventory_item_id == item_id)
    if supplier:
        query = query.where(Batch.supplier.ilike(f"%{supplier}%"))
    if is_active is not None:
        query = query.where(Batch.is_active == is_active)
    if expiring_soon:
        today = utcnow().date()
        query = query.where(
            Batch.expiry_date.is_not(None),
            Batch.expiry_date > today,
            Batch.expiry_date <= today + timedelta(days=settings.EXPIRY_WARNING_DAYS),
        )
    if search:
        query = query.where(or_(
            Batch.batch_number.ilike(f"%{search}%"),
            Batch.supplier.ilike(f"%{search}%"),
        ))
    query = query.order_by(Batch.received_date.desc(), Batch.id.desc())
    return await paginate(db, query, page, page_size)


async def list_expiring_batches(db: AsyncSession, days: int = 30) -> list[Batch]:
    """Live batches expiring between today and ``days`` from now, soonest first."""
    today = utcnow().date()
    result = await db.execute(
        select(Batch)
        .where(
            Batch.deleted_at.is_(None),
            Batch.expiry_date.is_not(None),
            Batch.expiry_date >= today,
            Batch.expiry_date <= today + timedelta(days=days),
        )
        .order_by(Batch.expiry_date.asc())
    )
    return list(result.unique().scalars().all())
