"""Inventory API - equipment, supplies, and their stock ledger."""

from datetime import timedelta

from fastapi import APIRouter, Query, status
from sqlalchemy import select, func, or_
from typing import Optional
import logging

from mdrrmo_api.api.deps import DbSession, CurrentUser, AdminUser, Cache
from mdrrmo_api.config import settings
from mdrrmo_api.exceptions import ConflictError, NotFoundError, ValidationError
from mdrrmo_api.models.batch import Batch
from mdrrmo_api.models.category import Category
from mdrrmo_api.models.inventory import InventoryItem
from mdrrmo_api.models.notification import NotificationPriority, NotificationType
from mdrrmo_api.schemas.common import PageMeta, envelope
from mdrrmo_api.schemas.inventory import (
    InventoryItemCreate,
    InventoryItemUpdate,
    LedgerCheckResponse,
    StockTransactionResponse,
)
from mdrrmo_api.services.cache_service import INVENTORY_PATTERNS, build_key
from mdrrmo_api.services.notification_service import emit_notification, notify_low_stock
from mdrrmo_api.services.serialization import requires_serialization
from mdrrmo_api.services.stock_ledger import compute_expected_stock, list_transactions
from mdrrmo_api.utils.pagination import paginate
from mdrrmo_api.utils.timeutils import to_naive_utc, utcnow

logger = logging.getLogger(__name__)
router = APIRouter()


def inventory_to_response(item: InventoryItem) -> dict:
    """Convert InventoryItem model to response dict."""
    category = item.category
    return {
        "id": item.id,
        "name": item.name,
        "description": item.description,
        "category_id": item.category_id,
        "category_name": category.name if category else None,
        "category_type": category.type.value if category else None,
        "quantity_in_stock": item.quantity_in_stock or 0,
        "min_stock_level": item.min_stock_level or 0,
        "is_low_stock": item.is_low_stock,
        "requires_serialization": requires_serialization(item, category),
        "unit_of_measure": item.unit_of_measure,
        "is_returnable": item.is_returnable,
        "condition": item.condition.value if item.condition else None,
        "location": item.location,
        "is_deployable": bool(item.is_deployable),
        "is_active": bool(item.is_active),
        "last_maintenance_date": item.last_maintenance_date.isoformat() if item.last_maintenance_date else None,
        "next_maintenance_date": item.next_maintenance_date.isoformat() if item.next_maintenance_date else None,
        "notes": item.notes,
        "created_at": item.created_at.isoformat() if item.created_at else None,
        "updated_at": item.updated_at.isoformat() if item.updated_at else None,
        "deleted_at": item.deleted_at.isoformat() if item.deleted_at else None,
    }


async def _get_item(db, item_id: int, deleted: bool = False) -> InventoryItem:
    query = select(InventoryItem).where(InventoryItem.id == item_id)
    query = query.where(InventoryItem.deleted_at.is_not(None) if deleted else InventoryItem.deleted_at.is_(None))
    item = (await db.execute(query.execution_options(populate_existing=True))).unique().scalar_one_or_none()
    if not item:
        raise NotFoundError("Inventory item", item_id)
    return item


async def _check_category(db, category_id: int) -> None:
    exists = (await db.execute(
        select(Category.id).where(Category.id == category_id, Category.deleted_at.is_(None))
    )).first()
    if not exists:
        raise ValidationError(f"Category {category_id} not found", field="category_id", ids=[category_id])


async def _notify_maintenance_due(db, item: InventoryItem, actor_id: int) -> None:
    if not item.next_maintenance_date:
        return
    if item.next_maintenance_date > utcnow() + timedelta(days=settings.MAINTENANCE_WARNING_DAYS):
        return
    await emit_notification(
        db,
        NotificationType.MAINTENANCE_DUE,
        title="Maintenance Due",
        message=f"{item.name} is due for maintenance on {item.next_maintenance_date:%Y-%m-%d}",
        priority=NotificationPriority.MEDIUM,
        inventory_item_id=item.id,
        user_id=actor_id,
    )


@router.get("")
async def list_inventory(
    db: DbSession,
    current_user: CurrentUser,
    cache: Cache,
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    category_id: Optional[int] = None,
    search: Optional[str] = None,
    low_stock: Optional[bool] = None,
    is_active: Optional[bool] = None,
    deployable: Optional[bool] = None,
):
    """List inventory items with pagination and filtering."""
    key = build_key(
        "items", page=page, page_size=page_size, category_id=category_id, search=search,
        low_stock=low_stock, is_active=is_active, deployable=deployable,
    )
    cached = await cache.get(key)
    if cached is not None:
        return cached

    query = select(InventoryItem).where(InventoryItem.deleted_at.is_(None))
    if category_id:
        query = query.where(InventoryItem.category_id == category_id)
    if search:
        query = query.where(or_(
            InventoryItem.name.ilike(f"%{search}%"),
            InventoryItem.description.ilike(f"%{search}%"),
            InventoryItem.location.ilike(f"%{search}%"),
        ))
    if low_stock:
        query = query.where(InventoryItem.quantity_in_stock <= InventoryItem.min_stock_level)
    if is_active is not None:
        query = query.where(InventoryItem.is_active == is_active)
    if deployable is not None:
        query = query.where(InventoryItem.is_deployable == deployable)
    query = query.order_by(InventoryItem.name.asc(), InventoryItem.id.asc())

    items, total = await paginate(db, query, page, page_size)
    body = envelope(
        [inventory_to_response(i) for i in items],
        meta=PageMeta(total=total, page=page, page_size=page_size),
    )
    await cache.set(key, body)
    return body


@router.get("/low-stock")
async def list_low_stock(db: DbSession, current_user: CurrentUser):
    result = await db.execute(
        select(InventoryItem)
        .where(
            InventoryItem.deleted_at.is_(None),
            InventoryItem.is_active.is_(True),
            InventoryItem.quantity_in_stock <= InventoryItem.min_stock_level,
        )
        .order_by(InventoryItem.quantity_in_stock.asc(), InventoryItem.name.asc())
    )
    return envelope([inventory_to_response(i) for i in result.unique().scalars().all()])


@router.get("/{item_id}")
async def get_inventory_item(item_id: int, db: DbSession, current_user: CurrentUser):
    return envelope(inventory_to_response(await _get_item(db, item_id)))


@router.get("/{item_id}/ledger-check")
async def ledger_check(item_id: int, db: DbSession, current_user: CurrentUser):
    """Compare stored stock against the stock implied by batches, deployments and units."""
    report = await compute_expected_stock(db, item_id)
    if not report["consistent"]:
        logger.warning(
            f"Stock mismatch on item {item_id}: stored {report['quantity_in_stock']}, expected {report['expected']}"
        )
    return envelope(LedgerCheckResponse(**report).model_dump())


@router.get("/{item_id}/transactions")
async def list_item_transactions(
    item_id: int,
    db: DbSession,
    current_user: CurrentUser,
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
):
    await _get_item(db, item_id)
    transactions, total = await list_transactions(db, item_id, page, page_size)
    return envelope(
        [StockTransactionResponse.model_validate(t).model_dump(mode="json") for t in transactions],
        meta=PageMeta(total=total, page=page, page_size=page_size),
    )


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_inventory_item(
    data: InventoryItemCreate,
    db: DbSession,
    admin: AdminUser,
    cache: Cache,
):
    """Create an inventory item. Stock arrives through batches only."""
    await _check_category(db, data.category_id)
    values = data.model_dump()
    values["last_maintenance_date"] = to_naive_utc(values["last_maintenance_date"])
    values["next_maintenance_date"] = to_naive_utc(values["next_maintenance_date"])
    item = InventoryItem(**values, quantity_in_stock=0, is_active=True)
    db.add(item)
    try:
        await db.flush()
        if item.min_stock_level > 0:
            await notify_low_stock(db, item, admin.id)
        await _notify_maintenance_due(db, item, admin.id)
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    logger.info(f"Created inventory item {item.id}: {item.name}")
    await cache.invalidate("items:*")
    return envelope(inventory_to_response(await _get_item(db, item.id)), message="Item created")


@router.patch("/{item_id}")
async def update_inventory_item(
    item_id: int,
    data: InventoryItemUpdate,
    db: DbSession,
    admin: AdminUser,
    cache: Cache,
):
    """Update item details. The stock counter is not editable here."""
    item = await _get_item(db, item_id)
    changes = data.model_dump(exclude_unset=True)
    if "category_id" in changes and changes["category_id"] != item.category_id:
        await _check_category(db, changes["category_id"])
    for name in ("last_maintenance_date", "next_maintenance_date"):
        if name in changes:
            changes[name] = to_naive_utc(changes[name])

    maintenance_changed = (
        "next_maintenance_date" in changes and changes["next_maintenance_date"] != item.next_maintenance_date
    )
    min_changed = "min_stock_level" in changes and changes["min_stock_level"] != item.min_stock_level
    for field, value in changes.items():
        setattr(item, field, value)

    try:
        await db.flush()
        if maintenance_changed:
            await _notify_maintenance_due(db, item, admin.id)
        if min_changed:
            await notify_low_stock(db, item, admin.id)
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    await cache.invalidate("items:*")
    return envelope(inventory_to_response(await _get_item(db, item_id)), message="Item updated")


@router.delete("/{item_id}")
async def delete_inventory_item(item_id: int, db: DbSession, admin: AdminUser, cache: Cache):
    """Soft-delete an item that has never received stock."""
    item = await _get_item(db, item_id)
    batch_count = (await db.execute(
        select(func.count(Batch.id)).where(Batch.inventory_item_id == item_id, Batch.deleted_at.is_(None))
    )).scalar()
    if batch_count:
        raise ConflictError(f"{item.name} has {batch_count} batches; delete them first", ids=[item_id])

    item.deleted_at = utcnow()
    item.is_active = False
    await db.commit()
    await cache.invalidate(*INVENTORY_PATTERNS)
    return envelope(message="Item deleted")


@router.post("/{item_id}/restore")
async def restore_inventory_item(item_id: int, db: DbSession, admin: AdminUser, cache: Cache):
    item = await _get_item(db, item_id, deleted=True)
    item.deleted_at = None
    item.is_active = True
    await db.commit()
    await cache.invalidate(*INVENTORY_PATTERNS)
    return envelope(inventory_to_response(await _get_item(db, item_id)), message="Item restored")
