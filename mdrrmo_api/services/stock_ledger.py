"""
Stock ledger: the only code that writes ``InventoryItem.quantity_in_stock``.

Callers lock the item row first with ``lock_item`` and hold the lock until
their transaction commits. Each mutation writes a ``StockTransaction`` row
naming the batch, deployment, return or unit event it belongs to.
"""

import logging
from typing import Optional

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from mdrrmo_api.exceptions import ConflictError, NotFoundError
from mdrrmo_api.models.batch import Batch
from mdrrmo_api.models.deployment import Deployment, DeploymentStatus
from mdrrmo_api.models.inventory import InventoryItem
from mdrrmo_api.models.serialized_item import SerializedItem, SerializedItemStatus
from mdrrmo_api.models.stock_transaction import StockTransaction
from mdrrmo_api.utils.pagination import paginate

logger = logging.getLogger(__name__)

# Bulk deployments whose quantity has not come back into stock
OUTSTANDING_BULK_STATUSES = (DeploymentStatus.DEPLOYED, DeploymentStatus.DAMAGED, DeploymentStatus.LOST)


async def lock_item(db: AsyncSession, item_id: int, include_deleted: bool = False) -> InventoryItem:
    """SELECT ... FOR UPDATE on the item row, refreshing any stale copy in the session."""
    query = (
        select(InventoryItem)
        .where(InventoryItem.id == item_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    if not include_deleted:
        query = query.where(InventoryItem.deleted_at.is_(None))
    item = (await db.execute(query)).unique().scalar_one_or_none()
    if not item:
        raise NotFoundError("Inventory item", item_id)
    return item


async def apply_stock_delta(
    db: AsyncSession,
    item: InventoryItem,
    delta: int,
    reason: str,
    reference_type: str,
    reference_id: Optional[int] = None,
    actor_id: Optional[int] = None,
) -> Optional[StockTransaction]:
    """Apply one signed change to a locked item's stock. Zero is a no-op."""
    if delta == 0:
        return None

    previous = item.quantity_in_stock or 0
    new_quantity = previous + delta
    if new_quantity < 0:
        raise ConflictError(
            f"Insufficient stock for {item.name}: {previous} in stock, change of {delta} requested"
        )

    item.quantity_in_stock = new_quantity
    transaction = StockTransaction(
        item_id=item.id,
        adjustment=delta,
        previous_quantity=previous,
        new_quantity=new_quantity,
        reason=reason,
        reference_type=reference_type,
        reference_id=reference_id,
        performed_by=actor_id,
    )
    db.add(transaction)
    logger.debug(f"Stock {item.id}: {previous} -> {new_quantity} ({reference_type} {reference_id})")
    return transaction


async def compute_expected_stock(db: AsyncSession, item_id: int) -> dict:
    """Recompute stock from its event history.

    expected = received in live batches
               - bulk quantities not returned in good condition
               - live serialized units that are not AVAILABLE
    """
    item = await db.get(InventoryItem, item_id, populate_existing=True)
    if not item:
        raise NotFoundError("Inventory item", item_id)

    received = (await db.execute(
        select(func.coalesce(func.sum(Batch.quantity), 0)).where(
            Batch.inventory_item_id == item_id,
            Batch.deleted_at.is_(None),
        )
    )).scalar()

    outstanding_bulk = (await db.execute(
        select(func.coalesce(func.sum(Deployment.quantity_deployed), 0)).where(
            Deployment.inventory_item_id == item_id,
            Deployment.is_serialized.is_(False),
            Deployment.status.in_(OUTSTANDING_BULK_STATUSES),
        )
    )).scalar()

    units_out = (await db.execute(
        select(func.count(SerializedItem.id)).where(
            SerializedItem.inventory_item_id == item_id,
            SerializedItem.deleted_at.is_(None),
            SerializedItem.status != SerializedItemStatus.AVAILABLE,
        )
    )).scalar()

    expected = int(received) - int(outstanding_bulk) - int(units_out)
    return {
        "item_id": item_id,
        "quantity_in_stock": item.quantity_in_stock,
        "received": int(received),
        "outstanding_bulk": int(outstanding_bulk),
        "units_out_of_stock": int(units_out),
        "expected": expected,
        "consistent": expected == item.quantity_in_stock,
    }


async def list_transactions(
    db: AsyncSession,
    item_id: int,
    page: int = 1,
    page_size: int = 20,
) -> tuple[list[StockTransaction], int]:
    query = (
        select(StockTransaction)
        .where(StockTransaction.item_id == item_id)
        .order_by(StockTransaction.id.desc())
    )
    return await paginate(db, query, page, page_size)
