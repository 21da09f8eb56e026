"""Batch API - stock receipts."""

from fastapi import APIRouter, Query, status
from typing import Optional

from mdrrmo_api.api.deps import DbSession, CurrentUser, AdminUser, Cache
from mdrrmo_api.config import settings
from mdrrmo_api.models.batch import Batch
from mdrrmo_api.schemas.batch import BatchCreate, BatchUpdate, BatchResponse, BatchReceiptResponse
from mdrrmo_api.schemas.common import PageMeta, envelope
from mdrrmo_api.services import batch_service
from mdrrmo_api.services.cache_service import build_key

router = APIRouter()


def batch_to_response(batch: Batch) -> dict:
    return BatchResponse.model_validate(batch).model_dump(mode="json")


@router.get("")
async def list_batches(
    db: DbSession,
    current_user: CurrentUser,
    cache: Cache,
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    item_id: Optional[int] = None,
    supplier: Optional[str] = None,
    is_active: Optional[bool] = None,
    expiring_soon: bool = False,
    search: Optional[str] = None,
):
    key = build_key(
        "batches", page=page, page_size=page_size, item_id=item_id, supplier=supplier,
        is_active=is_active, expiring_soon=expiring_soon, search=search,
    )
    cached = await cache.get(key)
    if cached is not None:
        return cached

    batches, total = await batch_service.list_batches(
        db, page, page_size,
        item_id=item_id, supplier=supplier, is_active=is_active,
        expiring_soon=expiring_soon, search=search,
    )
    body = envelope(
        [batch_to_response(b) for b in batches],
        meta=PageMeta(total=total, page=page, page_size=page_size),
    )
    await cache.set(key, body)
    return body


@router.get("/expiring")
async def list_expiring(
    db: DbSession,
    current_user: CurrentUser,
    days: int = Query(settings.EXPIRY_WARNING_DAYS, ge=1, le=365),
):
    batches = await batch_service.list_expiring_batches(db, days)
    return envelope([batch_to_response(b) for b in batches])


@router.get("/{batch_id}")
async def get_batch(batch_id: int, db: DbSession, current_user: CurrentUser):
    return envelope(batch_to_response(await batch_service.get_batch(db, batch_id)))


@router.post("", status_code=status.HTTP_201_CREATED)
async def receive_batch(data: BatchCreate, db: DbSession, admin: AdminUser, cache: Cache):
    """Receive stock for an item, minting serialized units when required."""
    receipt = await batch_service.receive_batch(
        db,
        inventory_item_id=data.inventory_item_id,
        quantity=data.quantity,
        actor_id=admin.id,
        cache=cache,
        expiry_date=data.expiry_date,
        received_date=data.received_date,
        supplier=data.supplier,
        funding_source=data.funding_source,
        cost=data.cost,
        notes=data.notes,
    )
    body = BatchReceiptResponse(
        **BatchResponse.model_validate(receipt.batch).model_dump(),
        is_serialized=receipt.is_serialized,
        serial_numbers=receipt.serial_numbers,
    )
    return envelope(body.model_dump(mode="json"), message="A batch has been created!")


@router.patch("/{batch_id}")
async def update_batch(batch_id: int, data: BatchUpdate, db: DbSession, admin: AdminUser, cache: Cache):
    batch = await batch_service.update_batch(
        db, batch_id, data.model_dump(exclude_unset=True), actor_id=admin.id, cache=cache,
    )
    return envelope(batch_to_response(batch), message="Batch updated")


@router.delete("/{batch_id}")
async def delete_batch(batch_id: int, db: DbSession, admin: AdminUser, cache: Cache):
    batch = await batch_service.delete_batch(db, batch_id, actor_id=admin.id, cache=cache)
    return envelope(batch_to_response(batch), message="Batch deleted")


@router.post("/{batch_id}/restore")
async def restore_batch(batch_id: int, db: DbSession, admin: AdminUser, cache: Cache):
    batch = await batch_service.restore_batch(db, batch_id, actor_id=admin.id, cache=cache)
    return envelope(batch_to_response(batch), message="Batch restored")
