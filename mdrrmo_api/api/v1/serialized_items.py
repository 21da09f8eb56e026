"""Serialized unit API."""

from fastapi import APIRouter, Query
from typing import Optional

from mdrrmo_api.api.deps import DbSession, CurrentUser, AdminUser, Cache
from mdrrmo_api.models.serialized_item import SerializedItemStatus
from mdrrmo_api.schemas.common import PageMeta, envelope
from mdrrmo_api.schemas.serialized_item import (
    SerializedItemHistoryResponse,
    SerializedItemResponse,
    UnitStatusUpdate,
)
from mdrrmo_api.services import unit_service
from mdrrmo_api.services.cache_service import build_key

router = APIRouter()


def unit_to_response(unit) -> dict:
    return SerializedItemResponse.model_validate(unit).model_dump(mode="json")


@router.get("")
async def list_units(
    db: DbSession,
    current_user: CurrentUser,
    cache: Cache,
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=200),
    item_id: Optional[int] = None,
    batch_id: Optional[int] = None,
    status: Optional[SerializedItemStatus] = None,
    search: Optional[str] = None,
):
    key = build_key(
        "serialized", page=page, page_size=page_size, item_id=item_id, batch_id=batch_id,
        status=status.value if status else None, search=search,
    )
    cached = await cache.get(key)
    if cached is not None:
        return cached

    units, total = await unit_service.list_units(
        db, page, page_size, item_id=item_id, batch_id=batch_id, status=status, search=search,
    )
    body = envelope(
        [unit_to_response(u) for u in units],
        meta=PageMeta(total=total, page=page, page_size=page_size),
    )
    await cache.set(key, body)
    return body


@router.get("/by-serial/{serial_number}")
async def get_unit_by_serial(serial_number: str, db: DbSession, current_user: CurrentUser):
    return envelope(unit_to_response(await unit_service.get_unit_by_serial(db, serial_number)))


@router.get("/{unit_id}")
async def get_unit(unit_id: int, db: DbSession, current_user: CurrentUser):
    return envelope(unit_to_response(await unit_service.get_unit(db, unit_id)))


@router.get("/{unit_id}/history")
async def get_unit_history(unit_id: int, db: DbSession, current_user: CurrentUser):
    history = await unit_service.unit_history(db, unit_id)
    return envelope([
        SerializedItemHistoryResponse.model_validate(h).model_dump(mode="json") for h in history
    ])


@router.patch("/{unit_id}/status")
async def change_unit_status(
    unit_id: int,
    data: UnitStatusUpdate,
    db: DbSession,
    admin: AdminUser,
    cache: Cache,
):
    unit = await unit_service.change_unit_status(
        db, unit_id, data.status, notes=data.notes, actor_id=admin.id, cache=cache,
    )
    return envelope(unit_to_response(unit), message="Status updated")
