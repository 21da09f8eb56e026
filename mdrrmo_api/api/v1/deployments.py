"""Deployment API - sending equipment out and recording returns."""

from datetime import datetime

from fastapi import APIRouter, Query, status
from typing import Optional

from mdrrmo_api.api.deps import DbSession, CurrentUser, AdminUser, Cache
from mdrrmo_api.models.deployment import Deployment, DeploymentStatus, DeploymentType, SerialItemDeployment
from mdrrmo_api.schemas.common import PageMeta, envelope
from mdrrmo_api.schemas.deployment import (
    DeploymentCreate,
    DeploymentNoteCreate,
    DeploymentNoteResponse,
    DeploymentResponse,
    DeploymentReturn,
    ReconcileResponse,
    SerialLinkResponse,
)
from mdrrmo_api.services import deployment_service
from mdrrmo_api.services.cache_service import build_key
from mdrrmo_api.utils.timeutils import utcnow

router = APIRouter()

OPEN_STATUSES = (DeploymentStatus.DEPLOYED, DeploymentStatus.PARTIAL_RETURN)


def link_to_response(link: SerialItemDeployment) -> SerialLinkResponse:
    return SerialLinkResponse(
        id=link.id,
        serialized_item_id=link.serialized_item_id,
        serial_number=link.serialized_item.serial_number,
        deployed_at=link.deployed_at,
        returned_at=link.returned_at,
        return_condition=link.return_condition,
        notes=link.notes,
    )


def deployment_to_response(
    deployment: Deployment,
    links: Optional[list[SerialItemDeployment]] = None,
) -> DeploymentResponse:
    is_overdue = (
        deployment.status in OPEN_STATUSES
        and deployment.expected_return_date is not None
        and deployment.expected_return_date < utcnow()
    )
    return DeploymentResponse(
        id=deployment.id,
        inventory_item_id=deployment.inventory_item_id,
        item_name=deployment.item.name,
        deployed_by=deployment.deployed_by,
        deployed_to=deployment.deployed_to,
        deployment_type=deployment.deployment_type,
        incident_type=deployment.incident_type,
        quantity_deployed=deployment.quantity_deployed,
        is_serialized=deployment.is_serialized,
        deployment_location=deployment.deployment_location,
        deployment_date=deployment.deployment_date,
        expected_return_date=deployment.expected_return_date,
        actual_return_date=deployment.actual_return_date,
        status=deployment.status,
        return_condition=deployment.return_condition,
        notes=deployment.notes,
        is_overdue=is_overdue,
        created_at=deployment.created_at,
        serial_items=[link_to_response(link) for link in links or []],
    )


async def _detail(db, deployment_id: int) -> dict:
    deployment, links = await deployment_service.get_deployment(db, deployment_id)
    return deployment_to_response(deployment, links).model_dump(mode="json")


@router.get("")
async def list_deployments(
    db: DbSession,
    current_user: CurrentUser,
    cache: Cache,
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    status: Optional[DeploymentStatus] = None,
    deployment_type: Optional[DeploymentType] = None,
    item_id: Optional[int] = None,
    date_from: Optional[datetime] = None,
    date_to: Optional[datetime] = None,
    search: Optional[str] = None,
):
    key = build_key(
        "deployments", page=page, page_size=page_size,
        status=status.value if status else None,
        deployment_type=deployment_type.value if deployment_type else None,
        item_id=item_id,
        date_from=date_from.isoformat() if date_from else None,
        date_to=date_to.isoformat() if date_to else None,
        search=search,
    )
    cached = await cache.get(key)
    if cached is not None:
        return cached

    deployments, total = await deployment_service.list_deployments(
        db, page, page_size,
        status=status, deployment_type=deployment_type, item_id=item_id,
        date_from=date_from, date_to=date_to, search=search,
    )
    body = envelope(
        [deployment_to_response(d).model_dump(mode="json") for d in deployments],
        meta=PageMeta(total=total, page=page, page_size=page_size),
    )
    await cache.set(key, body)
    return body


@router.get("/overdue")
async def list_overdue(db: DbSession, current_user: CurrentUser):
    deployments = await deployment_service.list_overdue_deployments(db)
    return envelope([deployment_to_response(d).model_dump(mode="json") for d in deployments])


@router.get("/{deployment_id}")
async def get_deployment(deployment_id: int, db: DbSession, current_user: CurrentUser):
    return envelope(await _detail(db, deployment_id))


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_deployment(data: DeploymentCreate, db: DbSession, admin: AdminUser, cache: Cache):
    """Deploy a bulk quantity or specific serialized units."""
    deployment = await deployment_service.create_deployment(db, data, actor_id=admin.id, cache=cache)
    return envelope(await _detail(db, deployment.id), message="Deployment created")


@router.post("/{deployment_id}/return")
async def return_deployment(
    deployment_id: int,
    data: DeploymentReturn,
    db: DbSession,
    admin: AdminUser,
    cache: Cache,
):
    """Record a full or partial return and reconcile stock."""
    result = await deployment_service.reconcile_return(db, deployment_id, data, actor_id=admin.id, cache=cache)
    deployment, links = await deployment_service.get_deployment(db, deployment_id)
    body = ReconcileResponse(
        deployment=deployment_to_response(deployment, links),
        processed_ids=result.processed_ids,
        skipped_ids=result.skipped_ids,
        stock_delta=result.stock_delta,
        good=result.good,
        damaged=result.damaged,
        lost=result.lost,
    )
    applied = result.processed_ids or not deployment.is_serialized
    message = "Return recorded" if applied else "Nothing to update; all units already recorded"
    return envelope(body.model_dump(mode="json"), message=message)


@router.get("/{deployment_id}/notes")
async def list_notes(deployment_id: int, db: DbSession, current_user: CurrentUser):
    notes = await deployment_service.list_notes(db, deployment_id)
    return envelope([DeploymentNoteResponse.model_validate(n).model_dump(mode="json") for n in notes])


@router.post("/{deployment_id}/notes", status_code=status.HTTP_201_CREATED)
async def add_note(deployment_id: int, data: DeploymentNoteCreate, db: DbSession, current_user: CurrentUser):
    note = await deployment_service.add_note(db, deployment_id, data.note, actor_id=current_user.id)
    return envelope(DeploymentNoteResponse.model_validate(note).model_dump(mode="json"), message="Note added")
