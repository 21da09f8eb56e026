"""
Deployment lifecycle: sending stock out and reconciling returns.

Both operations run in one transaction that holds row locks on the
inventory item and on every serialized unit they touch. On any error the
session is rolled back before the exception propagates, so stock, links and
unit statuses never disagree.

Return reconciliation (serialized deployments):

1. Units already returned GOOD (or FAIR) and reported with the same
   condition again are skipped.
2. Without an explicit unit list, every outstanding unit is returned with
   the uniform condition.
3. Conditions are classified GOOD / DAMAGED / LOST; FAIR counts as GOOD.
4. The stock delta is summed across units (+1 into GOOD, -1 out of GOOD)
   and applied to the item once.
5. Links and units are updated; notes are appended.
6. The deployment status is re-derived from all of its links.
7. One EQUIPMENT_RETURN notification summarises the return.
8. ``actual_return_date`` is set whenever the status leaves DEPLOYED.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Iterable, Optional, Sequence

from sqlalchemy import select, func, or_
from sqlalchemy.ext.asyncio import AsyncSession

from mdrrmo_api.exceptions import ConflictError, NotFoundError, ValidationError
from mdrrmo_api.models.deployment import (
    Deployment,
    DeploymentNote,
    DeploymentStatus,
    DeploymentType,
    NoteType,
    ReturnCondition,
    SerialItemDeployment,
)
from mdrrmo_api.models.inventory import InventoryItem
from mdrrmo_api.models.notification import NotificationPriority, NotificationType
from mdrrmo_api.models.serialized_item import SerializedItem, SerializedItemHistory, SerializedItemStatus
from mdrrmo_api.schemas.deployment import DeploymentCreate, DeploymentReturn
from mdrrmo_api.services.cache_service import CacheService, INVENTORY_PATTERNS
from mdrrmo_api.services.notification_service import emit_notification, notify_low_stock
from mdrrmo_api.services.stock_ledger import apply_stock_delta, lock_item
from mdrrmo_api.utils.pagination import paginate
from mdrrmo_api.utils.timeutils import to_naive_utc, utcnow

logger = logging.getLogger(__name__)


class StockClass(str, Enum):
    """What a return condition means for the stock counter."""

    GOOD = "GOOD"
    DAMAGED = "DAMAGED"
    LOST = "LOST"


def classify_condition(condition: ReturnCondition) -> StockClass:
    if condition in (ReturnCondition.GOOD, ReturnCondition.FAIR):
        return StockClass.GOOD
    if condition == ReturnCondition.DAMAGED:
        return StockClass.DAMAGED
    if condition == ReturnCondition.LOST:
        return StockClass.LOST
    raise ValueError(f"Unknown return condition: {condition!r}")


UNIT_STATUS_FOR = {
    StockClass.GOOD: SerializedItemStatus.AVAILABLE,
    StockClass.DAMAGED: SerializedItemStatus.DAMAGED,
    StockClass.LOST: SerializedItemStatus.LOST,
}

BULK_STATUS_FOR = {
    StockClass.GOOD: DeploymentStatus.RETURNED,
    StockClass.DAMAGED: DeploymentStatus.DAMAGED,
    StockClass.LOST: DeploymentStatus.LOST,
}


def stock_contribution(previous: Optional[ReturnCondition], new: ReturnCondition) -> int:
    """+1 when a unit moves into GOOD, -1 when it leaves GOOD, else 0."""
    was_good = previous is not None and classify_condition(previous) == StockClass.GOOD
    is_good = classify_condition(new) == StockClass.GOOD
    return int(is_good) - int(was_good)


def derive_deployment_status(links: Iterable[SerialItemDeployment]) -> DeploymentStatus:
    """Aggregate status of a serialized deployment from the full set of its links."""
    links = list(links)
    returned = [link for link in links if link.returned_at is not None]
    if not returned:
        return DeploymentStatus.DEPLOYED
    if len(returned) < len(links):
        return DeploymentStatus.PARTIAL_RETURN

    classes = {classify_condition(link.return_condition) for link in links}
    if classes == {StockClass.LOST}:
        return DeploymentStatus.LOST
    if classes == {StockClass.DAMAGED}:
        return DeploymentStatus.DAMAGED
    if classes == {StockClass.GOOD}:
        return DeploymentStatus.RETURNED
    return DeploymentStatus.PARTIAL_RETURN


@dataclass
class ReconcileResult:
    deployment: Deployment
    links: list[SerialItemDeployment] = field(default_factory=list)
    processed_ids: list[int] = field(default_factory=list)
    skipped_ids: list[int] = field(default_factory=list)
    stock_delta: int = 0
    good: int = 0
    damaged: int = 0
    lost: int = 0

    def count(self, stock_class: StockClass, n: int = 1) -> None:
        setattr(self, stock_class.value.lower(), getattr(self, stock_class.value.lower()) + n)


def _return_priority(result: ReconcileResult) -> NotificationPriority:
    if result.lost:
        return NotificationPriority.HIGH
    if result.damaged:
        return NotificationPriority.MEDIUM
    return NotificationPriority.LOW


def _duplicates(ids: Sequence[int]) -> list[int]:
    seen, dupes = set(), set()
    for i in ids:
        if i in seen:
            dupes.add(i)
        seen.add(i)
    return sorted(dupes)


async def _has_tracked_units(db: AsyncSession, item_id: int) -> bool:
    count = (await db.execute(
        select(func.count(SerializedItem.id)).where(
            SerializedItem.inventory_item_id == item_id,
            SerializedItem.deleted_at.is_(None),
        )
    )).scalar()
    return bool(count)


async def _claim_units(
    db: AsyncSession,
    item: InventoryItem,
    serial_ids: list[int],
) -> list[SerializedItem]:
    """Lock the requested units and check every one of them can be deployed."""
    duplicates = _duplicates(serial_ids)
    if duplicates:
        raise ValidationError("Serialized item ids are repeated", ids=duplicates, field="serial_item_ids")

    result = await db.execute(
        select(SerializedItem)
        .where(SerializedItem.id.in_(serial_ids), SerializedItem.deleted_at.is_(None))
        .order_by(SerializedItem.id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    units = list(result.scalars().all())
    found = {unit.id for unit in units}

    missing = [i for i in serial_ids if i not in found]
    if missing:
        raise NotFoundError("Serialized item", ids=missing, field="serial_item_ids")

    foreign = [unit.id for unit in units if unit.inventory_item_id != item.id]
    if foreign:
        raise ValidationError(
            f"Serialized items do not belong to {item.name}",
            ids=foreign,
            field="serial_item_ids",
        )

    unavailable = [unit for unit in units if unit.status != SerializedItemStatus.AVAILABLE]
    if unavailable:
        listing = ", ".join(f"{unit.serial_number} ({unit.status.value})" for unit in unavailable)
        raise ConflictError(
            f"Serialized items are not available: {listing}",
            ids=[unit.id for unit in unavailable],
            field="serial_item_ids",
        )
    return units


async def create_deployment(
    db: AsyncSession,
    payload: DeploymentCreate,
    actor_id: Optional[int] = None,
    cache: Optional[CacheService] = None,
) -> Deployment:
    """Send out either a bulk quantity or a list of serialized units."""
    try:
        serial_ids = list(payload.serial_item_ids or [])
        is_bulk = payload.quantity is not None
        if is_bulk == bool(serial_ids):
            raise ValidationError(
                "Provide either a quantity or a list of serialized item ids, not both"
                if is_bulk else
                "Provide either a quantity or a list of serialized item ids"
            )

        deployment_date = to_naive_utc(payload.deployment_date) or utcnow()
        expected_return = to_naive_utc(payload.expected_return_date)
        if expected_return and expected_return < deployment_date:
            raise ValidationError("Expected return date cannot be before the deployment date", field="expected_return_date")

        item = await lock_item(db, payload.inventory_item_id)
        if not item.is_active or not item.is_deployable:
            raise ValidationError(f"{item.name} is not deployable", ids=[item.id], field="inventory_item_id")

        if is_bulk:
            quantity = payload.quantity
            if quantity <= 0:
                raise ValidationError("Quantity must be a positive integer", ids=[quantity], field="quantity")
            if await _has_tracked_units(db, item.id):
                raise ValidationError(
                    f"{item.name} is tracked by serial number; deploy specific units instead",
                    ids=[item.id],
                    field="inventory_item_id",
                )
            if quantity > item.quantity_in_stock:
                raise ValidationError(
                    f"Insufficient stock for {item.name}: requested {quantity}, available {item.quantity_in_stock}",
                    ids=[quantity],
                    field="quantity",
                )
            units = []
        else:
            units = await _claim_units(db, item, serial_ids)
            quantity = len(units)

        deployment = Deployment(
            inventory_item_id=item.id,
            deployed_by=actor_id,
            deployed_to=payload.deployed_to,
            deployment_type=payload.deployment_type or DeploymentType.EMERGENCY,
            incident_type=payload.incident_type,
            quantity_deployed=quantity,
            is_serialized=not is_bulk,
            deployment_location=payload.deployment_location,
            deployment_date=deployment_date,
            expected_return_date=expected_return,
            status=DeploymentStatus.DEPLOYED,
            notes=payload.notes,
        )
        db.add(deployment)
        await db.flush()

        now = utcnow()
        for unit in units:
            db.add(SerialItemDeployment(
                deployment_id=deployment.id,
                serialized_item_id=unit.id,
                deployed_at=now,
            ))
            db.add(SerializedItemHistory(
                serialized_item_id=unit.id,
                deployment_id=deployment.id,
                old_status=unit.status,
                new_status=SerializedItemStatus.DEPLOYED,
                notes=f"Deployed to {deployment.deployment_location}",
                changed_by=actor_id,
            ))
            unit.status = SerializedItemStatus.DEPLOYED

        await apply_stock_delta(
            db, item, -quantity,
            reason=f"Deployed to {deployment.deployment_location}",
            reference_type="deployment",
            reference_id=deployment.id,
            actor_id=actor_id,
        )
        await db.flush()

        await notify_low_stock(db, item, actor_id)
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    logger.info(
        f"Deployment {deployment.id}: {quantity} x {item.name} to {deployment.deployment_location}"
        f"{' (serialized)' if units else ''}"
    )
    if cache:
        await cache.invalidate(*INVENTORY_PATTERNS)
    return deployment


async def _lock_deployment(db: AsyncSession, deployment_id: int) -> Deployment:
    deployment = (await db.execute(
        select(Deployment)
        .where(Deployment.id == deployment_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )).unique().scalar_one_or_none()
    if not deployment:
        raise NotFoundError("Deployment", deployment_id)
    return deployment


async def _load_links(db: AsyncSession, deployment_id: int, lock: bool = False) -> list[SerialItemDeployment]:
    query = (
        select(SerialItemDeployment)
        .where(SerialItemDeployment.deployment_id == deployment_id)
        .order_by(SerialItemDeployment.id)
        .execution_options(populate_existing=True)
    )
    if lock:
        query = query.with_for_update()
    return list((await db.execute(query)).unique().scalars().all())


def _return_summary(deployment: Deployment, item: InventoryItem, result: ReconcileResult) -> str:
    return (
        f"{item.name} returned from {deployment.deployment_location}: "
        f"{result.good} good, {result.damaged} damaged, {result.lost} lost"
    )


async def _reconcile_bulk(
    db: AsyncSession,
    deployment: Deployment,
    item: InventoryItem,
    payload: DeploymentReturn,
    return_date: datetime,
    actor_id: Optional[int],
) -> ReconcileResult:
    if payload.items:
        raise ValidationError("Bulk deployments are returned with a single condition, not per unit")
    if deployment.status != DeploymentStatus.DEPLOYED:
        raise ConflictError(
            f"Deployment {deployment.id} has already been returned ({deployment.status.value})",
            ids=[deployment.id],
        )

    stock_class = classify_condition(payload.condition)
    result = ReconcileResult(deployment=deployment)
    result.count(stock_class, deployment.quantity_deployed)
    result.stock_delta = deployment.quantity_deployed if stock_class == StockClass.GOOD else 0

    await apply_stock_delta(
        db, item, result.stock_delta,
        reason=f"Returned from {deployment.deployment_location} ({payload.condition.value})",
        reference_type="return",
        reference_id=deployment.id,
        actor_id=actor_id,
    )
    deployment.return_condition = payload.condition
    deployment.status = BULK_STATUS_FOR[stock_class]
    deployment.actual_return_date = return_date
    return result


async def _reconcile_serialized(
    db: AsyncSession,
    deployment: Deployment,
    item: InventoryItem,
    payload: DeploymentReturn,
    return_date: datetime,
    actor_id: Optional[int],
) -> ReconcileResult:
    links = await _load_links(db, deployment.id, lock=True)
    by_unit = {link.serialized_item_id: link for link in links}

    if payload.items:
        requested_ids = [entry.serialized_item_id for entry in payload.items]
        duplicates = _duplicates(requested_ids)
        if duplicates:
            raise ValidationError("Serialized item ids are repeated", ids=duplicates, field="items")
        foreign = [i for i in requested_ids if i not in by_unit]
        if foreign:
            raise ValidationError(
                f"Serialized items are not part of deployment {deployment.id}",
                ids=foreign,
                field="items",
            )
        requests = [
            (by_unit[entry.serialized_item_id], entry.condition, entry.notes or payload.notes)
            for entry in payload.items
        ]
    else:
        outstanding = [link for link in links if link.returned_at is None]
        if not outstanding:
            raise ConflictError(f"All units of deployment {deployment.id} have already been returned")
        requests = [(link, payload.condition, payload.notes) for link in outstanding]

    result = ReconcileResult(deployment=deployment, links=links)
    stamp = return_date.strftime("%Y-%m-%d")
    for link, condition, note in requests:
        unit = link.serialized_item
        previous = link.return_condition if link.returned_at is not None else None

        if (
            previous is not None
            and previous == condition
            and classify_condition(condition) == StockClass.GOOD
        ):
            result.skipped_ids.append(unit.id)
            continue

        expected_status = (
            SerializedItemStatus.DEPLOYED if previous is None
            else UNIT_STATUS_FOR[classify_condition(previous)]
        )
        if unit.status != expected_status:
            raise ConflictError(
                f"Serialized item {unit.serial_number} is {unit.status.value}; "
                f"it cannot be returned on deployment {deployment.id}",
                ids=[unit.id],
                field="items",
            )

        stock_class = classify_condition(condition)
        result.stock_delta += stock_contribution(previous, condition)
        result.count(stock_class)
        result.processed_ids.append(unit.id)

        link.returned_at = return_date
        link.return_condition = condition
        link.append_notes(note)

        new_status = UNIT_STATUS_FOR[stock_class]
        db.add(SerializedItemHistory(
            serialized_item_id=unit.id,
            deployment_id=deployment.id,
            old_status=unit.status,
            new_status=new_status,
            old_condition=previous.value if previous else None,
            new_condition=condition.value,
            notes=note,
            changed_by=actor_id,
        ))
        unit.status = new_status
        unit.append_notes(
            f"[{stamp}] Returned {condition.value} from deployment #{deployment.id}"
            + (f": {note}" if note else "")
        )

    if not result.processed_ids:
        return result

    await apply_stock_delta(
        db, item, result.stock_delta,
        reason=f"Returned from {deployment.deployment_location}",
        reference_type="return",
        reference_id=deployment.id,
        actor_id=actor_id,
    )
    deployment.status = derive_deployment_status(links)
    deployment.actual_return_date = return_date if deployment.status != DeploymentStatus.DEPLOYED else None
    return result


async def reconcile_return(
    db: AsyncSession,
    deployment_id: int,
    payload: DeploymentReturn,
    actor_id: Optional[int] = None,
    cache: Optional[CacheService] = None,
) -> ReconcileResult:
    """Apply a full or partial return and recompute stock and deployment status."""
    try:
        deployment = await _lock_deployment(db, deployment_id)
        item = await lock_item(db, deployment.inventory_item_id, include_deleted=True)

        return_date = to_naive_utc(payload.return_date) or utcnow()
        if return_date < deployment.deployment_date:
            raise ValidationError("Return date cannot be before the deployment date", field="return_date")

        if deployment.is_serialized:
            result = await _reconcile_serialized(db, deployment, item, payload, return_date, actor_id)
        else:
            result = await _reconcile_bulk(db, deployment, item, payload, return_date, actor_id)

        if not result.processed_ids and deployment.is_serialized:
            await db.commit()
            logger.info(f"Return on deployment {deployment_id}: nothing to apply, {len(result.skipped_ids)} skipped")
            return result

        summary = _return_summary(deployment, item, result)
        db.add(DeploymentNote(
            deployment_id=deployment.id,
            note=summary + (f". {payload.notes}" if payload.notes else ""),
            note_type=NoteType.SYSTEM,
            created_by=actor_id,
        ))
        await db.flush()
        await emit_notification(
            db,
            NotificationType.EQUIPMENT_RETURN,
            title="Equipment Returned",
            message=summary,
            priority=_return_priority(result),
            inventory_item_id=item.id,
            deployment_id=deployment.id,
            user_id=actor_id,
        )
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    logger.info(
        f"Return on deployment {deployment_id}: status {deployment.status.value}, "
        f"stock delta {result.stock_delta:+d}, {len(result.skipped_ids)} skipped"
    )
    if cache:
        await cache.invalidate(*INVENTORY_PATTERNS)
    return result


async def get_deployment(db: AsyncSession, deployment_id: int) -> tuple[Deployment, list[SerialItemDeployment]]:
    deployment = (await db.execute(
        select(Deployment)
        .where(Deployment.id == deployment_id)
        .execution_options(populate_existing=True)
    )).unique().scalar_one_or_none()
    if not deployment:
        raise NotFoundError("Deployment", deployment_id)
    links = await _load_links(db, deployment_id) if deployment.is_serialized else []
    return deployment, links


async def list_deployments(
    db: AsyncSession,
    page: int = 1,
    page_size: int = 20,
    status: Optional[DeploymentStatus] = None,
    deployment_type: Optional[DeploymentType] = None,
    item_id: Optional[int] = None,
    date_from: Optional[datetime] = None,
    date_to: Optional[datetime] = None,
    search: Optional[str] = None,
) -> tuple[list[Deployment], int]:
    query = select(Deployment)
    if status:
        query = query.where(Deployment.status == status)
    if deployment_type:
        query = query.where(Deployment.deployment_type == deployment_type)
    if item_id:
        query = query.where(Deployment.inventory_item_id == item_id)
    if date_from:
        query = query.where(Deployment.deployment_date >= to_naive_utc(date_from))
    if date_to:
        query = query.where(Deployment.deployment_date <= to_naive_utc(date_to))
    if search:
        item_ids = select(InventoryItem.id).where(InventoryItem.name.ilike(f"%{search}%"))
        query = query.where(or_(
            Deployment.deployment_location.ilike(f"%{search}%"),
            Deployment.incident_type.ilike(f"%{search}%"),
            Deployment.inventory_item_id.in_(item_ids),
        ))
    query = query.order_by(Deployment.deployment_date.desc(), Deployment.id.desc())
    return await paginate(db, query, page, page_size)


async def list_overdue_deployments(db: AsyncSession, now: Optional[datetime] = None) -> list[Deployment]:
    """Deployments still out past their expected return date, oldest first."""
    now = now or utcnow()
    result = await db.execute(
        select(Deployment)
        .where(
            Deployment.status.in_((DeploymentStatus.DEPLOYED, DeploymentStatus.PARTIAL_RETURN)),
            Deployment.expected_return_date.is_not(None),
            Deployment.expected_return_date < now,
        )
        .order_by(Deployment.expected_return_date.asc())
    )
    return list(result.unique().scalars().all())


async def add_note(
    db: AsyncSession,
    deployment_id: int,
    text: str,
    actor_id: Optional[int] = None,
) -> DeploymentNote:
    deployment = await db.get(Deployment, deployment_id)
    if not deployment:
        raise NotFoundError("Deployment", deployment_id)
    note = DeploymentNote(
        deployment_id=deployment_id,
        note=text,
        note_type=NoteType.USER,
        created_by=actor_id,
    )
    db.add(note)
    await db.commit()
    await db.refresh(note)
    return note


async def list_notes(db: AsyncSession, deployment_id: int) -> list[DeploymentNote]:
    deployment = await db.get(Deployment, deployment_id)
    if not deployment:
        raise NotFoundError("Deployment", deployment_id)
    result = await db.execute(
        select(DeploymentNote)
        .where(DeploymentNote.deployment_id == deployment_id)
        .order_by(DeploymentNote.created_at.asc(), DeploymentNote.id.asc())
    )
    return list(result.scalars().all())
