"""
Tests for batch receipt and batch administration.

Every test re-checks the stock identity against the batch, deployment and
unit history after the operation under test.
"""
from datetime import timedelta
from unittest.mock import patch

import pytest
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from mdrrmo_api.exceptions import ConflictError, NotFoundError, ValidationError
from mdrrmo_api.models.batch import Batch
from mdrrmo_api.models.inventory import InventoryItem
from mdrrmo_api.models.notification import InventoryNotification, NotificationPriority, NotificationType
from mdrrmo_api.models.serialized_item import SerializedItem, SerializedItemStatus
from mdrrmo_api.models.stock_transaction import StockTransaction
from mdrrmo_api.schemas.deployment import DeploymentCreate
from mdrrmo_api.services import batch_service
from mdrrmo_api.services.batch_service import (
    delete_batch,
    list_batches,
    list_expiring_batches,
    receive_batch,
    restore_batch,
    update_batch,
)
from mdrrmo_api.services.deployment_service import create_deployment
from mdrrmo_api.utils.timeutils import utcnow


async def _count(db: AsyncSession, model, *where) -> int:
    return (await db.execute(select(func.count()).select_from(model).where(*where))).scalar()


async def _stock(db: AsyncSession, item_id: int) -> int:
    item = await db.get(InventoryItem, item_id, populate_existing=True)
    return item.quantity_in_stock


class TestReceiveBatch:
    """Tests for receive_batch."""

    @pytest.mark.asyncio
    async def test_returnable_receipt_mints_available_units(
        self, test_db, radio_item, admin_user, assert_stock_identity
    ):
        """Receiving 5 radios creates 5 AVAILABLE units and adds 5 to stock."""
        receipt = await receive_batch(test_db, radio_item.id, 5, actor_id=admin_user.id)

        assert receipt.is_serialized is True
        assert len(receipt.serial_numbers) == 5
        assert receipt.batch.batch_number.startswith("HAN-")

        units = (await test_db.execute(
            select(SerializedItem).where(SerializedItem.batch_id == receipt.batch.id)
        )).scalars().all()
        assert len(units) == 5
        assert {u.status for u in units} == {SerializedItemStatus.AVAILABLE}
        assert sorted(u.serial_number for u in units) == receipt.serial_numbers
        assert all(s.startswith(f"RES-{receipt.batch.batch_number}-") for s in receipt.serial_numbers)

        assert await _stock(test_db, radio_item.id) == 5
        await assert_stock_identity(radio_item.id)

    @pytest.mark.asyncio
    async def test_consumable_receipt_only_bumps_stock(
        self, test_db, rice_item, admin_user, assert_stock_identity
    ):
        receipt = await receive_batch(
            test_db, rice_item.id, 40, actor_id=admin_user.id, supplier="NFA", funding_source="LDRRMF",
        )

        assert receipt.is_serialized is False
        assert receipt.serial_numbers == []
        assert await _count(test_db, SerializedItem) == 0
        assert await _stock(test_db, rice_item.id) == 40

        transaction = (await test_db.execute(select(StockTransaction))).scalar_one()
        assert transaction.adjustment == 40
        assert transaction.reference_type == "batch_receipt"
        assert transaction.reference_id == receipt.batch.id
        assert transaction.performed_by == admin_user.id
        await assert_stock_identity(rice_item.id)

    @pytest.mark.asyncio
    async def test_serial_numbers_never_repeat_across_batches(self, test_db, radio_item, admin_user):
        first = await receive_batch(test_db, radio_item.id, 3, actor_id=admin_user.id)
        second = await receive_batch(test_db, radio_item.id, 3, actor_id=admin_user.id)

        assert not set(first.serial_numbers) & set(second.serial_numbers)
        assert await _count(test_db, SerializedItem) == 6

    @pytest.mark.asyncio
    @pytest.mark.parametrize("quantity", [0, -3])
    async def test_non_positive_quantity_is_rejected(self, test_db, rice_item, quantity):
        item_id = rice_item.id
        with pytest.raises(ValidationError):
            await receive_batch(test_db, item_id, quantity)

        assert await _count(test_db, Batch) == 0
        assert await _stock(test_db, item_id) == 0

    @pytest.mark.asyncio
    async def test_missing_item_is_a_validation_error(self, test_db):
        with pytest.raises(ValidationError) as exc:
            await receive_batch(test_db, 9999, 5)
        assert exc.value.status_code == 400
        assert exc.value.errors == [{"field": "inventory_item_id", "ids": [9999]}]

    @pytest.mark.asyncio
    async def test_failure_part_way_leaves_nothing_behind(self, test_db, radio_item, admin_user):
        """A failure after the units are staged rolls back batch, units and stock together."""
        item_id = radio_item.id
        with patch.object(batch_service, "apply_stock_delta", side_effect=RuntimeError("disk full")):
            with pytest.raises(RuntimeError):
                await receive_batch(test_db, item_id, 4, actor_id=admin_user.id)

        assert await _count(test_db, Batch) == 0
        assert await _count(test_db, SerializedItem) == 0
        assert await _count(test_db, StockTransaction) == 0
        assert await _stock(test_db, item_id) == 0

    @pytest.mark.asyncio
    async def test_batch_number_collision_is_retried(self, test_db, rice_item):
        first = await receive_batch(test_db, rice_item.id, 1)
        taken = first.batch.batch_number

        with patch.object(batch_service, "generate_batch_number", side_effect=[taken, "RIC-FRESH-0001"]):
            second = await receive_batch(test_db, rice_item.id, 1)

        assert second.batch.batch_number == "RIC-FRESH-0001"

    @pytest.mark.asyncio
    async def test_batch_number_exhaustion_is_a_conflict(self, test_db, rice_item):
        item_id = rice_item.id
        first = await receive_batch(test_db, item_id, 1)
        taken = first.batch.batch_number

        with patch.object(batch_service, "generate_batch_number", return_value=taken):
            with pytest.raises(ConflictError):
                await receive_batch(test_db, item_id, 1)

        assert await _count(test_db, Batch) == 1
        assert await _stock(test_db, item_id) == 1

    @pytest.mark.asyncio
    async def test_duplicate_serial_number_is_a_conflict(self, test_db, radio_item, assert_stock_identity):
        """A serial that already exists is reported as 409 and the receipt is discarded."""
        item_id = radio_item.id
        first = await receive_batch(test_db, item_id, 1)

        with patch.object(batch_service, "generate_serials", return_value=list(first.serial_numbers)):
            with pytest.raises(ConflictError) as exc:
                await receive_batch(test_db, item_id, 1)

        assert exc.value.status_code == 409
        assert exc.value.errors == [{"field": "serial_number", "message": "duplicate value"}]
        assert await _count(test_db, Batch) == 1
        assert await _count(test_db, SerializedItem) == 1
        assert await _stock(test_db, item_id) == 1
        await assert_stock_identity(item_id)

    @pytest.mark.asyncio
    async def test_batch_number_race_is_a_conflict(self, test_db, rice_item):
        """A batch number taken between the availability check and the insert is still a 409."""
        item_id = rice_item.id
        first = await receive_batch(test_db, item_id, 1)
        taken = first.batch.batch_number

        async def stale_check(db, item_name):
            return taken

        with patch.object(batch_service, "_unique_batch_number", side_effect=stale_check):
            with pytest.raises(ConflictError) as exc:
                await receive_batch(test_db, item_id, 1)

        assert exc.value.errors == [{"field": "batch_number", "message": "duplicate value"}]
        assert await _count(test_db, Batch) == 1
        assert await _stock(test_db, item_id) == 1

    @pytest.mark.asyncio
    async def test_already_expired_batch_is_flagged_as_expired(self, test_db, rice_item):
        await receive_batch(test_db, rice_item.id, 10, expiry_date=utcnow().date() - timedelta(days=5))

        notification = (await test_db.execute(select(InventoryNotification))).scalar_one()
        assert notification.type == NotificationType.EXPIRING_SOON
        assert notification.priority == NotificationPriority.HIGH
        assert notification.title == "Batch Already Expired"
        assert notification.message.endswith("expired 5 days ago")
        assert "-5" not in notification.message

    @pytest.mark.asyncio
    async def test_batch_expiring_on_receipt_day(self, test_db, rice_item):
        await receive_batch(test_db, rice_item.id, 10, expiry_date=utcnow().date())

        notification = (await test_db.execute(select(InventoryNotification))).scalar_one()
        assert notification.priority == NotificationPriority.HIGH
        assert notification.message.endswith("expires today")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("days,priority", [
        (3, NotificationPriority.HIGH),
        (7, NotificationPriority.HIGH),
        (20, NotificationPriority.MEDIUM),
    ])
    async def test_expiring_batch_notifies(self, test_db, rice_item, days, priority):
        await receive_batch(test_db, rice_item.id, 10, expiry_date=utcnow().date() + timedelta(days=days))

        notification = (await test_db.execute(
            select(InventoryNotification).where(InventoryNotification.type == NotificationType.EXPIRING_SOON)
        )).scalar_one()
        assert notification.priority == priority
        assert notification.inventory_item_id == rice_item.id
        assert f"{days} days" in notification.message

    @pytest.mark.asyncio
    async def test_distant_expiry_does_not_notify(self, test_db, rice_item):
        await receive_batch(test_db, rice_item.id, 10, expiry_date=utcnow().date() + timedelta(days=180))
        assert await _count(test_db, InventoryNotification) == 0


class TestUpdateBatch:
    """Tests for update_batch."""

    @pytest.mark.asyncio
    async def test_quantity_correction_moves_stock(self, test_db, rice_item, assert_stock_identity):
        receipt = await receive_batch(test_db, rice_item.id, 10)

        batch = await update_batch(test_db, receipt.batch.id, {"quantity": 12, "supplier": "DSWD"})

        assert batch.quantity == 12
        assert batch.supplier == "DSWD"
        assert await _stock(test_db, rice_item.id) == 12
        await assert_stock_identity(rice_item.id)

    @pytest.mark.asyncio
    async def test_correction_cannot_take_stock_negative(self, test_db, rice_item, assert_stock_identity):
        item_id = rice_item.id
        receipt = await receive_batch(test_db, item_id, 10)
        batch_id = receipt.batch.id
        await create_deployment(test_db, DeploymentCreate(
            inventory_item_id=item_id, quantity=8, deployment_location="Evacuation Center",
        ))

        with pytest.raises(ConflictError):
            await update_batch(test_db, batch_id, {"quantity": 5})

        batch = await test_db.get(Batch, batch_id, populate_existing=True)
        assert batch.quantity == 10
        assert await _stock(test_db, item_id) == 2
        await assert_stock_identity(item_id)

    @pytest.mark.asyncio
    async def test_serialized_batch_quantity_is_fixed(self, test_db, radio_item):
        receipt = await receive_batch(test_db, radio_item.id, 3)

        with pytest.raises(ConflictError):
            await update_batch(test_db, receipt.batch.id, {"quantity": 5})

    @pytest.mark.asyncio
    async def test_metadata_edit_on_serialized_batch(self, test_db, radio_item):
        receipt = await receive_batch(test_db, radio_item.id, 3)
        batch = await update_batch(test_db, receipt.batch.id, {"notes": "Checked", "quantity": 3})
        assert batch.notes == "Checked"

    @pytest.mark.asyncio
    async def test_new_expiry_is_rechecked(self, test_db, rice_item):
        receipt = await receive_batch(test_db, rice_item.id, 10)
        await update_batch(test_db, receipt.batch.id, {"expiry_date": utcnow().date() + timedelta(days=2)})

        notification = (await test_db.execute(select(InventoryNotification))).scalar_one()
        assert notification.type == NotificationType.EXPIRING_SOON
        assert notification.priority == NotificationPriority.HIGH

    @pytest.mark.asyncio
    async def test_missing_batch(self, test_db):
        with pytest.raises(NotFoundError):
            await update_batch(test_db, 404, {"notes": "x"})


class TestDeleteAndRestoreBatch:
    """Tests for delete_batch and restore_batch."""

    @pytest.mark.asyncio
    async def test_delete_reverses_stock_and_hides_units(self, test_db, radio_item, assert_stock_identity):
        receipt = await receive_batch(test_db, radio_item.id, 4)

        batch = await delete_batch(test_db, receipt.batch.id)

        assert batch.deleted_at is not None
        assert batch.is_active is False
        assert await _stock(test_db, radio_item.id) == 0
        assert await _count(test_db, SerializedItem, SerializedItem.deleted_at.is_(None)) == 0
        await assert_stock_identity(radio_item.id)

    @pytest.mark.asyncio
    async def test_delete_refused_while_units_are_out(self, test_db, radio_item, assert_stock_identity):
        item_id = radio_item.id
        receipt = await receive_batch(test_db, item_id, 2)
        batch_id = receipt.batch.id
        unit_ids = (await test_db.execute(
            select(SerializedItem.id).where(SerializedItem.batch_id == batch_id).order_by(SerializedItem.id)
        )).scalars().all()
        await create_deployment(test_db, DeploymentCreate(
            inventory_item_id=item_id, serial_item_ids=[unit_ids[0]], deployment_location="Riverside",
        ))

        with pytest.raises(ConflictError) as exc:
            await delete_batch(test_db, batch_id)
        assert exc.value.errors == [{"field": "serialized_item_ids", "ids": [unit_ids[0]]}]

        batch = await test_db.get(Batch, batch_id, populate_existing=True)
        assert batch.deleted_at is None
        await assert_stock_identity(item_id)

    @pytest.mark.asyncio
    async def test_restore_reapplies_stock(self, test_db, radio_item, assert_stock_identity):
        receipt = await receive_batch(test_db, radio_item.id, 4)
        await delete_batch(test_db, receipt.batch.id)

        batch = await restore_batch(test_db, receipt.batch.id)

        assert batch.deleted_at is None
        assert await _stock(test_db, radio_item.id) == 4
        assert await _count(test_db, SerializedItem, SerializedItem.deleted_at.is_(None)) == 4
        await assert_stock_identity(radio_item.id)

    @pytest.mark.asyncio
    async def test_restore_of_live_batch_is_a_conflict(self, test_db, rice_item):
        receipt = await receive_batch(test_db, rice_item.id, 4)
        with pytest.raises(ConflictError):
            await restore_batch(test_db, receipt.batch.id)

    @pytest.mark.asyncio
    async def test_deleted_batch_cannot_be_deleted_again(self, test_db, rice_item):
        receipt = await receive_batch(test_db, rice_item.id, 4)
        await delete_batch(test_db, receipt.batch.id)
        with pytest.raises(NotFoundError):
            await delete_batch(test_db, receipt.batch.id)


class TestListBatches:
    @pytest.mark.asyncio
    async def test_filters(self, test_db, rice_item, radio_item):
        await receive_batch(test_db, rice_item.id, 10, supplier="NFA Region V")
        await receive_batch(test_db, radio_item.id, 1, supplier="Motorola")

        batches, total = await list_batches(test_db, item_id=rice_item.id)
        assert total == 1
        assert batches[0].inventory_item_id == rice_item.id

        batches, total = await list_batches(test_db, supplier="moto")
        assert total == 1
        assert batches[0].supplier == "Motorola"

    @pytest.mark.asyncio
    async def test_expiring_batches(self, test_db, rice_item):
        await receive_batch(test_db, rice_item.id, 1, expiry_date=utcnow().date() + timedelta(days=40))
        await receive_batch(test_db, rice_item.id, 1, expiry_date=utcnow().date() + timedelta(days=5))
        await receive_batch(test_db, rice_item.id, 1)

        expiring = await list_expiring_batches(test_db, days=30)
        assert [b.expiry_date for b in expiring] == [utcnow().date() + timedelta(days=5)]

        batches, total = await list_batches(test_db, expiring_soon=True)
        assert total == 1
