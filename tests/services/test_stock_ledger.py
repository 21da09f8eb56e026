"""
Tests for the stock ledger primitives.
"""
import pytest
from sqlalchemy import select

from mdrrmo_api.exceptions import ConflictError, NotFoundError
from mdrrmo_api.models.stock_transaction import StockTransaction
from mdrrmo_api.services.batch_service import receive_batch
from mdrrmo_api.services.stock_ledger import (
    apply_stock_delta,
    compute_expected_stock,
    list_transactions,
    lock_item,
)


class TestApplyStockDelta:
    @pytest.mark.asyncio
    async def test_increment_writes_transaction(self, test_db, rice_item, admin_user):
        item = await lock_item(test_db, rice_item.id)
        transaction = await apply_stock_delta(
            test_db, item, 7, reason="Opening count", reference_type="batch_receipt", actor_id=admin_user.id,
        )
        await test_db.commit()

        assert item.quantity_in_stock == 7
        assert (transaction.previous_quantity, transaction.new_quantity, transaction.adjustment) == (0, 7, 7)

    @pytest.mark.asyncio
    async def test_zero_delta_is_a_no_op(self, test_db, rice_item):
        item = await lock_item(test_db, rice_item.id)
        assert await apply_stock_delta(test_db, item, 0, reason="noop", reference_type="return") is None
        await test_db.commit()
        assert (await test_db.execute(select(StockTransaction))).scalars().all() == []

    @pytest.mark.asyncio
    async def test_negative_result_is_refused(self, test_db, rice_item):
        item = await lock_item(test_db, rice_item.id)
        with pytest.raises(ConflictError):
            await apply_stock_delta(test_db, item, -1, reason="too much", reference_type="deployment")
        assert item.quantity_in_stock == 0


class TestLockItem:
    @pytest.mark.asyncio
    async def test_missing_item(self, test_db):
        with pytest.raises(NotFoundError):
            await lock_item(test_db, 12345)

    @pytest.mark.asyncio
    async def test_deleted_item_needs_include_deleted(self, test_db, rice_item):
        rice_item.deleted_at = rice_item.created_at
        await test_db.commit()

        with pytest.raises(NotFoundError):
            await lock_item(test_db, rice_item.id)
        assert (await lock_item(test_db, rice_item.id, include_deleted=True)).name == "Rice Sack"


class TestComputeExpectedStock:
    @pytest.mark.asyncio
    async def test_consistent_after_receipts(self, test_db, rice_item, radio_item):
        await receive_batch(test_db, rice_item.id, 12)
        await receive_batch(test_db, radio_item.id, 3)

        report = await compute_expected_stock(test_db, rice_item.id)
        assert report == {
            "item_id": rice_item.id,
            "quantity_in_stock": 12,
            "received": 12,
            "outstanding_bulk": 0,
            "units_out_of_stock": 0,
            "expected": 12,
            "consistent": True,
        }

    @pytest.mark.asyncio
    async def test_detects_tampering(self, test_db, rice_item):
        await receive_batch(test_db, rice_item.id, 12)
        rice_item.quantity_in_stock = 20
        await test_db.commit()

        report = await compute_expected_stock(test_db, rice_item.id)
        assert report["consistent"] is False
        assert report["expected"] == 12

    @pytest.mark.asyncio
    async def test_missing_item(self, test_db):
        with pytest.raises(NotFoundError):
            await compute_expected_stock(test_db, 999)


class TestListTransactions:
    @pytest.mark.asyncio
    async def test_newest_first(self, test_db, rice_item):
        await receive_batch(test_db, rice_item.id, 1)
        await receive_batch(test_db, rice_item.id, 2)

        transactions, total = await list_transactions(test_db, rice_item.id)

        assert total == 2
        assert [t.adjustment for t in transactions] == [2, 1]
