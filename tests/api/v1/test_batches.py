"""
Tests for batch receipt endpoints.
"""

import pytest
from httpx import AsyncClient

from tests.factories import BatchFactory, ExpiringBatchFactory


class TestReceiveBatch:
    @pytest.mark.asyncio
    async def test_serialized_receipt(self, authenticated_client: AsyncClient, radio_item):
        response = await authenticated_client.post(
            "/api/v1/batches", json=BatchFactory(inventory_item_id=radio_item.id, quantity=3)
        )
        assert response.status_code == 201
        body = response.json()
        assert body["message"] == "A batch has been created!"
        data = body["data"]
        assert data["is_serialized"] is True
        assert len(data["serial_numbers"]) == 3
        assert all(s.startswith("RES-") for s in data["serial_numbers"])

        item = (await authenticated_client.get(f"/api/v1/inventory/{radio_item.id}")).json()["data"]
        assert item["quantity_in_stock"] == 3

    @pytest.mark.asyncio
    async def test_bulk_receipt(self, authenticated_client: AsyncClient, rice_item):
        response = await authenticated_client.post(
            "/api/v1/batches", json=BatchFactory(inventory_item_id=rice_item.id, quantity=25)
        )
        data = response.json()["data"]
        assert data["is_serialized"] is False
        assert data["serial_numbers"] == []
        assert data["quantity"] == 25

    @pytest.mark.asyncio
    @pytest.mark.parametrize("quantity", [0, -3])
    async def test_non_positive_quantity(self, authenticated_client: AsyncClient, rice_item, quantity):
        response = await authenticated_client.post(
            "/api/v1/batches", json=BatchFactory(inventory_item_id=rice_item.id, quantity=quantity)
        )
        assert response.status_code == 400
        assert response.json()["errors"] == [{"field": "quantity", "ids": [quantity]}]

    @pytest.mark.asyncio
    async def test_unknown_item(self, authenticated_client: AsyncClient):
        response = await authenticated_client.post("/api/v1/batches", json=BatchFactory(inventory_item_id=777))
        assert response.status_code == 400
        assert response.json()["errors"][0]["field"] == "inventory_item_id"

    @pytest.mark.asyncio
    async def test_expiring_batch_shows_up(self, authenticated_client: AsyncClient, rice_item):
        await authenticated_client.post("/api/v1/batches", json=ExpiringBatchFactory(inventory_item_id=rice_item.id))

        response = await authenticated_client.get("/api/v1/batches/expiring")
        assert len(response.json()["data"]) == 1

        response = await authenticated_client.get("/api/v1/notifications", params={"type": "EXPIRING_SOON"})
        notification = response.json()["data"][0]
        assert notification["priority"] == "HIGH"

    @pytest.mark.asyncio
    async def test_staff_cannot_receive(self, staff_client: AsyncClient, rice_item):
        response = await staff_client.post("/api/v1/batches", json=BatchFactory(inventory_item_id=rice_item.id))
        assert response.status_code == 403


class TestBatchAdministration:
    @pytest.mark.asyncio
    async def test_list_filters_by_item(self, authenticated_client: AsyncClient, rice_item, radio_item):
        await authenticated_client.post("/api/v1/batches", json=BatchFactory(inventory_item_id=rice_item.id))
        await authenticated_client.post("/api/v1/batches", json=BatchFactory(inventory_item_id=radio_item.id, quantity=1))

        response = await authenticated_client.get("/api/v1/batches", params={"item_id": rice_item.id})
        body = response.json()
        assert body["meta"]["total"] == 1
        assert body["data"][0]["inventory_item_id"] == rice_item.id

    @pytest.mark.asyncio
    async def test_quantity_correction_on_bulk_batch(self, authenticated_client: AsyncClient, rice_item):
        batch = (await authenticated_client.post(
            "/api/v1/batches", json=BatchFactory(inventory_item_id=rice_item.id, quantity=10)
        )).json()["data"]

        response = await authenticated_client.patch(f"/api/v1/batches/{batch['id']}", json={"quantity": 12})
        assert response.status_code == 200
        item = (await authenticated_client.get(f"/api/v1/inventory/{rice_item.id}")).json()["data"]
        assert item["quantity_in_stock"] == 12

    @pytest.mark.asyncio
    async def test_quantity_locked_on_serialized_batch(self, authenticated_client: AsyncClient, radio_item):
        batch = (await authenticated_client.post(
            "/api/v1/batches", json=BatchFactory(inventory_item_id=radio_item.id, quantity=2)
        )).json()["data"]

        response = await authenticated_client.patch(f"/api/v1/batches/{batch['id']}", json={"quantity": 5})
        assert response.status_code == 409

    @pytest.mark.asyncio
    async def test_delete_and_restore(self, authenticated_client: AsyncClient, radio_item):
        batch = (await authenticated_client.post(
            "/api/v1/batches", json=BatchFactory(inventory_item_id=radio_item.id, quantity=2)
        )).json()["data"]

        response = await authenticated_client.delete(f"/api/v1/batches/{batch['id']}")
        assert response.status_code == 200
        item = (await authenticated_client.get(f"/api/v1/inventory/{radio_item.id}")).json()["data"]
        assert item["quantity_in_stock"] == 0
        assert (await authenticated_client.get(f"/api/v1/batches/{batch['id']}")).status_code == 404

        response = await authenticated_client.post(f"/api/v1/batches/{batch['id']}/restore")
        assert response.status_code == 200
        item = (await authenticated_client.get(f"/api/v1/inventory/{radio_item.id}")).json()["data"]
        assert item["quantity_in_stock"] == 2

    @pytest.mark.asyncio
    async def test_delete_refused_while_units_are_out(self, authenticated_client: AsyncClient, radio_item):
        batch = (await authenticated_client.post(
            "/api/v1/batches", json=BatchFactory(inventory_item_id=radio_item.id, quantity=2)
        )).json()["data"]
        units = (await authenticated_client.get(
            "/api/v1/serialized-items", params={"batch_id": batch["id"]}
        )).json()["data"]
        await authenticated_client.post("/api/v1/deployments", json={
            "inventory_item_id": radio_item.id,
            "serial_item_ids": [units[0]["id"]],
            "deployment_location": "Riverside",
        })

        response = await authenticated_client.delete(f"/api/v1/batches/{batch['id']}")
        assert response.status_code == 409
        assert response.json()["errors"] == [{"field": "serialized_item_ids", "ids": [units[0]["id"]]}]
