"""
Tests for serialized unit endpoints.
"""

import pytest
import pytest_asyncio
from httpx import AsyncClient

from tests.factories import BatchFactory


@pytest_asyncio.fixture
async def received(authenticated_client: AsyncClient, radio_item):
    response = await authenticated_client.post(
        "/api/v1/batches", json=BatchFactory(inventory_item_id=radio_item.id, quantity=2)
    )
    return response.json()["data"]


class TestUnitLookups:
    @pytest.mark.asyncio
    async def test_list_by_item(self, authenticated_client: AsyncClient, radio_item, received):
        body = (await authenticated_client.get(
            "/api/v1/serialized-items", params={"item_id": radio_item.id}
        )).json()
        assert body["meta"]["total"] == 2
        assert [u["serial_number"] for u in body["data"]] == received["serial_numbers"]
        assert all(u["status"] == "AVAILABLE" for u in body["data"])

    @pytest.mark.asyncio
    async def test_by_serial(self, authenticated_client: AsyncClient, received):
        serial = received["serial_numbers"][1]
        response = await authenticated_client.get(f"/api/v1/serialized-items/by-serial/{serial}")
        assert response.status_code == 200
        assert response.json()["data"]["serial_number"] == serial

    @pytest.mark.asyncio
    async def test_unknown_serial(self, authenticated_client: AsyncClient):
        response = await authenticated_client.get("/api/v1/serialized-items/by-serial/RES-NOPE-000000-001")
        assert response.status_code == 404


class TestUnitStatus:
    @pytest.mark.asyncio
    async def test_maintenance_cycle(self, authenticated_client: AsyncClient, radio_item, received):
        unit_id = (await authenticated_client.get(
            f"/api/v1/serialized-items/by-serial/{received['serial_numbers'][0]}"
        )).json()["data"]["id"]

        response = await authenticated_client.patch(
            f"/api/v1/serialized-items/{unit_id}/status",
            json={"status": "MAINTENANCE", "notes": "Antenna replacement"},
        )
        assert response.status_code == 200
        assert response.json()["data"]["status"] == "MAINTENANCE"
        item = (await authenticated_client.get(f"/api/v1/inventory/{radio_item.id}")).json()["data"]
        assert item["quantity_in_stock"] == 1

        await authenticated_client.patch(f"/api/v1/serialized-items/{unit_id}/status", json={"status": "AVAILABLE"})
        history = (await authenticated_client.get(f"/api/v1/serialized-items/{unit_id}/history")).json()["data"]
        assert [(h["old_status"], h["new_status"]) for h in history] == [
            ("AVAILABLE", "MAINTENANCE"),
            ("MAINTENANCE", "AVAILABLE"),
        ]

    @pytest.mark.asyncio
    async def test_deployed_cannot_be_set_by_hand(self, authenticated_client: AsyncClient, received):
        unit_id = (await authenticated_client.get(
            f"/api/v1/serialized-items/by-serial/{received['serial_numbers'][0]}"
        )).json()["data"]["id"]

        response = await authenticated_client.patch(
            f"/api/v1/serialized-items/{unit_id}/status", json={"status": "DEPLOYED"}
        )
        assert response.status_code == 409

    @pytest.mark.asyncio
    async def test_staff_cannot_change_status(self, staff_client: AsyncClient):
        response = await staff_client.patch("/api/v1/serialized-items/1/status", json={"status": "RETIRED"})
        assert response.status_code == 403
