"""Tests for request id propagation."""
import pytest
from httpx import AsyncClient

from mdrrmo_api.middleware.correlation import resolve_request_id


class TestResolveRequestId:
    def test_plain_client_id_is_kept(self):
        assert resolve_request_id("req-42.a_b") == "req-42.a_b"

    @pytest.mark.parametrize("header", [None, "", "x" * 65, "bad id\nFORGED LOG LINE"])
    def test_unusable_ids_are_replaced(self, header):
        generated = resolve_request_id(header)
        assert generated != header
        assert len(generated) == 12


class TestRequestIdHeader:
    @pytest.mark.asyncio
    async def test_echoed_and_used_as_trace_id(self, client: AsyncClient):
        response = await client.get("/api/v1/auth/me", headers={"X-Request-ID": "trace-me-123"})

        assert response.status_code == 401
        assert response.headers["X-Request-ID"] == "trace-me-123"
        assert response.json()["trace_id"] == "trace-me-123"

    @pytest.mark.asyncio
    async def test_generated_when_missing(self, client: AsyncClient):
        response = await client.get("/health")
        assert len(response.headers["X-Request-ID"]) == 12
