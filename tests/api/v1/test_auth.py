"""
Tests for authentication endpoints.
"""

import pytest
from httpx import AsyncClient

from mdrrmo_api.models.user import User

ADMIN_PASSWORD = "adminpassword123"


class TestLogin:
    """Tests for POST /api/v1/auth/login"""

    @pytest.mark.asyncio
    async def test_login_success(self, client: AsyncClient, admin_user: User):
        response = await client.post(
            "/api/v1/auth/login",
            json={"email": admin_user.email, "password": ADMIN_PASSWORD},
        )
        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["data"]["token_type"] == "bearer"
        assert body["data"]["access_token"]
        assert "session" in response.cookies

    @pytest.mark.asyncio
    async def test_login_is_case_insensitive_on_email(self, client: AsyncClient, admin_user: User):
        response = await client.post(
            "/api/v1/auth/login",
            json={"email": admin_user.email.upper(), "password": ADMIN_PASSWORD},
        )
        assert response.status_code == 200

    @pytest.mark.asyncio
    async def test_login_wrong_password(self, client: AsyncClient, admin_user: User):
        response = await client.post(
            "/api/v1/auth/login",
            json={"email": admin_user.email, "password": "wrongpassword"},
        )
        assert response.status_code == 401
        body = response.json()
        assert body["success"] is False
        assert body["code"] == "AUTH_001"
        assert body["instance"] == "/api/v1/auth/login"

    @pytest.mark.asyncio
    async def test_login_unknown_user(self, client: AsyncClient):
        response = await client.post(
            "/api/v1/auth/login",
            json={"email": "nobody@mdrrmo.example.com", "password": "whatever"},
        )
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_disabled_account(self, client: AsyncClient, test_db, admin_user: User):
        admin_user.is_active = False
        await test_db.commit()

        response = await client.post(
            "/api/v1/auth/login",
            json={"email": admin_user.email, "password": ADMIN_PASSWORD},
        )
        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_repeated_failures_are_throttled(self, client: AsyncClient, admin_user: User):
        for _ in range(5):
            response = await client.post(
                "/api/v1/auth/login",
                json={"email": admin_user.email, "password": "wrongpassword"},
            )
            assert response.status_code == 401

        response = await client.post(
            "/api/v1/auth/login",
            json={"email": admin_user.email, "password": ADMIN_PASSWORD},
        )
        assert response.status_code == 429
        assert "Retry-After" in response.headers
        assert response.json()["code"] == "BIZ_002"


class TestCurrentUser:
    """Tests for GET /api/v1/auth/me"""

    @pytest.mark.asyncio
    async def test_me(self, authenticated_client: AsyncClient, admin_user: User):
        response = await authenticated_client.get("/api/v1/auth/me")
        assert response.status_code == 200
        data = response.json()["data"]
        assert data["email"] == admin_user.email
        assert data["is_admin"] is True
        assert "hashed_password" not in data

    @pytest.mark.asyncio
    async def test_me_unauthenticated(self, client: AsyncClient):
        response = await client.get("/api/v1/auth/me")
        assert response.status_code == 401
        assert response.headers["WWW-Authenticate"] == "Bearer"

    @pytest.mark.asyncio
    async def test_me_with_garbage_token(self, client: AsyncClient):
        response = await client.get("/api/v1/auth/me", headers={"Authorization": "Bearer not-a-jwt"})
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_session_cookie_is_accepted(self, client: AsyncClient, admin_user: User):
        await client.post(
            "/api/v1/auth/login",
            json={"email": admin_user.email, "password": ADMIN_PASSWORD},
        )
        response = await client.get("/api/v1/auth/me")
        assert response.status_code == 200


class TestLogout:
    @pytest.mark.asyncio
    async def test_logout(self, client: AsyncClient):
        response = await client.post("/api/v1/auth/logout")
        assert response.status_code == 200
        assert response.json()["message"] == "Successfully logged out"
