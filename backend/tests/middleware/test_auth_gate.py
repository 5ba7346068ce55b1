"""Tests for the authentication gate middleware."""

from typing import AsyncGenerator

import pytest
from fastapi import FastAPI, Request
from httpx import ASGITransport, AsyncClient

from app.middleware import AuthGateMiddleware
from app.services.token_service import TokenService

ALLOWED_ORIGIN = "https://app.example.com"


def _gate_app(token_service: TokenService) -> FastAPI:
    app = FastAPI()
    app.add_middleware(
        AuthGateMiddleware,
        token_service=token_service,
        public_paths=["/public"],
        token_exempt_paths=["/exempt"],
        allow_origin=ALLOWED_ORIGIN,
    )

    def _identity(request: Request) -> dict:
        return {"user_id": getattr(request.state, "user_id", None)}

    @app.get("/public")
    async def public(request: Request) -> dict:
        return _identity(request)

    @app.get("/protected")
    async def protected(request: Request) -> dict:
        return _identity(request)

    @app.options("/protected")
    async def protected_options() -> dict:
        return {"preflight": True}

    @app.get("/exempt")
    async def exempt(request: Request) -> dict:
        return _identity(request)

    @app.get("/boom")
    async def boom() -> dict:
        raise RuntimeError("handler failed")

    return app


@pytest.fixture
async def gate_client(token_service: TokenService) -> AsyncGenerator[AsyncClient, None]:
    transport = ASGITransport(app=_gate_app(token_service))
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


def _bearer(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


class TestAuthGate:
    """Test the allow/deny/pass-through decisions."""

    @pytest.mark.asyncio
    async def test_preflight_skips_credentials(self, gate_client: AsyncClient):
        response = await gate_client.options("/protected")

        assert response.status_code == 200
        assert response.json() == {"preflight": True}
        assert response.headers["Access-Control-Allow-Origin"] == ALLOWED_ORIGIN

    @pytest.mark.asyncio
    async def test_public_path_without_token(self, gate_client: AsyncClient):
        response = await gate_client.get("/public")

        assert response.status_code == 200
        assert response.json() == {"user_id": None}
        assert response.headers["Access-Control-Allow-Origin"] == ALLOWED_ORIGIN

    @pytest.mark.asyncio
    async def test_public_path_with_garbage_token(self, gate_client: AsyncClient):
        """Public paths never inspect credentials."""
        response = await gate_client.get("/public", headers=_bearer("garbage"))

        assert response.status_code == 200

    @pytest.mark.asyncio
    async def test_missing_token(self, gate_client: AsyncClient):
        response = await gate_client.get("/protected")

        assert response.status_code == 401
        assert response.json() == {"status": "fail", "message": "No token found"}
        assert response.headers["Access-Control-Allow-Origin"] == ALLOWED_ORIGIN
        assert response.headers["WWW-Authenticate"] == "Bearer"

    @pytest.mark.asyncio
    async def test_unknown_path_without_token(self, gate_client: AsyncClient):
        """Routing happens after the gate, so unknown paths are also protected."""
        response = await gate_client.get("/does-not-exist")

        assert response.status_code == 401
        assert response.json()["message"] == "No token found"

    @pytest.mark.asyncio
    async def test_garbage_token(self, gate_client: AsyncClient):
        response = await gate_client.get("/protected", headers=_bearer("garbage"))

        assert response.status_code == 401
        assert response.json() == {"status": "fail", "message": "Invalid token"}
        assert response.headers["Access-Control-Allow-Origin"] == ALLOWED_ORIGIN

    @pytest.mark.asyncio
    @pytest.mark.parametrize("header", ["Basic dXNlcjpwYXNz", "Bearer", "Token abc.def.ghi"])
    async def test_malformed_authorization_header(self, gate_client: AsyncClient, header):
        response = await gate_client.get("/protected", headers={"Authorization": header})

        assert response.status_code == 401
        assert response.json()["message"] == "Invalid token"

    @pytest.mark.asyncio
    async def test_valid_token(self, gate_client: AsyncClient, test_user, auth_headers):
        """A verified request reaches the handler with the user id attached."""
        response = await gate_client.get("/protected", headers=auth_headers)

        assert response.status_code == 200
        assert response.json() == {"user_id": str(test_user.id)}
        assert response.headers["Access-Control-Allow-Origin"] == ALLOWED_ORIGIN

    @pytest.mark.asyncio
    async def test_refresh_token_rejected_as_access(self, gate_client: AsyncClient, user_tokens):
        response = await gate_client.get("/protected", headers=_bearer(user_tokens.refresh_token))

        assert response.status_code == 401
        assert response.json()["message"] == "Invalid token"

    @pytest.mark.asyncio
    async def test_revoked_token(self, gate_client: AsyncClient, token_service: TokenService, user_tokens, auth_headers):
        await token_service.logout(user_tokens.access_token)

        response = await gate_client.get("/protected", headers=auth_headers)

        assert response.status_code == 401
        assert response.json()["message"] == "Invalid token"

    @pytest.mark.asyncio
    async def test_store_unavailable_fails_closed(self, gate_client: AsyncClient, auth_headers, fake_redis):
        fake_redis.fail = True

        response = await gate_client.get("/protected", headers=auth_headers)

        assert response.status_code == 401
        assert response.json() == {"status": "fail", "message": "Invalid token"}

    @pytest.mark.asyncio
    async def test_exempt_path_with_invalid_token(self, gate_client: AsyncClient):
        """Token-exempt paths are forwarded without an identity."""
        response = await gate_client.get("/exempt", headers=_bearer("garbage"))

        assert response.status_code == 200
        assert response.json() == {"user_id": None}
        assert response.headers["Access-Control-Allow-Origin"] == ALLOWED_ORIGIN

    @pytest.mark.asyncio
    async def test_exempt_path_with_valid_token(self, gate_client: AsyncClient, test_user, auth_headers):
        response = await gate_client.get("/exempt", headers=auth_headers)

        assert response.json() == {"user_id": str(test_user.id)}

    @pytest.mark.asyncio
    async def test_exempt_path_still_requires_a_header(self, gate_client: AsyncClient):
        response = await gate_client.get("/exempt")

        assert response.status_code == 401
        assert response.json()["message"] == "No token found"

    @pytest.mark.asyncio
    async def test_downstream_error_keeps_cors_header(self, gate_client: AsyncClient, auth_headers):
        response = await gate_client.get("/boom", headers=auth_headers)

        assert response.status_code == 500
        assert response.json() == {"status": "error", "message": "Internal Server Error"}
        assert response.headers["Access-Control-Allow-Origin"] == ALLOWED_ORIGIN


class TestAuthGateInApplication:
    """The gate as wired by create_app."""

    @pytest.mark.asyncio
    async def test_cors_preflight(self, async_client: AsyncClient):
        response = await async_client.options(
            "/api/v1/users/me",
            headers={
                "Origin": "https://app.example.com",
                "Access-Control-Request-Method": "GET",
                "Access-Control-Request-Headers": "Authorization",
            },
        )

        assert response.status_code == 200
        assert response.headers["Access-Control-Allow-Origin"] == "*"

    @pytest.mark.asyncio
    async def test_health_is_public(self, async_client: AsyncClient):
        response = await async_client.get("/api/v1/health")

        assert response.status_code == 200
        assert response.json() == {"status": "success", "message": "Server is running..."}
        assert response.headers["Access-Control-Allow-Origin"] == "*"

    @pytest.mark.asyncio
    async def test_protected_route_without_token(self, async_client: AsyncClient):
        response = await async_client.get("/api/v1/users/me")

        assert response.status_code == 401
        assert response.json() == {"status": "fail", "message": "No token found"}
        assert response.headers["Access-Control-Allow-Origin"] == "*"

    @pytest.mark.asyncio
    async def test_login_without_authorization_header(self, async_client: AsyncClient, test_user):
        response = await async_client.post(
            "/api/v1/users/login",
            json={"email": test_user.email, "password": "Test123!@#"},
        )

        assert response.status_code == 200
        assert response.headers["Access-Control-Allow-Origin"] == "*"

    @pytest.mark.asyncio
    async def test_options_on_any_path(self, async_client: AsyncClient):
        """OPTIONS never reaches the credential check."""
        response = await async_client.options("/api/v1/users/search")

        assert response.status_code != 401
        assert response.headers["Access-Control-Allow-Origin"] == "*"
