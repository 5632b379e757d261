"""
Tests for the bearer-token dependency.
"""

from datetime import datetime, timedelta, timezone
from typing import Annotated, Any

import httpx
import jwt
import pytest
from fastapi import Depends, FastAPI, status
from httpx import ASGITransport

from machinealert.auth.middleware import CurrentUser, get_current_user
from machinealert.config import get_settings


def _token(secret: str, **claims: Any) -> str:
    payload = {"exp": datetime.now(timezone.utc) + timedelta(minutes=10), **claims}
    return jwt.encode(payload, secret, algorithm="HS256")


@pytest.fixture
def whoami_app(test_settings) -> FastAPI:
    application = FastAPI()

    @application.get("/whoami")
    async def whoami(user: Annotated[CurrentUser, Depends(get_current_user)]) -> dict[str, Any]:
        return {"id": user.id, "roles": user.roles}

    application.dependency_overrides[get_settings] = lambda: test_settings
    return application


async def _get(app: FastAPI, token: str | None = None) -> httpx.Response:
    headers = {"Authorization": f"Bearer {token}"} if token else {}
    async with httpx.AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://localhost:8080",
    ) as client:
        return await client.get("/whoami", headers=headers)


class TestAuthMiddleware:
    """Tests for token decoding and claim extraction."""

    @pytest.mark.asyncio
    async def test_roles_list_claim(self, whoami_app, test_settings) -> None:
        token = _token(test_settings.jwt_secret_key, sub="u-7", roles=["LOGISTICA", "ADMIN"])

        response = await _get(whoami_app, token)

        assert response.status_code == status.HTTP_200_OK
        assert response.json() == {"id": "u-7", "roles": ["LOGISTICA", "ADMIN"]}

    @pytest.mark.asyncio
    async def test_single_role_claim(self, whoami_app, test_settings) -> None:
        token = _token(test_settings.jwt_secret_key, sub="u-8", role="Producción")

        response = await _get(whoami_app, token)

        assert response.json()["roles"] == ["Producción"]

    @pytest.mark.asyncio
    async def test_user_id_claim_as_subject(self, whoami_app, test_settings) -> None:
        token = _token(test_settings.jwt_secret_key, user_id="legacy-1", roles="LOGISTICA")

        response = await _get(whoami_app, token)

        assert response.json() == {"id": "legacy-1", "roles": ["LOGISTICA"]}

    @pytest.mark.asyncio
    async def test_token_without_subject(self, whoami_app, test_settings) -> None:
        token = _token(test_settings.jwt_secret_key, roles=["LOGISTICA"])

        response = await _get(whoami_app, token)

        assert response.status_code == status.HTTP_401_UNAUTHORIZED
        assert response.json()["detail"]["code"] == "INVALID_TOKEN"

    @pytest.mark.asyncio
    async def test_wrong_signature(self, whoami_app) -> None:
        token = _token("another-secret-key-that-is-long-enough-000", sub="u-1")

        response = await _get(whoami_app, token)

        assert response.status_code == status.HTTP_401_UNAUTHORIZED
        assert response.json()["detail"]["code"] == "INVALID_TOKEN"
        assert response.headers["www-authenticate"] == "Bearer"

    @pytest.mark.asyncio
    async def test_missing_token(self, whoami_app) -> None:
        response = await _get(whoami_app)

        assert response.status_code == status.HTTP_401_UNAUTHORIZED
        assert response.json()["detail"]["code"] == "MISSING_TOKEN"
