from fastapi import status
from httpx import ASGITransport, AsyncClient

from src.backend.config import settings
from src.backend.domain.models.user import UserRole
from src.backend.main import app
from src.backend.security import _parse_api_keys
from src.backend.services.users.service import user_service


def _client() -> AsyncClient:
    return AsyncClient(transport=ASGITransport(app=app), base_url="http://test")


def test_parse_api_keys(monkeypatch):
    monkeypatch.setattr(settings, "api_keys", " plain , doc-key:doctor:doc-7, ,adm:ADMIN:, odd:wizard:x")

    keys = _parse_api_keys()

    assert keys["plain"] == (UserRole.EMPLOYEE, None)
    assert keys["doc-key"] == (UserRole.DOCTOR, "doc-7")
    assert keys["adm"] == (UserRole.ADMIN, None)
    assert keys["odd"] == (UserRole.EMPLOYEE, "x")
    assert "" not in keys


async def test_api_keys_required_when_enabled(monkeypatch):
    monkeypatch.setattr(settings, "enable_api_auth", True)
    monkeypatch.setattr(settings, "api_keys", "staff-key:employee:emp-k,doc-key:doctor:doc-k")

    async with _client() as ac:
        missing = await ac.get("/api/v1/cases")
        wrong = await ac.get("/api/v1/cases", headers={"X-API-Key": "nope"})
        staff = await ac.get("/api/v1/cases", headers={"X-API-Key": "staff-key"})
        # Identity headers cannot escalate a doctor key to staff.
        doctor = await ac.get(
            "/api/v1/cases",
            headers={"X-API-Key": "doc-key", "X-User-Role": "admin"},
        )
        # Public endpoints stay open.
        health = await ac.get("/api/v1/health")

    assert missing.status_code == status.HTTP_401_UNAUTHORIZED
    assert wrong.status_code == status.HTTP_401_UNAUTHORIZED
    assert staff.status_code == status.HTTP_200_OK
    assert doctor.status_code == status.HTTP_403_FORBIDDEN
    assert health.status_code == status.HTTP_200_OK


async def test_auth_enabled_without_keys_is_rejected(monkeypatch):
    monkeypatch.setattr(settings, "enable_api_auth", True)
    monkeypatch.setattr(settings, "api_keys", None)

    async with _client() as ac:
        response = await ac.get("/api/v1/cases", headers={"X-API-Key": "anything"})

    assert response.status_code == status.HTTP_401_UNAUTHORIZED


async def test_dev_identity_headers_resolve_user():
    async with _client() as ac:
        response = await ac.get("/api/v1/cases", headers={"X-User-Role": "Employee", "X-User-Id": "emp-dev"})

    assert response.status_code == status.HTTP_200_OK
    user = user_service.get_user_by_subject("dev:employee:emp-dev")
    assert user is not None
    assert user.role == UserRole.EMPLOYEE
