from pathlib import Path

from fastapi import status
from httpx import ASGITransport, AsyncClient

from src.backend.main import app
from src.backend.services.cases.service import case_service


def _client() -> AsyncClient:
    return AsyncClient(transport=ASGITransport(app=app), base_url="http://test")


async def test_intake_creates_case_and_portal_shows_progress():
    async with _client() as ac:
        created = await ac.post(
            "/api/v1/intake",
            json={"name": "Portal Patient", "phone": "+90 555", "company_website": "", "utm_source": "google"},
        )
        assert created.status_code == status.HTTP_200_OK
        data = created.json()
        assert data["ok"] is True and data["case_id"] and data["portal_token"]
        assert case_service.get_case(data["case_id"]).utm_source == "google"

        portal = await ac.post(
            "/api/v1/portal/case",
            json={"case_id": data["case_id"], "portal_token": data["portal_token"]},
        )
        assert portal.status_code == status.HTTP_200_OK
        view = portal.json()
        assert view["current_step"] == "New"
        assert view["progress_percent"] == 0
        assert view["steps"][0]["current"] is True
        assert "name" not in view and "phone" not in view

        wrong = await ac.post("/api/v1/portal/case", json={"case_id": data["case_id"], "portal_token": "guess"})
        assert wrong.status_code == status.HTTP_404_NOT_FOUND


async def test_honeypot_gets_ok_without_a_case():
    async with _client() as ac:
        response = await ac.post(
            "/api/v1/intake",
            json={"name": "Bot", "email": "bot@example.com", "company_website": "http://spam.example"},
        )
    assert response.status_code == status.HTTP_200_OK
    assert response.json() == {"ok": True, "case_id": None, "portal_token": None, "error": None}


async def test_honeypot_answers_ok_before_field_validation():
    async with _client() as ac:
        no_contact = await ac.post("/api/v1/intake", json={"company_website": "x"})
        bad_email = await ac.post("/api/v1/intake", json={"email": "bad", "company_website": "x"})

    for response in (no_contact, bad_email):
        assert response.status_code == status.HTTP_200_OK
        assert response.json()["ok"] is True
        assert response.json()["case_id"] is None


async def test_intake_requires_a_contact_route():
    async with _client() as ac:
        missing = await ac.post("/api/v1/intake", json={"treatment": "veneers", "name": "   "})
        bad_email = await ac.post("/api/v1/intake", json={"email": "not-an-email"})
    assert missing.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY
    assert "request_id" in missing.json()
    assert bad_email.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY


async def test_file_upload_checks_portal_token(tmp_path, monkeypatch):
    from src.backend.infra.storage.files import LocalCaseFileStorageBackend
    import src.backend.api.v1.routes_intake as routes_intake

    monkeypatch.setattr(routes_intake, "case_file_storage", LocalCaseFileStorageBackend(tmp_path))

    async with _client() as ac:
        data = (await ac.post("/api/v1/intake", json={"name": "Upload Patient"})).json()
        url = f"/api/v1/intake/{data['case_id']}/files"

        rejected = await ac.post(
            url,
            data={"portal_token": "wrong"},
            files={"file": ("xray.png", b"\x89PNG", "image/png")},
        )
        assert rejected.status_code == status.HTTP_404_NOT_FOUND

        empty = await ac.post(
            url,
            data={"portal_token": data["portal_token"]},
            files={"file": ("empty.png", b"", "image/png")},
        )
        assert empty.status_code == status.HTTP_400_BAD_REQUEST

        accepted = await ac.post(
            url,
            data={"portal_token": data["portal_token"]},
            files={"file": ("../../xray.png", b"\x89PNG", "image/png")},
        )
        assert accepted.status_code == status.HTTP_201_CREATED
        assert accepted.json()["name"] == "xray.png"
        assert "ref" not in accepted.json()

    [stored] = case_service.get_case(data["case_id"]).files
    assert stored.size == 4
    assert Path(stored.ref).exists()
    assert Path(stored.ref).parent.parent == tmp_path
