from uuid import uuid4

from fastapi import status
from httpx import ASGITransport, AsyncClient

from src.backend.main import app

ADMIN = {"X-User-Role": "admin", "X-User-Id": "admin-api"}


def _doctor(doctor_id: str) -> dict:
    return {"X-User-Role": "doctor", "X-User-Id": doctor_id}


async def _assigned_case(ac: AsyncClient, doctor_id: str) -> dict:
    created = await ac.post(
        "/api/v1/intake",
        json={
            "name": "Doctor View Patient",
            "email": "patient@example.com",
            "phone": "+90 555 987 6543",
            "treatment": "implants",
            "message": "Reach me at patient@example.com",
        },
    )
    case_id = created.json()["case_id"]
    assigned = await ac.patch(f"/api/v1/case/{case_id}", json={"doctor_id": doctor_id}, headers=ADMIN)
    assert assigned.status_code == status.HTTP_200_OK
    return assigned.json()["case"]


async def test_doctor_sees_only_their_redacted_cases():
    doctor_id = f"doc-{uuid4().hex[:6]}"
    async with _client() as ac:
        case = await _assigned_case(ac, doctor_id)
        await ac.post(f"/api/v1/case/{case['id']}/notes", json={"note": "internal only"}, headers=ADMIN)

        response = await ac.get("/api/v1/doctor/case", params={"ref": case["uuid"]}, headers=_doctor(doctor_id))
        assert response.status_code == status.HTTP_200_OK
        view = response.json()
        assert view["ref"] == case["uuid"]
        assert view["doctor_review_status"] == "pending"
        for hidden in ("notes", "contacts", "email", "phone", "portal_token"):
            assert hidden not in view
        assert "patient@example.com" not in view["message"]

        by_code = await ac.get("/api/v1/doctor/case", params={"ref": view["case_code"]}, headers=_doctor(doctor_id))
        assert by_code.status_code == status.HTTP_200_OK

        listing = await ac.get("/api/v1/doctor/cases", headers=_doctor(doctor_id))
        assert [c["ref"] for c in listing.json()] == [case["uuid"]]


async def test_other_doctor_gets_not_found():
    owner = f"doc-{uuid4().hex[:6]}"
    async with _client() as ac:
        case = await _assigned_case(ac, owner)

        response = await ac.get("/api/v1/doctor/case", params={"ref": case["uuid"]}, headers=_doctor("doc-intruder"))
        assert response.status_code == status.HTTP_404_NOT_FOUND
        assert response.json()["detail"] == "Case not found"

        review = await ac.post(
            f"/api/v1/case/{case['uuid']}/review",
            json={"doctor_review_status": "rejected", "doctor_review_notes": "not mine"},
            headers=_doctor("doc-intruder"),
        )
        assert review.status_code == status.HTTP_404_NOT_FOUND

        staff = await ac.get("/api/v1/doctor/cases", headers=ADMIN)
        assert staff.status_code == status.HTTP_403_FORBIDDEN


async def test_review_requires_both_fields_and_keeps_status():
    doctor_id = f"doc-{uuid4().hex[:6]}"
    async with _client() as ac:
        case = await _assigned_case(ac, doctor_id)
        url = f"/api/v1/case/{case['uuid']}/review"

        only_status = await ac.post(url, json={"doctor_review_status": "needs_info"}, headers=_doctor(doctor_id))
        assert only_status.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY
        only_notes = await ac.post(url, json={"doctor_review_notes": "x-ray please"}, headers=_doctor(doctor_id))
        assert only_notes.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY

        review = await ac.post(
            url,
            json={"doctor_review_status": "approved_for_booking", "doctor_review_notes": "Good bone density"},
            headers=_doctor(doctor_id),
        )
        assert review.status_code == status.HTTP_200_OK
        assert review.json()["case"]["doctor_review_status"] == "approved_for_booking"
        assert review.json()["case"]["doctor_review_notes"] == "Good bone density"

        staff_view = await ac.get(f"/api/v1/case/{case['id']}", headers=ADMIN)
        stored = staff_view.json()["case"]
        assert stored["status"] == "new"
        assert stored["next_action"] is None
        assert staff_view.json()["signals"]["suggested_next_action"]["action"] == "ready_for_booking"

        reviewed = await ac.get("/api/v1/doctor/cases", params={"bucket": "reviewed"}, headers=_doctor(doctor_id))
        assert [c["ref"] for c in reviewed.json()] == [case["uuid"]]


def _client() -> AsyncClient:
    return AsyncClient(transport=ASGITransport(app=app), base_url="http://test")
