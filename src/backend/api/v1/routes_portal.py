from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field

from src.backend.domain.models.user import User, UserRole
from src.backend.request_context import request_id_dependency
from src.backend.services.audit.service import audit_service
from src.backend.services.cases.service import case_service
from src.backend.services.projection.service import PatientCaseView, projection_service

router = APIRouter(prefix="/portal", tags=["portal"], dependencies=[Depends(request_id_dependency)])


class PortalLookupRequest(BaseModel):
    case_id: str = Field(..., min_length=1)
    portal_token: str = Field(..., min_length=1)


@router.post("/case", response_model=PatientCaseView)
async def get_portal_case(payload: PortalLookupRequest) -> PatientCaseView:
    """Progress summary for the patient holding the case's portal token."""

    case = case_service.verify_portal_token(payload.case_id, payload.portal_token)
    if case is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Case not found")

    patient = User(id=f"patient:{case.id}", role=UserRole.PATIENT)
    audit_service.log_event(action="portal_view", resource_type="case", resource_id=case.id)
    return projection_service.view_for(case, patient)  # type: ignore[return-value]
