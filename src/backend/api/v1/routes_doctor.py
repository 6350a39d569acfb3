from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field

from src.backend.domain.models.case import DoctorReviewStatus
from src.backend.domain.models.user import User
from src.backend.errors import CaseAccessDenied, CaseNotFound, PartialWriteWarning
from src.backend.request_context import request_id_dependency
from src.backend.security import get_api_key, require_doctor
from src.backend.services.audit.service import audit_service
from src.backend.services.projection.service import DoctorCaseView, projection_service
from src.backend.services.review.service import ReviewBucket, review_service

router = APIRouter(
    prefix="",
    tags=["doctor"],
    dependencies=[Depends(get_api_key), Depends(request_id_dependency)],
)

# Ownership failures and missing cases share one response so existence never leaks.
_NOT_FOUND = "Case not found"


class ReviewSubmitRequest(BaseModel):
    doctor_review_status: DoctorReviewStatus
    doctor_review_notes: str = Field(..., min_length=1)


class ReviewSubmitResponse(BaseModel):
    case: DoctorCaseView
    warnings: List[PartialWriteWarning] = Field(default_factory=list)


def _audit_forbidden(ref: str, doctor: User) -> None:
    audit_service.log_event(
        action="forbidden",
        resource_type="case",
        resource_id=ref,
        extra={"user_id": doctor.id, "role": doctor.role.value},
    )


@router.get("/doctor/cases", response_model=List[DoctorCaseView])
async def list_doctor_cases(
    bucket: ReviewBucket = ReviewBucket.UNREAD,
    doctor: User = Depends(require_doctor),
) -> List[DoctorCaseView]:
    cases = review_service.list_for_doctor(doctor=doctor, bucket=bucket)
    views = [projection_service.view_for(case, doctor) for case in cases]
    audit_service.log_event(
        action="list",
        resource_type="case",
        extra={"user_id": doctor.id, "role": doctor.role.value, "bucket": bucket.value, "count": len(views)},
    )
    return views  # type: ignore[return-value]


@router.get("/doctor/case", response_model=DoctorCaseView)
async def get_doctor_case(
    ref: str = Query(..., min_length=1),
    doctor: User = Depends(require_doctor),
) -> DoctorCaseView:
    try:
        case = review_service.get_for_doctor(ref, doctor=doctor)
    except CaseAccessDenied:
        _audit_forbidden(ref, doctor)
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=_NOT_FOUND)
    except CaseNotFound:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=_NOT_FOUND)

    audit_service.log_event(
        action="view",
        resource_type="case",
        resource_id=case.id,
        extra={"user_id": doctor.id, "role": doctor.role.value},
    )
    return projection_service.view_for(case, doctor)  # type: ignore[return-value]


@router.post("/case/{ref}/review", response_model=ReviewSubmitResponse)
async def submit_review(
    ref: str,
    payload: ReviewSubmitRequest,
    doctor: User = Depends(require_doctor),
) -> ReviewSubmitResponse:
    """Set review status and notes together on the doctor's own case."""

    try:
        result = review_service.submit(
            ref,
            review_status=payload.doctor_review_status,
            review_notes=payload.doctor_review_notes,
            doctor=doctor,
        )
    except CaseAccessDenied:
        _audit_forbidden(ref, doctor)
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=_NOT_FOUND)
    except CaseNotFound:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=_NOT_FOUND)

    audit_service.log_event(
        action="review",
        resource_type="case",
        resource_id=result.case.id,
        extra={
            "user_id": doctor.id,
            "role": doctor.role.value,
            "doctor_review_status": payload.doctor_review_status.value,
            "timeline_warnings": len(result.warnings),
        },
    )
    view = projection_service.view_for(result.case, doctor)
    return ReviewSubmitResponse(case=view, warnings=result.warnings)  # type: ignore[arg-type]
