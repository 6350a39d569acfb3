from __future__ import annotations

from enum import Enum
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from src.backend.domain.models.case import Case, DoctorReviewStatus
from src.backend.domain.models.timeline_event import TimelineEventKind
from src.backend.domain.models.user import User, UserRole
from src.backend.errors import CaseAccessDenied, CaseNotFound, PartialWriteWarning
from src.backend.services.cases.service import CaseService, CaseWriteResult, case_service


class ReviewBucket(str, Enum):
    UNREAD = "unread"
    REVIEWED = "reviewed"
    ALL = "all"


_UNREAD = {None, DoctorReviewStatus.PENDING, DoctorReviewStatus.NEEDS_INFO}
_REVIEWED = {DoctorReviewStatus.APPROVED_FOR_BOOKING, DoctorReviewStatus.REJECTED}

_REVIEW_NOTES = {
    DoctorReviewStatus.PENDING: "Doctor review reset to pending",
    DoctorReviewStatus.NEEDS_INFO: "Doctor requested more info",
    DoctorReviewStatus.APPROVED_FOR_BOOKING: "Doctor approved for booking",
    DoctorReviewStatus.REJECTED: "Doctor rejected the case",
}


class ReviewResult(BaseModel):
    case: Case
    warnings: List[PartialWriteWarning] = Field(default_factory=list)


class ReviewService:
    """Doctor-scoped review sub-state machine.

    ``doctor_review_status`` is independent of the case status: no value
    transitions automatically, and a review never touches ``status`` or
    ``next_action``. Staff may set ``next_action=ready_for_booking`` after an
    approval, but that stays their call.
    """

    def __init__(self, cases: Optional[CaseService] = None) -> None:
        self.cases: CaseService = cases or case_service

    def get_for_doctor(self, ref: str, *, doctor: User) -> Case:
        """Return the case behind ``ref`` if ``doctor`` is its assigned doctor.

        Raises CaseNotFound when nothing matches and CaseAccessDenied when the
        case exists but belongs to someone else. The HTTP layer reports both
        as not found.
        """

        if doctor.role != UserRole.DOCTOR:
            raise CaseAccessDenied(f"role {doctor.role.value} cannot act as a doctor")

        try:
            UUID((ref or "").strip())
        except ValueError:
            # Display codes are only unique per doctor, so they resolve within scope.
            case = self.cases.resolve_ref(ref, doctor_id=doctor.id)
        else:
            case = self.cases.resolve_ref(ref)
        if case is None:
            raise CaseNotFound(ref)
        if case.doctor_id is None or case.doctor_id != doctor.id:
            raise CaseAccessDenied(ref)
        return case

    def list_for_doctor(self, *, doctor: User, bucket: ReviewBucket = ReviewBucket.UNREAD) -> List[Case]:
        if doctor.role != UserRole.DOCTOR:
            raise CaseAccessDenied(f"role {doctor.role.value} cannot act as a doctor")

        cases = self.cases.list_cases(doctor_id=doctor.id)
        if bucket == ReviewBucket.UNREAD:
            return [c for c in cases if c.doctor_review_status in _UNREAD]
        if bucket == ReviewBucket.REVIEWED:
            return [c for c in cases if c.doctor_review_status in _REVIEWED]
        return cases

    def submit(
        self,
        ref: str,
        *,
        review_status: DoctorReviewStatus,
        review_notes: str,
        doctor: User,
    ) -> ReviewResult:
        """Atomically set review status and notes on the doctor's own case."""

        case = self.get_for_doctor(ref, doctor=doctor)
        updated = self.cases.apply_review(
            case.id,
            review_status=review_status,
            review_notes=review_notes,
        )

        result = CaseWriteResult(case=updated)
        self.cases.record_event(
            result,
            kind=TimelineEventKind.DOCTOR_REVIEW,
            note=_REVIEW_NOTES[review_status],
            actor=doctor,
            payload={"doctor_review_status": review_status.value},
        )
        return ReviewResult(case=updated, warnings=result.warnings)


review_service = ReviewService()
