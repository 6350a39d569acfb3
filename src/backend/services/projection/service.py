from __future__ import annotations

from datetime import datetime
from typing import List, Optional, Sequence, Union, assert_never

from pydantic import BaseModel, Field

from src.backend.domain.models.case import (
    PIPELINE,
    Case,
    CaseStatus,
    DoctorReviewStatus,
    next_action_label,
)
from src.backend.domain.models.case_note import CaseNote
from src.backend.domain.models.contact_event import ContactEvent
from src.backend.domain.models.timeline_event import TimelineEvent, TimelineEventKind
from src.backend.domain.models.user import User, UserRole
from src.backend.services.cases.scoring import CaseSignals, compute_signals
from src.backend.services.cases.service import CaseService, case_service
from src.backend.services.contacts.service import ContactService, contact_service
from src.backend.services.notes.service import NoteService, note_service
from src.backend.services.projection.redaction import redact_pii
from src.backend.services.timeline.service import TimelineService, timeline_service


class StaffCaseView(BaseModel):
    """Admin/employee view: the full record plus every log and derived signal."""

    role: UserRole
    case: Case
    status_label: str
    next_action_label: str
    signals: CaseSignals
    timeline: List[TimelineEvent] = Field(default_factory=list)
    contacts: List[ContactEvent] = Field(default_factory=list)
    notes: List[CaseNote] = Field(default_factory=list)


class DoctorTimelineEntry(BaseModel):
    stage: CaseStatus
    kind: TimelineEventKind
    note: str
    created_at: datetime


class DoctorFileView(BaseModel):
    name: str
    content_type: Optional[str] = None


class DoctorCaseView(BaseModel):
    """Clinically relevant subset of a case for its assigned doctor.

    Every field is copied explicitly; nothing is inherited from ``Case``, so a
    new column never reaches a doctor until it is added here on purpose.
    """

    role: UserRole = UserRole.DOCTOR
    ref: str
    case_code: str
    name: Optional[str] = None
    treatment: Optional[str] = None
    preferred_timeline: Optional[str] = None
    lang: Optional[str] = None
    message: Optional[str] = None
    snapshot: Optional[str] = None
    files: List[DoctorFileView] = Field(default_factory=list)
    doctor_review_status: DoctorReviewStatus = DoctorReviewStatus.PENDING
    doctor_review_notes: Optional[str] = None
    doctor_assigned_at: Optional[datetime] = None
    doctor_reviewed_at: Optional[datetime] = None
    updated_at: datetime
    timeline: List[DoctorTimelineEntry] = Field(default_factory=list)


class ProgressStep(BaseModel):
    stage: CaseStatus
    label: str
    done: bool
    current: bool


class PatientCaseView(BaseModel):
    """Status-derived progress summary for the patient portal."""

    role: UserRole = UserRole.PATIENT
    case_id: str
    current_step: str
    progress_percent: int
    closed: bool
    steps: List[ProgressStep] = Field(default_factory=list)
    updated_at: datetime


CaseView = Union[StaffCaseView, DoctorCaseView, PatientCaseView]


def _staff_view(
    case: Case,
    role: UserRole,
    *,
    timeline: Sequence[TimelineEvent],
    contacts: Sequence[ContactEvent],
    notes: Sequence[CaseNote],
    now: Optional[datetime],
) -> StaffCaseView:
    return StaffCaseView(
        role=role,
        case=case,
        status_label=case.status.label,
        next_action_label=next_action_label(case.next_action),
        signals=compute_signals(case, contacts=contacts, notes=notes, now=now),
        timeline=list(timeline),
        contacts=list(contacts),
        notes=list(notes),
    )


def _doctor_view(case: Case, *, timeline: Sequence[TimelineEvent]) -> DoctorCaseView:
    return DoctorCaseView(
        ref=case.ref,
        case_code=case.case_code,
        name=case.name,
        treatment=case.treatment,
        preferred_timeline=case.preferred_timeline,
        lang=case.lang,
        message=redact_pii(case.message),
        snapshot=redact_pii(case.ai_summary),
        files=[DoctorFileView(name=f.name, content_type=f.content_type) for f in case.files],
        doctor_review_status=case.doctor_review_status or DoctorReviewStatus.PENDING,
        doctor_review_notes=case.doctor_review_notes,
        doctor_assigned_at=case.doctor_assigned_at,
        doctor_reviewed_at=case.doctor_reviewed_at,
        updated_at=case.updated_at,
        timeline=[
            DoctorTimelineEntry(stage=e.stage, kind=e.kind, note=e.note, created_at=e.created_at)
            for e in timeline
        ],
    )


def _patient_view(case: Case) -> PatientCaseView:
    closed = case.status == CaseStatus.LOST
    position = -1 if closed else PIPELINE.index(case.status)
    steps = [
        ProgressStep(
            stage=stage,
            label=stage.label,
            done=index <= position,
            current=index == position,
        )
        for index, stage in enumerate(PIPELINE)
    ]
    percent = 0 if closed else round(100 * position / (len(PIPELINE) - 1))
    return PatientCaseView(
        case_id=case.id,
        current_step=CaseStatus.LOST.label if closed else case.status.label,
        progress_percent=percent,
        closed=closed,
        steps=steps,
        updated_at=case.updated_at,
    )


def project(
    case: Case,
    role: UserRole,
    *,
    timeline: Sequence[TimelineEvent] = (),
    contacts: Sequence[ContactEvent] = (),
    notes: Sequence[CaseNote] = (),
    now: Optional[datetime] = None,
) -> CaseView:
    """Pure role projection of a case and its logs.

    Doctors never receive notes or contact events, whatever is passed in;
    patients receive only the progress summary.
    """

    if role == UserRole.ADMIN or role == UserRole.EMPLOYEE:
        return _staff_view(case, role, timeline=timeline, contacts=contacts, notes=notes, now=now)
    elif role == UserRole.DOCTOR:
        return _doctor_view(case, timeline=timeline)
    elif role == UserRole.PATIENT:
        return _patient_view(case)
    else:
        assert_never(role)


class ProjectionService:
    """Compose the stores into role-scoped views.

    This is the only path by which a case leaves the engine for a non-admin
    caller. Ownership checks happen before a case gets here.
    """

    def __init__(
        self,
        cases: Optional[CaseService] = None,
        timeline: Optional[TimelineService] = None,
        contacts: Optional[ContactService] = None,
        notes: Optional[NoteService] = None,
    ) -> None:
        self.cases = cases or case_service
        self.timeline = timeline or timeline_service
        self.contacts = contacts or contact_service
        self.notes = notes or note_service

    def view_for(self, case: Case, viewer: User, *, timeline_limit: Optional[int] = None) -> CaseView:
        role = viewer.role
        if role == UserRole.ADMIN or role == UserRole.EMPLOYEE:
            return project(
                case,
                role,
                timeline=self.timeline.list_events(case.id, limit=timeline_limit),
                contacts=self.contacts.list_events(case.id),
                notes=self.notes.list_notes(case.id),
            )
        elif role == UserRole.DOCTOR:
            # Contacts and notes are never loaded for doctors.
            return project(case, role, timeline=self.timeline.list_events(case.id, limit=timeline_limit))
        elif role == UserRole.PATIENT:
            return project(case, role)
        else:
            assert_never(role)


projection_service = ProjectionService()
