from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional, Union

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field

from src.backend.domain.models.case import (
    Case,
    CaseSource,
    CaseStatus,
    DoctorReviewStatus,
    NextAction,
    next_action_label,
    normalize_status,
)
from src.backend.domain.models.case_note import CaseNote
from src.backend.domain.models.contact_event import ContactChannel, ContactEvent
from src.backend.domain.models.timeline_event import TimelineEvent, TimelineEventKind
from src.backend.domain.models.user import User
from src.backend.errors import CaseNotFound, FieldNotWritable, InvalidTransition, PartialWriteWarning
from src.backend.request_context import request_id_dependency
from src.backend.security import get_api_key, require_staff
from src.backend.services.audit.service import audit_service
from src.backend.services.cases.scoring import CaseSignals, compute_signals
from src.backend.services.cases.service import (
    CaseListTab,
    CaseUpdate,
    CaseWriteResult,
    case_service,
)
from src.backend.services.contacts.service import ContactResult, contact_service
from src.backend.services.notes.service import note_service
from src.backend.services.projection.service import StaffCaseView, projection_service
from src.backend.services.timeline.service import timeline_service

router = APIRouter(
    prefix="",
    tags=["cases"],
    dependencies=[Depends(get_api_key), Depends(request_id_dependency)],
)


class CaseSummary(BaseModel):
    id: str
    ref: str
    case_code: str
    created_at: datetime
    source: CaseSource
    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    treatment: Optional[str] = None
    status: CaseStatus
    status_label: str
    next_action: Optional[Union[NextAction, str]] = Field(default=None, union_mode="left_to_right")
    next_action_label: str
    follow_up_at: Optional[datetime] = None
    last_contacted_at: Optional[datetime] = None
    doctor_id: Optional[str] = None
    doctor_review_status: Optional[DoctorReviewStatus] = None
    signals: CaseSignals


class CaseWriteResponse(BaseModel):
    case: Case
    status_changed: bool
    events: List[TimelineEvent] = Field(default_factory=list)
    warnings: List[PartialWriteWarning] = Field(default_factory=list)


class TimelineAppendRequest(BaseModel):
    stage: Optional[str] = None
    note: Optional[str] = None
    payload: Dict[str, Any] = Field(default_factory=dict)
    # When false the entry is recorded against ``stage`` without touching the case status.
    update_status: bool = True


class TimelineAppendResponse(BaseModel):
    event: Optional[TimelineEvent] = None
    status: CaseStatus
    status_changed: bool = False
    warnings: List[PartialWriteWarning] = Field(default_factory=list)


class ContactCreateRequest(BaseModel):
    channel: ContactChannel
    note: Optional[str] = None


class NoteCreateRequest(BaseModel):
    note: str = Field(..., min_length=1)


def _write_response(result: CaseWriteResult) -> CaseWriteResponse:
    return CaseWriteResponse(
        case=result.case,
        status_changed=result.status_changed,
        events=result.events,
        warnings=result.warnings,
    )


def _require_case(case_id: str) -> Case:
    case = case_service.get_case(case_id)
    if case is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Case not found")
    return case


def _audit(action: str, case_id: Optional[str], user: User, **extra: Any) -> None:
    audit_service.log_event(
        action=action,
        resource_type="case",
        resource_id=case_id,
        extra={"user_id": user.id, "role": user.role.value, **extra},
    )


@router.get("/cases", response_model=List[CaseSummary])
async def list_cases(
    tab: CaseListTab = CaseListTab.ALL,
    status_filter: Optional[str] = Query(None, alias="status"),
    search: Optional[str] = None,
    current_user: User = Depends(require_staff),
) -> List[CaseSummary]:
    status_value: Optional[CaseStatus] = None
    if status_filter:
        status_value = normalize_status(status_filter)
        if status_value is None:
            raise HTTPException(
                status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
                detail=f"Unknown status: {status_filter}",
            )

    summaries: List[CaseSummary] = []
    for case in case_service.list_cases(tab=tab, status=status_value, search=search):
        signals = compute_signals(
            case,
            contacts=contact_service.list_events(case.id),
            notes=note_service.list_notes(case.id),
        )
        summaries.append(
            CaseSummary(
                id=case.id,
                ref=case.ref,
                case_code=case.case_code,
                created_at=case.created_at,
                source=case.source,
                name=case.name,
                email=case.email,
                phone=case.phone,
                treatment=case.treatment,
                status=case.status,
                status_label=case.status.label,
                next_action=case.next_action,
                next_action_label=next_action_label(case.next_action),
                follow_up_at=case.follow_up_at,
                last_contacted_at=case.last_contacted_at,
                doctor_id=case.doctor_id,
                doctor_review_status=case.doctor_review_status,
                signals=signals,
            )
        )

    _audit("list", None, current_user, tab=tab.value, count=len(summaries))
    return summaries


@router.get("/case/{case_id}", response_model=StaffCaseView)
async def get_case(
    case_id: str,
    timeline_limit: Optional[int] = Query(None, ge=1, le=500),
    current_user: User = Depends(require_staff),
) -> StaffCaseView:
    case = _require_case(case_id)
    view = projection_service.view_for(case, current_user, timeline_limit=timeline_limit)
    _audit("view", case.id, current_user)
    return view  # type: ignore[return-value]


@router.patch("/case/{case_id}", response_model=CaseWriteResponse)
async def update_case(
    case_id: str,
    payload: CaseUpdate,
    current_user: User = Depends(require_staff),
) -> CaseWriteResponse:
    """Partially update a case. Writable fields depend on the caller's role."""

    try:
        result = case_service.update_case(case_id, payload, actor=current_user)
    except CaseNotFound:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Case not found")
    except FieldNotWritable as exc:
        _audit("forbidden", case_id, current_user, fields=exc.fields)
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc))
    except InvalidTransition as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc))
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))

    _audit(
        "update",
        case_id,
        current_user,
        fields=sorted(payload.model_fields_set),
        status_changed=result.status_changed,
        timeline_warnings=len(result.warnings),
    )
    return _write_response(result)


@router.get("/case/{case_id}/timeline", response_model=List[TimelineEvent])
async def list_timeline(
    case_id: str,
    limit: Optional[int] = Query(None, ge=1, le=500),
    offset: int = Query(0, ge=0),
    current_user: User = Depends(require_staff),
) -> List[TimelineEvent]:
    _require_case(case_id)
    return timeline_service.list_events(case_id, limit=limit, offset=offset)


@router.post("/case/{case_id}/timeline", response_model=TimelineAppendResponse, status_code=status.HTTP_201_CREATED)
async def append_timeline(
    case_id: str,
    payload: TimelineAppendRequest,
    current_user: User = Depends(require_staff),
) -> TimelineAppendResponse:
    """Append a timeline entry, moving the case to ``stage`` unless told not to."""

    case = _require_case(case_id)

    stage: Optional[CaseStatus] = None
    if payload.stage is not None:
        stage = normalize_status(payload.stage)
        if stage is None:
            raise HTTPException(
                status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
                detail=f"Unknown stage: {payload.stage}",
            )

    if stage is not None and payload.update_status:
        try:
            result = case_service.set_status(
                case_id,
                stage,
                actor=current_user,
                note=payload.note,
                payload=payload.payload,
            )
        except CaseNotFound:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Case not found")
    else:
        if not payload.note:
            raise HTTPException(
                status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
                detail="A note is required when the status is not being changed",
            )
        result = CaseWriteResult(case=case)
        case_service.record_event(
            result,
            stage=stage or case.status,
            kind=TimelineEventKind.NOTE,
            note=payload.note,
            actor=current_user,
            payload=payload.payload,
        )

    _audit(
        "timeline_append",
        case_id,
        current_user,
        status_changed=result.status_changed,
        timeline_warnings=len(result.warnings),
    )
    return TimelineAppendResponse(
        event=result.events[0] if result.events else None,
        status=result.case.status,
        status_changed=result.status_changed,
        warnings=result.warnings,
    )


@router.get("/case/{case_id}/contact", response_model=List[ContactEvent])
async def list_contacts(
    case_id: str,
    limit: Optional[int] = Query(None, ge=1, le=500),
    current_user: User = Depends(require_staff),
) -> List[ContactEvent]:
    _require_case(case_id)
    return contact_service.list_events(case_id, limit=limit)


@router.post("/case/{case_id}/contact", response_model=ContactResult, status_code=status.HTTP_201_CREATED)
async def record_contact(
    case_id: str,
    payload: ContactCreateRequest,
    current_user: User = Depends(require_staff),
) -> ContactResult:
    """Log an outbound contact attempt; a ``new`` case moves to ``contacted``."""

    try:
        result = contact_service.record(case_id, channel=payload.channel, note=payload.note, actor=current_user)
    except CaseNotFound:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Case not found")

    _audit(
        "contact",
        case_id,
        current_user,
        channel=payload.channel.value,
        status_changed=result.status_changed,
    )
    return result


@router.get("/case/{case_id}/notes", response_model=List[CaseNote])
async def list_notes(
    case_id: str,
    current_user: User = Depends(require_staff),
) -> List[CaseNote]:
    _require_case(case_id)
    return note_service.list_notes(case_id)


@router.post("/case/{case_id}/notes", response_model=CaseNote, status_code=status.HTTP_201_CREATED)
async def add_note(
    case_id: str,
    payload: NoteCreateRequest,
    current_user: User = Depends(require_staff),
) -> CaseNote:
    try:
        note = note_service.add_note(case_id, payload.note, author=current_user)
    except CaseNotFound:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Case not found")

    _audit("note", case_id, current_user)
    return note
