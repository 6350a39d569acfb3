from __future__ import annotations

import logging
import secrets
import string
import time
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional, Union
from uuid import UUID, uuid4

from pydantic import BaseModel, Field

from src.backend.domain.models.case import (
    Case,
    CaseFile,
    CaseSource,
    CaseStatus,
    DoctorReviewStatus,
    NextAction,
    next_action_label,
    normalize_status,
)
from src.backend.domain.models.timeline_event import TimelineEvent, TimelineEventKind
from src.backend.domain.models.user import User, UserRole
from src.backend.errors import (
    CaseNotFound,
    FieldNotWritable,
    InvalidTransition,
    PartialWriteWarning,
)
from src.backend.infra.db import inmemory
from src.backend.infra.db.repositories import CaseRepository
from src.backend.request_context import new_correlation_id
from src.backend.services.cases.scoring import is_due_on
from src.backend.services.timeline.service import TimelineService, timeline_service

logger = logging.getLogger("cases")

_ID_ALPHABET = string.ascii_lowercase + string.digits

_STAFF_FIELDS: FrozenSet[str] = frozenset(
    {
        "status",
        "next_action",
        "follow_up_at",
        "doctor_id",
        "cal_booking_id",
        "meeting_start",
        "meeting_end",
    }
)

# Fields each role may set through a direct case update. Doctors change review
# fields only through the review workflow, which writes both together.
WRITABLE_FIELDS: Dict[UserRole, FrozenSet[str]] = {
    UserRole.ADMIN: _STAFF_FIELDS
    | frozenset({"doctor_review_status", "doctor_review_notes", "ai_summary"}),
    UserRole.EMPLOYEE: _STAFF_FIELDS,
    UserRole.DOCTOR: frozenset(),
    UserRole.PATIENT: frozenset(),
}

_missing_roles = set(UserRole) - set(WRITABLE_FIELDS)
if _missing_roles:  # pragma: no cover - guards against adding a role without a policy
    raise RuntimeError(f"No writable-field policy for roles: {sorted(r.value for r in _missing_roles)}")


class CaseListTab(str, Enum):
    ALL = "all"
    UNASSIGNED = "unassigned"
    DUE_TODAY = "due_today"
    APPOINTMENT_SET = "appointment_set"
    DEPOSIT_PAID = "deposit_paid"


class NewCase(BaseModel):
    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    treatment: Optional[str] = None
    message: Optional[str] = None
    preferred_timeline: Optional[str] = None
    source: CaseSource = CaseSource.CONTACT
    lang: Optional[str] = None
    page_url: Optional[str] = None
    utm_source: Optional[str] = None
    utm_campaign: Optional[str] = None
    utm_medium: Optional[str] = None
    referrer: Optional[str] = None
    device: Optional[str] = None


class CaseUpdate(BaseModel):
    """Partial update. Only fields present in ``model_fields_set`` are applied,
    so an explicit ``null`` clears a field while an omitted one is untouched.
    """

    status: Optional[str] = None
    next_action: Optional[Union[NextAction, str]] = Field(default=None, union_mode="left_to_right")
    follow_up_at: Optional[datetime] = None
    doctor_id: Optional[str] = None
    doctor_review_status: Optional[DoctorReviewStatus] = None
    doctor_review_notes: Optional[str] = None
    cal_booking_id: Optional[str] = None
    meeting_start: Optional[datetime] = None
    meeting_end: Optional[datetime] = None
    ai_summary: Optional[str] = None


class CaseWriteResult(BaseModel):
    case: Case
    status_changed: bool = False
    events: List[TimelineEvent] = Field(default_factory=list)
    warnings: List[PartialWriteWarning] = Field(default_factory=list)


def _generate_case_id() -> str:
    suffix = "".join(secrets.choice(_ID_ALPHABET) for _ in range(7))
    return f"{int(time.time() * 1000)}-{suffix}"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CaseService:
    """Canonical case records and their status state machine.

    Any authorized write may set any canonical status (staff override). The
    two automatic transitions are: creation always starts at ``new``, and
    ``promote_if_new`` moves ``new`` to ``contacted`` after an outbound
    contact. Every status write appends exactly one status TimelineEvent; if
    that append fails the write still stands and the result carries a
    PartialWriteWarning instead of rolling back.
    """

    def __init__(
        self,
        cases: Optional[CaseRepository] = None,
        timeline: Optional[TimelineService] = None,
    ) -> None:
        self.cases: CaseRepository = cases or inmemory.case_repository
        self.timeline: TimelineService = timeline or timeline_service

    # Reads

    def get_case(self, case_id: str) -> Optional[Case]:
        return self.cases.get(case_id)

    def require_case(self, case_id: str) -> Case:
        case = self.cases.get(case_id)
        if case is None:
            raise CaseNotFound(case_id)
        return case

    def resolve_ref(self, ref: str, *, doctor_id: Optional[str] = None) -> Optional[Case]:
        """Look a case up by privacy-safe reference.

        Accepts the case uuid, a ``CASE-`` display code or the bare code.
        Code lookups are only attempted within ``doctor_id``'s cases when given.
        """

        raw = (ref or "").strip()
        if not raw:
            return None
        try:
            return self.cases.get_by_uuid(UUID(raw))
        except ValueError:
            pass

        code = raw.upper()
        if not code.startswith("CASE-"):
            code = f"CASE-{code}"
        for case in self.cases.list_by_filters(doctor_id=doctor_id):
            if case.case_code == code:
                return case
        return None

    def list_cases(
        self,
        *,
        tab: CaseListTab = CaseListTab.ALL,
        status: Optional[CaseStatus] = None,
        search: Optional[str] = None,
        doctor_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> List[Case]:
        now = now or _utcnow()
        needle = (search or "").strip().lower()
        results: List[Case] = []
        for case in self.cases.list_by_filters(doctor_id=doctor_id, status=status):
            if tab == CaseListTab.UNASSIGNED and case.doctor_id is not None:
                continue
            if tab == CaseListTab.DUE_TODAY and not is_due_on(case, now):
                continue
            if tab == CaseListTab.APPOINTMENT_SET and case.status != CaseStatus.APPOINTMENT_SET:
                continue
            if tab == CaseListTab.DEPOSIT_PAID and case.status != CaseStatus.DEPOSIT_PAID:
                continue
            if needle:
                haystack = " ".join(
                    v for v in (case.name, case.email, case.phone, case.treatment) if v
                ).lower()
                if needle not in haystack:
                    continue
            results.append(case)
        results.sort(key=lambda c: c.created_at, reverse=True)
        return results

    def verify_portal_token(self, case_id: str, portal_token: str) -> Optional[Case]:
        case = self.cases.get(case_id)
        if case is None or not portal_token:
            return None
        if not secrets.compare_digest(case.portal_token.encode("utf-8"), portal_token.encode("utf-8")):
            return None
        return case

    # Writes

    def create_case(self, data: NewCase, *, actor: Optional[User] = None) -> CaseWriteResult:
        now = _utcnow()
        case = Case(
            id=_generate_case_id(),
            uuid=uuid4(),
            created_at=now,
            updated_at=now,
            status=CaseStatus.NEW,
            portal_token=secrets.token_urlsafe(24),
            **data.model_dump(),
        )
        self.cases.save(case)
        logger.info("case created id=%s source=%s", case.id, case.source.value)

        result = CaseWriteResult(case=case, status_changed=True)
        self.record_event(result, stage=CaseStatus.NEW, actor=actor, payload={"source": case.source.value})
        return result

    def set_status(
        self,
        case_id: str,
        status: Union[CaseStatus, str],
        *,
        actor: Optional[User] = None,
        note: Optional[str] = None,
        payload: Optional[Dict[str, Any]] = None,
    ) -> CaseWriteResult:
        target = normalize_status(status)
        if target is None:
            raise InvalidTransition(f"Unknown status: {status!r}")

        case = self.require_case(case_id)
        previous = case.status
        case.status = target
        case.updated_at = _utcnow()
        self.cases.save(case)

        result = CaseWriteResult(case=case, status_changed=previous != target)
        event_payload = {"previous_status": previous.value, **(payload or {})}
        self.record_event(result, stage=target, note=note, actor=actor, payload=event_payload)
        return result

    def promote_if_new(self, case_id: str, *, actor: Optional[User] = None) -> CaseWriteResult:
        """Auto-transition ``new`` -> ``contacted``; a no-op for any other status."""

        case = self.require_case(case_id)
        if case.status != CaseStatus.NEW:
            return CaseWriteResult(case=case)
        return self.set_status(
            case_id,
            CaseStatus.CONTACTED,
            actor=actor,
            payload={"trigger": "contact_event"},
        )

    def update_case(self, case_id: str, changes: CaseUpdate, *, actor: User) -> CaseWriteResult:
        fields = set(changes.model_fields_set)
        if not fields:
            raise ValueError("No updates provided")

        disallowed = fields - WRITABLE_FIELDS[actor.role]
        if disallowed:
            raise FieldNotWritable(sorted(disallowed))

        target_status: Optional[CaseStatus] = None
        if "status" in fields:
            target_status = normalize_status(changes.status)
            if target_status is None:
                raise InvalidTransition(f"Unknown status: {changes.status!r}")

        case = self.require_case(case_id)
        now = _utcnow()
        previous_status = case.status
        previous_doctor = case.doctor_id

        if target_status is not None:
            case.status = target_status
        if "next_action" in fields:
            case.next_action = changes.next_action
        if "follow_up_at" in fields:
            case.follow_up_at = changes.follow_up_at
        if "doctor_id" in fields:
            case.doctor_id = changes.doctor_id or None
            if case.doctor_id != previous_doctor:
                case.doctor_assigned_at = now if case.doctor_id else None
        if "doctor_review_status" in fields:
            case.doctor_review_status = changes.doctor_review_status
        if "doctor_review_notes" in fields:
            case.doctor_review_notes = changes.doctor_review_notes
        for name in ("cal_booking_id", "meeting_start", "meeting_end", "ai_summary"):
            if name in fields:
                setattr(case, name, getattr(changes, name))
        case.updated_at = now

        # Re-validate so timestamp normalization applies to patched values.
        case = Case.model_validate(case.model_dump())
        self.cases.save(case)

        result = CaseWriteResult(
            case=case,
            status_changed=target_status is not None and target_status != previous_status,
        )

        # The status event goes first so later entries carry the new stage.
        if target_status is not None:
            self.record_event(
                result,
                stage=target_status,
                actor=actor,
                payload={"previous_status": previous_status.value},
            )
        if "next_action" in fields:
            self.record_event(
                result,
                kind=TimelineEventKind.NEXT_ACTION,
                note=f"Next action: {next_action_label(case.next_action)}",
                actor=actor,
                payload={"next_action": case.next_action.value if isinstance(case.next_action, NextAction) else case.next_action},
            )
        if "follow_up_at" in fields:
            self.record_event(
                result,
                kind=TimelineEventKind.FOLLOW_UP,
                note=(
                    f"Follow-up scheduled: {case.follow_up_at.isoformat()}"
                    if case.follow_up_at
                    else "Follow-up removed"
                ),
                actor=actor,
                payload={"follow_up_at": case.follow_up_at.isoformat() if case.follow_up_at else None},
            )
        if "doctor_id" in fields and case.doctor_id != previous_doctor:
            self.record_event(
                result,
                kind=TimelineEventKind.DOCTOR_ASSIGNMENT,
                note=f"Assigned doctor {case.doctor_id}" if case.doctor_id else "Doctor unassigned",
                actor=actor,
                payload={"doctor_id": case.doctor_id, "previous_doctor_id": previous_doctor},
            )
        if fields & {"doctor_review_status", "doctor_review_notes"}:
            self.record_event(
                result,
                kind=TimelineEventKind.DOCTOR_REVIEW,
                note="Review fields edited by staff",
                actor=actor,
                payload={
                    "doctor_review_status": case.doctor_review_status.value
                    if case.doctor_review_status
                    else None
                },
            )
        return result

    def apply_review(
        self,
        case_id: str,
        *,
        review_status: DoctorReviewStatus,
        review_notes: str,
    ) -> Case:
        """Set both review fields in a single write.

        Only the review workflow calls this; there is no path that sets one
        review field without the other on behalf of a doctor.
        """

        case = self.require_case(case_id)
        now = _utcnow()
        case.doctor_review_status = review_status
        case.doctor_review_notes = review_notes
        case.doctor_reviewed_at = now
        case.updated_at = now
        self.cases.save(case)
        return case

    def mark_contacted(self, case_id: str, at: datetime) -> Case:
        case = self.require_case(case_id)
        case.last_contacted_at = at
        case.updated_at = at
        self.cases.save(case)
        return case

    def attach_file(self, case_id: str, file: CaseFile) -> Case:
        case = self.require_case(case_id)
        case.files.append(file)
        case.updated_at = _utcnow()
        self.cases.save(case)
        return case

    # Timeline emission

    def record_event(
        self,
        result: CaseWriteResult,
        *,
        stage: Optional[CaseStatus] = None,
        kind: TimelineEventKind = TimelineEventKind.STATUS,
        note: Optional[str] = None,
        actor: Optional[User] = None,
        payload: Optional[Dict[str, Any]] = None,
    ) -> None:
        try:
            event = self.timeline.append(
                case_id=result.case.id,
                stage=stage or result.case.status,
                kind=kind,
                note=note,
                payload=payload,
                actor=actor,
            )
        except Exception:
            correlation_id = new_correlation_id()
            logger.exception(
                "timeline append failed case_id=%s kind=%s correlation_id=%s",
                result.case.id,
                kind.value,
                correlation_id,
            )
            result.warnings.append(
                PartialWriteWarning(
                    message="The change was saved but its history entry could not be recorded.",
                    correlation_id=correlation_id,
                )
            )
            return
        result.events.append(event)


case_service = CaseService()
