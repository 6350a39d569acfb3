from datetime import datetime, timedelta, timezone

import pytest

from src.backend.domain.models.case import (
    CaseStatus,
    DoctorReviewStatus,
    NextAction,
    case_code_for_ref,
    next_action_label,
    normalize_status,
)
from src.backend.domain.models.timeline_event import TimelineEventKind
from src.backend.domain.models.user import User, UserRole
from src.backend.errors import CaseNotFound, FieldNotWritable, InvalidTransition
from src.backend.infra.db.inmemory import InMemoryCaseRepository, InMemoryTimelineEventRepository
from src.backend.infra.db.repositories import TimelineEventRepository
from src.backend.services.cases.service import (
    WRITABLE_FIELDS,
    CaseListTab,
    CaseService,
    CaseUpdate,
    NewCase,
)
from src.backend.services.timeline.service import TimelineService

ADMIN = User(id="admin-1", role=UserRole.ADMIN)
EMPLOYEE = User(id="emp-1", role=UserRole.EMPLOYEE)


class FailingTimelineRepository(TimelineEventRepository):
    def append(self, event):
        raise RuntimeError("timeline store down")

    def list_for_case(self, case_id):
        return []


def _service(timeline_repo=None) -> CaseService:
    return CaseService(
        cases=InMemoryCaseRepository(),
        timeline=TimelineService(timeline_repo or InMemoryTimelineEventRepository()),
    )


def test_create_case_starts_new_with_one_status_event():
    service = _service()
    result = service.create_case(NewCase(name="Ana", email="ana@example.com"))

    assert result.case.status == CaseStatus.NEW
    assert result.case.portal_token
    events = service.timeline.list_events(result.case.id)
    assert len(events) == 1
    assert events[0].stage == CaseStatus.NEW
    assert events[0].note == "Status updated to New"
    assert events[0].kind == TimelineEventKind.STATUS


def test_every_status_write_appends_exactly_one_event_even_when_unchanged():
    service = _service()
    case_id = service.create_case(NewCase(name="Ana")).case.id

    first = service.set_status(case_id, CaseStatus.CONTACTED, actor=ADMIN)
    again = service.set_status(case_id, CaseStatus.CONTACTED, actor=ADMIN)

    assert first.status_changed is True
    assert again.status_changed is False
    assert len(first.events) == 1 and len(again.events) == 1
    assert len(service.timeline.list_events(case_id)) == 3


def test_admin_can_skip_directly_to_appointment_set():
    service = _service()
    case_id = service.create_case(NewCase(name="Ana")).case.id
    before = service.timeline.replay(case_id)

    result = service.update_case(case_id, CaseUpdate(status="appointment_set"), actor=ADMIN)

    assert result.case.status == CaseStatus.APPOINTMENT_SET
    after = service.timeline.replay(case_id)
    assert len(after) == len(before) + 1
    assert after[: len(before)] == before
    assert after[-1].stage == CaseStatus.APPOINTMENT_SET
    assert after[-1].actor_role == "admin"


def test_lost_reachable_from_any_state_and_status_rederives():
    service = _service()
    case_id = service.create_case(NewCase(name="Ana")).case.id
    service.set_status(case_id, CaseStatus.ARRIVED, actor=ADMIN)
    service.set_status(case_id, "lost", actor=ADMIN)

    assert service.require_case(case_id).status == CaseStatus.LOST
    assert service.timeline.derive_status(case_id) == CaseStatus.LOST


def test_legacy_aliases_normalize_and_unknown_status_rejected():
    assert normalize_status("new_lead") == CaseStatus.NEW
    assert normalize_status(" Appointment ") == CaseStatus.APPOINTMENT_SET
    assert normalize_status("deposit") == CaseStatus.DEPOSIT_PAID
    assert normalize_status("qualified") is None

    service = _service()
    case_id = service.create_case(NewCase(name="Ana")).case.id
    with pytest.raises(InvalidTransition):
        service.update_case(case_id, CaseUpdate(status="qualified"), actor=ADMIN)
    with pytest.raises(InvalidTransition):
        service.set_status(case_id, "qualified", actor=ADMIN)


def test_timeline_failure_keeps_status_and_returns_warning():
    service = _service(FailingTimelineRepository())
    result = service.create_case(NewCase(name="Ana"))
    assert result.warnings and result.warnings[0].code == "timeline_append_failed"

    update = service.set_status(result.case.id, CaseStatus.DEPOSIT_PAID, actor=ADMIN)

    assert service.require_case(result.case.id).status == CaseStatus.DEPOSIT_PAID
    assert update.status_changed is True
    assert update.events == []
    assert len(update.warnings) == 1
    assert update.warnings[0].correlation_id


def test_next_action_free_text_and_labels():
    service = _service()
    case_id = service.create_case(NewCase(name="Ana")).case.id

    known = service.update_case(case_id, CaseUpdate(next_action="send_whatsapp"), actor=EMPLOYEE)
    assert known.case.next_action == NextAction.SEND_WHATSAPP
    assert known.events[0].kind == TimelineEventKind.NEXT_ACTION
    assert known.events[0].note == "Next action: Send WhatsApp"
    # Non-status entries carry the current stage and do not change it.
    assert known.events[0].stage == CaseStatus.NEW
    assert known.status_changed is False

    legacy = service.update_case(case_id, CaseUpdate(next_action="call_back_tuesday"), actor=EMPLOYEE)
    assert legacy.case.next_action == "call_back_tuesday"
    assert next_action_label(legacy.case.next_action) == "call_back_tuesday"
    assert next_action_label(None) == "No action"


def test_ready_for_booking_can_be_set_without_a_review():
    service = _service()
    case_id = service.create_case(NewCase(name="Ana")).case.id

    result = service.update_case(case_id, CaseUpdate(next_action="ready_for_booking"), actor=EMPLOYEE)

    assert result.case.next_action == NextAction.READY_FOR_BOOKING
    assert result.case.doctor_review_status is None


def test_follow_up_and_doctor_assignment_events():
    service = _service()
    case_id = service.create_case(NewCase(name="Ana")).case.id
    when = datetime.now(timezone.utc) + timedelta(days=2)

    result = service.update_case(case_id, CaseUpdate(follow_up_at=when, doctor_id="doc-1"), actor=ADMIN)

    kinds = [e.kind for e in result.events]
    assert kinds == [TimelineEventKind.FOLLOW_UP, TimelineEventKind.DOCTOR_ASSIGNMENT]
    assert result.case.doctor_assigned_at is not None
    assert result.events[1].note == "Assigned doctor doc-1"

    cleared = service.update_case(case_id, CaseUpdate(follow_up_at=None, doctor_id=None), actor=ADMIN)
    assert cleared.case.follow_up_at is None
    assert cleared.case.doctor_id is None
    assert [e.note for e in cleared.events] == ["Follow-up removed", "Doctor unassigned"]

    # Status derivation ignores the non-status entries.
    assert service.timeline.derive_status(case_id) == CaseStatus.NEW


def test_role_writable_fields_enforced():
    service = _service()
    case_id = service.create_case(NewCase(name="Ana")).case.id

    with pytest.raises(FieldNotWritable) as excinfo:
        service.update_case(case_id, CaseUpdate(doctor_review_status="approved_for_booking"), actor=EMPLOYEE)
    assert excinfo.value.fields == ["doctor_review_status"]

    # Admins may edit either review field on its own.
    result = service.update_case(case_id, CaseUpdate(doctor_review_notes="checked by admin"), actor=ADMIN)
    assert result.case.doctor_review_notes == "checked by admin"
    assert result.case.doctor_review_status is None

    doctor = User(id="doc-1", role=UserRole.DOCTOR)
    with pytest.raises(FieldNotWritable):
        service.update_case(case_id, CaseUpdate(status="contacted"), actor=doctor)


def test_every_role_has_a_write_policy():
    assert set(WRITABLE_FIELDS) == set(UserRole)


def test_empty_update_and_missing_case():
    service = _service()
    case_id = service.create_case(NewCase(name="Ana")).case.id

    with pytest.raises(ValueError):
        service.update_case(case_id, CaseUpdate(), actor=ADMIN)
    with pytest.raises(CaseNotFound):
        service.update_case("missing", CaseUpdate(status="new"), actor=ADMIN)


def test_list_tabs_and_search():
    service = _service()
    now = datetime.now(timezone.utc)
    unassigned = service.create_case(NewCase(name="Unassigned Person", treatment="veneers")).case
    assigned = service.create_case(NewCase(name="Assigned Person", email="assigned@example.com")).case
    service.update_case(assigned.id, CaseUpdate(doctor_id="doc-9", follow_up_at=now), actor=ADMIN)
    deposit = service.create_case(NewCase(name="Deposit Person")).case
    service.set_status(deposit.id, CaseStatus.DEPOSIT_PAID, actor=ADMIN)

    unassigned_ids = {c.id for c in service.list_cases(tab=CaseListTab.UNASSIGNED)}
    assert unassigned.id in unassigned_ids and assigned.id not in unassigned_ids

    due_today = {c.id for c in service.list_cases(tab=CaseListTab.DUE_TODAY, now=now)}
    assert due_today == {assigned.id}

    assert [c.id for c in service.list_cases(tab=CaseListTab.DEPOSIT_PAID)] == [deposit.id]
    assert [c.id for c in service.list_cases(search="VENEERS")] == [unassigned.id]
    assert [c.id for c in service.list_cases(status=CaseStatus.DEPOSIT_PAID)] == [deposit.id]


def test_refs_and_case_codes_resolve():
    service = _service()
    case = service.create_case(NewCase(name="Ana")).case

    assert case.case_code == case_code_for_ref(case.ref)
    assert case.case_code.startswith("CASE-") and len(case.case_code) == 15
    assert service.resolve_ref(case.ref).id == case.id
    assert service.resolve_ref(case.case_code).id == case.id
    assert service.resolve_ref(case.case_code[5:].lower()).id == case.id
    assert service.resolve_ref(case.id) is None
    assert service.resolve_ref("") is None


def test_portal_token_verification():
    service = _service()
    case = service.create_case(NewCase(name="Ana")).case

    assert service.verify_portal_token(case.id, case.portal_token).id == case.id
    assert service.verify_portal_token(case.id, "wrong") is None
    assert service.verify_portal_token(case.id, "ünicode") is None
    assert service.verify_portal_token("missing", case.portal_token) is None


def test_apply_review_sets_both_fields():
    service = _service()
    case_id = service.create_case(NewCase(name="Ana")).case.id

    updated = service.apply_review(
        case_id,
        review_status=DoctorReviewStatus.NEEDS_INFO,
        review_notes="Need panoramic x-ray",
    )

    assert updated.doctor_review_status == DoctorReviewStatus.NEEDS_INFO
    assert updated.doctor_review_notes == "Need panoramic x-ray"
    assert updated.doctor_reviewed_at is not None
    assert updated.status == CaseStatus.NEW
