from src.backend.domain.models.case import CaseStatus
from src.backend.domain.models.contact_event import ContactChannel
from src.backend.domain.models.timeline_event import TimelineEventKind
from src.backend.domain.models.user import User, UserRole
from src.backend.infra.db.inmemory import (
    InMemoryCaseRepository,
    InMemoryContactEventRepository,
    InMemoryTimelineEventRepository,
)
from src.backend.services.cases.service import CaseService, NewCase
from src.backend.services.contacts.service import ContactService
from src.backend.services.timeline.service import TimelineService

EMPLOYEE = User(id="emp-1", role=UserRole.EMPLOYEE)


def _services():
    cases = CaseService(
        cases=InMemoryCaseRepository(),
        timeline=TimelineService(InMemoryTimelineEventRepository()),
    )
    return cases, ContactService(InMemoryContactEventRepository(), cases)


def test_first_contact_promotes_new_to_contacted():
    cases, contacts = _services()
    case_id = cases.create_case(NewCase(name="Ana", phone="+90 555")).case.id

    result = contacts.record(case_id, channel=ContactChannel.WHATSAPP, note="sent intro", actor=EMPLOYEE)

    assert result.status == CaseStatus.CONTACTED
    assert result.status_changed is True
    case = cases.require_case(case_id)
    assert case.status == CaseStatus.CONTACTED
    assert case.last_contacted_at == result.event.created_at

    [promotion, creation] = cases.timeline.list_events(case_id)
    assert creation.stage == CaseStatus.NEW
    assert promotion.stage == CaseStatus.CONTACTED
    assert promotion.kind == TimelineEventKind.STATUS
    assert promotion.payload["trigger"] == "contact_event"


def test_second_contact_does_not_append_status_event():
    cases, contacts = _services()
    case_id = cases.create_case(NewCase(name="Ana")).case.id
    contacts.record(case_id, channel=ContactChannel.WHATSAPP, actor=EMPLOYEE)

    second = contacts.record(case_id, channel=ContactChannel.PHONE, actor=EMPLOYEE)

    assert second.status == CaseStatus.CONTACTED
    assert second.status_changed is False
    assert len(cases.timeline.list_events(case_id)) == 2
    assert [e.channel for e in contacts.list_events(case_id)] == [
        ContactChannel.PHONE,
        ContactChannel.WHATSAPP,
    ]


def test_contact_on_later_stage_leaves_status_alone():
    cases, contacts = _services()
    case_id = cases.create_case(NewCase(name="Ana")).case.id
    cases.set_status(case_id, CaseStatus.COMPLETED, actor=EMPLOYEE)

    result = contacts.record(case_id, channel=ContactChannel.EMAIL, actor=EMPLOYEE)

    assert result.status == CaseStatus.COMPLETED
    assert result.status_changed is False
    assert cases.require_case(case_id).last_contacted_at is not None


def test_blank_note_stored_as_none():
    cases, contacts = _services()
    case_id = cases.create_case(NewCase(name="Ana")).case.id

    result = contacts.record(case_id, channel=ContactChannel.SMS, note="", actor=EMPLOYEE)

    assert result.event.note is None
    assert result.event.created_by == "emp-1"
