from __future__ import annotations

from collections import defaultdict
from typing import Dict, Iterable, List, Optional
from uuid import UUID

from src.backend.domain.models.case import Case, CaseStatus
from src.backend.domain.models.case_note import CaseNote
from src.backend.domain.models.contact_event import ContactEvent
from src.backend.domain.models.timeline_event import TimelineEvent
from src.backend.infra.db.repositories import (
    CaseNoteRepository,
    CaseRepository,
    ContactEventRepository,
    TimelineEventRepository,
)


class InMemoryCaseRepository(CaseRepository):
    """Dict-backed store used for tests and local development.

    Cases are stored as copies so callers cannot mutate persisted state
    without going through ``save``.
    """

    def __init__(self) -> None:
        self._cases: Dict[str, Case] = {}

    def get(self, case_id: str) -> Optional[Case]:
        case = self._cases.get(case_id)
        return case.model_copy(deep=True) if case is not None else None

    def get_by_uuid(self, case_uuid: UUID) -> Optional[Case]:
        for case in self._cases.values():
            if case.uuid == case_uuid:
                return case.model_copy(deep=True)
        return None

    def list_by_filters(
        self,
        *,
        doctor_id: Optional[str] = None,
        status: Optional[CaseStatus] = None,
    ) -> Iterable[Case]:
        for case in list(self._cases.values()):
            if doctor_id is not None and case.doctor_id != doctor_id:
                continue
            if status is not None and case.status != status:
                continue
            yield case.model_copy(deep=True)

    def save(self, case: Case) -> None:
        self._cases[case.id] = case.model_copy(deep=True)


class InMemoryTimelineEventRepository(TimelineEventRepository):
    def __init__(self) -> None:
        self._events: Dict[str, List[TimelineEvent]] = defaultdict(list)

    def append(self, event: TimelineEvent) -> None:
        self._events[event.case_id].append(event)

    def list_for_case(self, case_id: str) -> List[TimelineEvent]:
        return list(self._events.get(case_id, []))


class InMemoryContactEventRepository(ContactEventRepository):
    def __init__(self) -> None:
        self._events: Dict[str, List[ContactEvent]] = defaultdict(list)

    def append(self, event: ContactEvent) -> None:
        self._events[event.case_id].append(event)

    def list_for_case(self, case_id: str) -> List[ContactEvent]:
        return list(self._events.get(case_id, []))


class InMemoryCaseNoteRepository(CaseNoteRepository):
    def __init__(self) -> None:
        self._notes: Dict[str, List[CaseNote]] = defaultdict(list)

    def append(self, note: CaseNote) -> None:
        self._notes[note.case_id].append(note)

    def list_for_case(self, case_id: str) -> List[CaseNote]:
        return list(self._notes.get(case_id, []))


case_repository: CaseRepository = InMemoryCaseRepository()
timeline_event_repository: TimelineEventRepository = InMemoryTimelineEventRepository()
contact_event_repository: ContactEventRepository = InMemoryContactEventRepository()
case_note_repository: CaseNoteRepository = InMemoryCaseNoteRepository()
