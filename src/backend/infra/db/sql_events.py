from __future__ import annotations

from typing import List

from src.backend.domain.models.case_note import CaseNote
from src.backend.domain.models.contact_event import ContactEvent
from src.backend.domain.models.timeline_event import TimelineEvent
from src.backend.infra.db.models import CaseNoteORM, ContactEventORM, TimelineEventORM
from src.backend.infra.db.repositories import (
    CaseNoteRepository,
    ContactEventRepository,
    TimelineEventRepository,
)
from src.backend.infra.db.session import SessionFactory

# The three per-case logs share one shape: insert-only rows read back in
# insertion order. None of these classes issue UPDATE or DELETE.


class SqlTimelineEventRepository(TimelineEventRepository):
    def __init__(self, session_factory: SessionFactory) -> None:
        self._session_factory = session_factory

    def append(self, event: TimelineEvent) -> None:
        session = self._session_factory()
        try:
            session.add(TimelineEventORM.from_domain(event))
            session.commit()
        finally:
            session.close()

    def list_for_case(self, case_id: str) -> List[TimelineEvent]:
        session = self._session_factory()
        try:
            rows = (
                session.query(TimelineEventORM)
                .filter(TimelineEventORM.case_id == case_id)
                .order_by(TimelineEventORM.seq.asc())
                .all()
            )
            return [orm.to_domain() for orm in rows]
        finally:
            session.close()


class SqlContactEventRepository(ContactEventRepository):
    def __init__(self, session_factory: SessionFactory) -> None:
        self._session_factory = session_factory

    def append(self, event: ContactEvent) -> None:
        session = self._session_factory()
        try:
            session.add(ContactEventORM.from_domain(event))
            session.commit()
        finally:
            session.close()

    def list_for_case(self, case_id: str) -> List[ContactEvent]:
        session = self._session_factory()
        try:
            rows = (
                session.query(ContactEventORM)
                .filter(ContactEventORM.case_id == case_id)
                .order_by(ContactEventORM.seq.asc())
                .all()
            )
            return [orm.to_domain() for orm in rows]
        finally:
            session.close()


class SqlCaseNoteRepository(CaseNoteRepository):
    def __init__(self, session_factory: SessionFactory) -> None:
        self._session_factory = session_factory

    def append(self, note: CaseNote) -> None:
        session = self._session_factory()
        try:
            session.add(CaseNoteORM.from_domain(note))
            session.commit()
        finally:
            session.close()

    def list_for_case(self, case_id: str) -> List[CaseNote]:
        session = self._session_factory()
        try:
            rows = (
                session.query(CaseNoteORM)
                .filter(CaseNoteORM.case_id == case_id)
                .order_by(CaseNoteORM.seq.asc())
                .all()
            )
            return [orm.to_domain() for orm in rows]
        finally:
            session.close()
