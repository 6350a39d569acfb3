from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Iterable, List, Optional
from uuid import UUID

from src.backend.domain.models.case import Case, CaseStatus
from src.backend.domain.models.case_note import CaseNote
from src.backend.domain.models.contact_event import ContactEvent
from src.backend.domain.models.timeline_event import TimelineEvent


class CaseRepository(ABC):
    @abstractmethod
    def get(self, case_id: str) -> Optional[Case]:
        raise NotImplementedError

    @abstractmethod
    def get_by_uuid(self, case_uuid: UUID) -> Optional[Case]:
        raise NotImplementedError

    @abstractmethod
    def list_by_filters(
        self,
        *,
        doctor_id: Optional[str] = None,
        status: Optional[CaseStatus] = None,
    ) -> Iterable[Case]:
        raise NotImplementedError

    @abstractmethod
    def save(self, case: Case) -> None:
        raise NotImplementedError


class TimelineEventRepository(ABC):
    """Append-only. There is deliberately no update or delete."""

    @abstractmethod
    def append(self, event: TimelineEvent) -> None:
        raise NotImplementedError

    @abstractmethod
    def list_for_case(self, case_id: str) -> List[TimelineEvent]:
        """Return events in insertion (oldest-first) order."""
        raise NotImplementedError


class ContactEventRepository(ABC):
    """Append-only. There is deliberately no update or delete."""

    @abstractmethod
    def append(self, event: ContactEvent) -> None:
        raise NotImplementedError

    @abstractmethod
    def list_for_case(self, case_id: str) -> List[ContactEvent]:
        raise NotImplementedError


class CaseNoteRepository(ABC):
    @abstractmethod
    def append(self, note: CaseNote) -> None:
        raise NotImplementedError

    @abstractmethod
    def list_for_case(self, case_id: str) -> List[CaseNote]:
        raise NotImplementedError
