from __future__ import annotations

from datetime import datetime, timezone
from typing import List, Optional
from uuid import uuid4

from src.backend.domain.models.case_note import CaseNote
from src.backend.domain.models.user import User
from src.backend.errors import AuthorizationError
from src.backend.infra.db import inmemory
from src.backend.infra.db.repositories import CaseNoteRepository
from src.backend.services.cases.service import CaseService, case_service


class NoteService:
    """Staff-authored notes, independent of the timeline."""

    def __init__(
        self,
        notes: Optional[CaseNoteRepository] = None,
        cases: Optional[CaseService] = None,
    ) -> None:
        self.notes: CaseNoteRepository = notes or inmemory.case_note_repository
        self.cases: CaseService = cases or case_service

    def add_note(self, case_id: str, text: str, *, author: User) -> CaseNote:
        if not author.is_staff:
            raise AuthorizationError("notes are staff only")
        self.cases.require_case(case_id)
        note = CaseNote(
            id=uuid4(),
            case_id=case_id,
            note=text,
            created_by=author.id,
            created_at=datetime.now(timezone.utc),
        )
        self.notes.append(note)
        return note

    def list_notes(self, case_id: str) -> List[CaseNote]:
        return sorted(self.notes.list_for_case(case_id), key=lambda n: n.created_at, reverse=True)


note_service = NoteService()
