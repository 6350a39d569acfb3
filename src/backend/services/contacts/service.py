from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import List, Optional
from uuid import uuid4

from pydantic import BaseModel, Field

from src.backend.domain.models.case import CaseStatus
from src.backend.domain.models.contact_event import ContactChannel, ContactEvent
from src.backend.domain.models.user import User
from src.backend.errors import PartialWriteWarning
from src.backend.infra.db import inmemory
from src.backend.infra.db.repositories import ContactEventRepository
from src.backend.services.cases.service import CaseService, case_service

logger = logging.getLogger("cases")


class ContactResult(BaseModel):
    """Outcome of logging a contact attempt.

    ``status`` is the case status after the write so callers can refresh
    their local view without a second read.
    """

    event: ContactEvent
    status: CaseStatus
    status_changed: bool = False
    warnings: List[PartialWriteWarning] = Field(default_factory=list)


class ContactService:
    """Append-only record of outbound contact attempts."""

    def __init__(
        self,
        events: Optional[ContactEventRepository] = None,
        cases: Optional[CaseService] = None,
    ) -> None:
        self.events: ContactEventRepository = events or inmemory.contact_event_repository
        self.cases: CaseService = cases or case_service

    def record(
        self,
        case_id: str,
        *,
        channel: ContactChannel,
        note: Optional[str] = None,
        actor: Optional[User] = None,
    ) -> ContactResult:
        self.cases.require_case(case_id)

        event = ContactEvent(
            id=uuid4(),
            case_id=case_id,
            channel=channel,
            note=note or None,
            created_by=actor.id if actor is not None else None,
            created_at=datetime.now(timezone.utc),
        )
        self.events.append(event)
        self.cases.mark_contacted(case_id, event.created_at)

        promotion = self.cases.promote_if_new(case_id, actor=actor)
        if promotion.status_changed:
            logger.info("case %s auto-promoted to contacted via %s", case_id, channel.value)

        return ContactResult(
            event=event,
            status=promotion.case.status,
            status_changed=promotion.status_changed,
            warnings=promotion.warnings,
        )

    def list_events(self, case_id: str, *, limit: Optional[int] = None) -> List[ContactEvent]:
        # Stable sort keeps insertion order for equal timestamps before reversing.
        events = sorted(self.events.list_for_case(case_id), key=lambda e: e.created_at)
        events.reverse()
        return events if limit is None else events[:limit]


contact_service = ContactService()
