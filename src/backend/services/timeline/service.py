from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from uuid import uuid4

from src.backend.domain.models.case import CaseStatus
from src.backend.domain.models.timeline_event import TimelineEvent, TimelineEventKind, default_note
from src.backend.domain.models.user import User
from src.backend.infra.db import inmemory
from src.backend.infra.db.repositories import TimelineEventRepository


class TimelineService:
    """Append-only stage/event history keyed by case.

    There is no update or delete: corrections are modelled as new events.
    Reads are newest-first for display; ``replay`` is oldest-first for
    derivation.
    """

    def __init__(self, events: Optional[TimelineEventRepository] = None) -> None:
        self.events: TimelineEventRepository = events or inmemory.timeline_event_repository

    def append(
        self,
        *,
        case_id: str,
        stage: CaseStatus,
        note: Optional[str] = None,
        payload: Optional[Dict[str, Any]] = None,
        kind: TimelineEventKind = TimelineEventKind.STATUS,
        actor: Optional[User] = None,
    ) -> TimelineEvent:
        event = TimelineEvent(
            id=uuid4(),
            case_id=case_id,
            stage=stage,
            kind=kind,
            note=note if note else default_note(stage),
            payload=dict(payload or {}),
            actor_role=actor.role.value if actor is not None else None,
            actor_id=actor.id if actor is not None else None,
            created_at=datetime.now(timezone.utc),
        )
        self.events.append(event)
        return event

    def replay(self, case_id: str) -> List[TimelineEvent]:
        # sorted() is stable, so same-timestamp events keep insertion order.
        return sorted(self.events.list_for_case(case_id), key=lambda e: e.created_at)

    def list_events(
        self,
        case_id: str,
        *,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> List[TimelineEvent]:
        newest_first = list(reversed(self.replay(case_id)))
        if limit is None:
            return newest_first[offset:]
        return newest_first[offset : offset + limit]

    def derive_status(self, case_id: str) -> Optional[CaseStatus]:
        """Reconstruct the status from the last status event, if any."""

        status: Optional[CaseStatus] = None
        for event in self.replay(case_id):
            if event.kind == TimelineEventKind.STATUS:
                status = event.stage
        return status


timeline_service = TimelineService()
