from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from src.backend.domain.models.case import CaseStatus


class TimelineEventKind(str, Enum):
    """What kind of write produced a timeline entry.

    Only ``STATUS`` entries take part in status derivation; the others record
    staff/doctor actions against the case at its then-current stage.
    """

    STATUS = "status"
    NEXT_ACTION = "next_action"
    FOLLOW_UP = "follow_up"
    DOCTOR_ASSIGNMENT = "doctor_assignment"
    DOCTOR_REVIEW = "doctor_review"
    NOTE = "note"


class TimelineEvent(BaseModel):
    """Immutable audit entry tied to a status stage."""

    model_config = {"frozen": True}

    id: UUID
    case_id: str
    stage: CaseStatus
    kind: TimelineEventKind = TimelineEventKind.STATUS
    note: str
    payload: Dict[str, Any] = Field(default_factory=dict)
    actor_role: Optional[str] = None
    actor_id: Optional[str] = None
    created_at: datetime


def default_note(stage: CaseStatus) -> str:
    return f"Status updated to {stage.label}"
