"""Pure helpers deriving staff-facing signals from a case.

Nothing here writes to a case: suggestions are recommendations that staff
may act on by setting ``next_action`` themselves.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Optional, Sequence

from pydantic import BaseModel

from src.backend.config import settings
from src.backend.domain.models.case import Case, DoctorReviewStatus
from src.backend.domain.models.case_note import CaseNote
from src.backend.domain.models.contact_event import ContactEvent


class SuggestedAction(BaseModel):
    action: str
    label: str
    reasoning: str


class CaseSignals(BaseModel):
    days_since_activity: int
    is_stale: bool
    follow_up_status: Optional[str] = None
    priority: int
    suggested_next_action: SuggestedAction


def days_since_activity(case: Case, now: datetime) -> int:
    anchor = case.last_contacted_at or case.created_at
    return int(abs((now - anchor).total_seconds()) // 86400)


def follow_up_status(case: Case, now: datetime) -> Optional[str]:
    """Return "overdue", "due_soon" (within the configured window) or None."""

    if case.follow_up_at is None:
        return None
    hours = (case.follow_up_at - now).total_seconds() / 3600
    if hours < 0:
        return "overdue"
    if hours <= settings.follow_up_due_soon_hours:
        return "due_soon"
    return None


def compute_priority(
    case: Case,
    *,
    contacts: Sequence[ContactEvent],
    notes: Sequence[CaseNote],
    now: datetime,
) -> int:
    score = 0
    if case.cal_booking_id:
        score += 40
    if case.last_contacted_at is None and not contacts:
        score += 25
    if case.last_contacted_at is not None:
        hours = (now - case.last_contacted_at).total_seconds() / 3600
        if 24 <= hours <= 48:
            score += 20
    if not notes:
        score += 10
    if not case.phone:
        score -= 10
    return max(0, min(100, score))


def suggest_next_action(case: Case, *, has_notes: bool) -> SuggestedAction:
    # Review outcomes take precedence over channel heuristics.
    if case.doctor_review_status == DoctorReviewStatus.APPROVED_FOR_BOOKING:
        return SuggestedAction(
            action="ready_for_booking",
            label="Ready for booking",
            reasoning="Recommended because the doctor approved this case for booking.",
        )
    if case.doctor_review_status == DoctorReviewStatus.NEEDS_INFO:
        return SuggestedAction(
            action="request_photos",
            label="Request photos",
            reasoning="Recommended because the doctor asked for more information.",
        )

    if case.phone:
        if case.last_contacted_at is None:
            return SuggestedAction(
                action="call",
                label="Call now",
                reasoning="Recommended because the lead is new and has no contact attempts yet.",
            )
        return SuggestedAction(
            action="whatsapp",
            label="WhatsApp first",
            reasoning="Recommended because WhatsApp is preferred for international leads.",
        )
    if case.email:
        return SuggestedAction(
            action="email",
            label="Email",
            reasoning="Recommended because phone number is not available.",
        )
    if not has_notes:
        return SuggestedAction(
            action="note",
            label="Add note",
            reasoning="Recommended to document initial observations about this lead.",
        )
    return SuggestedAction(
        action="call",
        label="Follow up",
        reasoning="Recommended based on lead status and priority.",
    )


def compute_signals(
    case: Case,
    *,
    contacts: Sequence[ContactEvent],
    notes: Sequence[CaseNote],
    now: Optional[datetime] = None,
) -> CaseSignals:
    now = now or datetime.now(timezone.utc)
    idle_days = days_since_activity(case, now)
    return CaseSignals(
        days_since_activity=idle_days,
        is_stale=idle_days >= settings.stale_after_days,
        follow_up_status=follow_up_status(case, now),
        priority=compute_priority(case, contacts=contacts, notes=notes, now=now),
        suggested_next_action=suggest_next_action(case, has_notes=bool(notes)),
    )


def is_due_on(case: Case, day: datetime) -> bool:
    if case.follow_up_at is None:
        return False
    start = day.replace(hour=0, minute=0, second=0, microsecond=0)
    return start <= case.follow_up_at < start + timedelta(days=1)
