from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional, Union
from uuid import UUID

from pydantic import BaseModel, Field, field_validator


class CaseStatus(str, Enum):
    """Canonical pipeline stages, in pipeline order.

    ``LOST`` is a terminal off-path value reachable from any stage.
    """

    NEW = "new"
    CONTACTED = "contacted"
    DEPOSIT_PAID = "deposit_paid"
    APPOINTMENT_SET = "appointment_set"
    ARRIVED = "arrived"
    COMPLETED = "completed"
    LOST = "lost"

    @property
    def label(self) -> str:
        return STATUS_LABELS[self]


STATUS_LABELS = {
    CaseStatus.NEW: "New",
    CaseStatus.CONTACTED: "Contacted",
    CaseStatus.DEPOSIT_PAID: "Deposit Paid",
    CaseStatus.APPOINTMENT_SET: "Appointment Set",
    CaseStatus.ARRIVED: "Arrived",
    CaseStatus.COMPLETED: "Completed",
    CaseStatus.LOST: "Lost",
}

# Pipeline order used for progress summaries; LOST is deliberately absent.
PIPELINE: List[CaseStatus] = [
    CaseStatus.NEW,
    CaseStatus.CONTACTED,
    CaseStatus.DEPOSIT_PAID,
    CaseStatus.APPOINTMENT_SET,
    CaseStatus.ARRIVED,
    CaseStatus.COMPLETED,
]

# Legacy spellings still found in older rows and clients.
_STATUS_ALIASES = {
    "new_lead": CaseStatus.NEW,
    "appointment": CaseStatus.APPOINTMENT_SET,
    "deposit": CaseStatus.DEPOSIT_PAID,
}


def normalize_status(value: Union[str, CaseStatus, None]) -> Optional[CaseStatus]:
    """Map a raw status string onto a canonical value.

    Returns ``None`` for blank input and for strings that are neither a
    canonical value nor a known alias.
    """

    if value is None:
        return None
    if isinstance(value, CaseStatus):
        return value
    raw = str(value).strip().lower()
    if not raw:
        return None
    if raw in _STATUS_ALIASES:
        return _STATUS_ALIASES[raw]
    try:
        return CaseStatus(raw)
    except ValueError:
        return None


class CaseSource(str, Enum):
    CONTACT = "contact"
    ONBOARDING = "onboarding"
    INTAKE = "intake"


class NextAction(str, Enum):
    SEND_WHATSAPP = "send_whatsapp"
    REQUEST_PHOTOS = "request_photos"
    DOCTOR_REVIEW = "doctor_review"
    OFFER_SENT = "offer_sent"
    BOOK_CALL = "book_call"
    READY_FOR_BOOKING = "ready_for_booking"


NEXT_ACTION_LABELS = {
    NextAction.SEND_WHATSAPP: "Send WhatsApp",
    NextAction.REQUEST_PHOTOS: "Request photos",
    NextAction.DOCTOR_REVIEW: "Doctor review",
    NextAction.OFFER_SENT: "Offer sent",
    NextAction.BOOK_CALL: "Book call",
    NextAction.READY_FOR_BOOKING: "Ready for booking",
}


def next_action_label(value: Union[NextAction, str, None]) -> str:
    """Human label for a next action; unknown values display as themselves."""

    if not value:
        return "No action"
    try:
        return NEXT_ACTION_LABELS[NextAction(value)]
    except ValueError:
        return str(value)


class DoctorReviewStatus(str, Enum):
    PENDING = "pending"
    NEEDS_INFO = "needs_info"
    APPROVED_FOR_BOOKING = "approved_for_booking"
    REJECTED = "rejected"


class CaseFile(BaseModel):
    """Metadata for a file the patient staged before the case existed."""

    name: str
    content_type: Optional[str] = None
    size: int
    ref: str
    uploaded_at: datetime


class Case(BaseModel):
    """Aggregate root tracking one prospective patient from intake to completion.

    ``id`` is the opaque reference used in URLs and portal tokens; ``uuid`` is a
    separate internal key that doubles as the privacy-safe ``ref`` handed to
    doctors.
    """

    id: str
    uuid: UUID
    created_at: datetime
    updated_at: datetime

    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    treatment: Optional[str] = None
    message: Optional[str] = None
    # Patient's preferred travel window, e.g. "1-3 months".
    preferred_timeline: Optional[str] = None
    source: CaseSource = CaseSource.CONTACT
    lang: Optional[str] = None

    # Acquisition metadata captured at intake.
    page_url: Optional[str] = None
    utm_source: Optional[str] = None
    utm_campaign: Optional[str] = None
    utm_medium: Optional[str] = None
    referrer: Optional[str] = None
    device: Optional[str] = None

    status: CaseStatus = CaseStatus.NEW
    # Known values parse to NextAction; anything else is kept verbatim.
    next_action: Optional[Union[NextAction, str]] = Field(default=None, union_mode="left_to_right")
    follow_up_at: Optional[datetime] = None
    last_contacted_at: Optional[datetime] = None

    doctor_id: Optional[str] = None
    doctor_assigned_at: Optional[datetime] = None
    doctor_review_status: Optional[DoctorReviewStatus] = None
    doctor_review_notes: Optional[str] = None
    doctor_reviewed_at: Optional[datetime] = None

    cal_booking_id: Optional[str] = None
    meeting_start: Optional[datetime] = None
    meeting_end: Optional[datetime] = None

    # Opaque output of the external AI service, stored as-is.
    ai_summary: Optional[str] = None

    portal_token: str
    files: List[CaseFile] = Field(default_factory=list)

    @field_validator("status", mode="before")
    @classmethod
    def _legacy_status(cls, value: object) -> CaseStatus:
        # Stored rows may carry aliases or retired values; those read back as NEW.
        return normalize_status(value) or CaseStatus.NEW  # type: ignore[arg-type]

    @field_validator(
        "created_at",
        "updated_at",
        "follow_up_at",
        "last_contacted_at",
        "doctor_assigned_at",
        "doctor_reviewed_at",
        "meeting_start",
        "meeting_end",
    )
    @classmethod
    def _aware_timestamps(cls, value: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(value)

    @property
    def ref(self) -> str:
        return str(self.uuid)

    @property
    def case_code(self) -> str:
        return case_code_for_ref(self.ref)


def case_code_for_ref(ref: str) -> str:
    """Display code derived from the last ten alphanumerics of ``ref``."""

    cleaned = "".join(ch for ch in ref if ch.isalnum())
    return f"CASE-{cleaned[-10:].upper()}"


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Treat naive datetimes as UTC so comparisons never mix naive and aware."""

    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value
