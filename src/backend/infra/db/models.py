from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import UUID

from sqlalchemy import JSON, DateTime, ForeignKey, Integer, String, Text, Uuid
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from src.backend.domain.models.case import (
    Case,
    CaseFile,
    CaseSource,
    CaseStatus,
    DoctorReviewStatus,
    NextAction,
    ensure_utc,
)
from src.backend.domain.models.case_note import CaseNote
from src.backend.domain.models.contact_event import ContactChannel, ContactEvent
from src.backend.domain.models.timeline_event import TimelineEvent, TimelineEventKind


class Base(DeclarativeBase):
    pass


class CaseORM(Base):
    __tablename__ = "cases"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    uuid: Mapped[UUID] = mapped_column(Uuid, unique=True, nullable=False, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    name: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    email: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    phone: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    treatment: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    preferred_timeline: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    source: Mapped[str] = mapped_column(String(32), nullable=False)
    lang: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)

    page_url: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    utm_source: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    utm_campaign: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    utm_medium: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    referrer: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    device: Mapped[Optional[str]] = mapped_column(String, nullable=True)

    status: Mapped[str] = mapped_column(String(32), nullable=False, index=True)
    # Free string: unknown next actions are stored verbatim.
    next_action: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    follow_up_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    last_contacted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    doctor_id: Mapped[Optional[str]] = mapped_column(String, nullable=True, index=True)
    doctor_assigned_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    doctor_review_status: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    doctor_review_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    doctor_reviewed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    cal_booking_id: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    meeting_start: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    meeting_end: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    ai_summary: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    portal_token: Mapped[str] = mapped_column(String(128), nullable=False)
    # For now staged files are stored as a JSON list of metadata dicts.
    files: Mapped[List[Dict[str, Any]]] = mapped_column(JSON, nullable=False, default=list)

    def apply(self, case: Case) -> None:
        """Copy every column from the domain model onto this row."""

        self.uuid = case.uuid
        self.created_at = case.created_at
        self.updated_at = case.updated_at
        self.name = case.name
        self.email = case.email
        self.phone = case.phone
        self.treatment = case.treatment
        self.message = case.message
        self.preferred_timeline = case.preferred_timeline
        self.source = case.source.value
        self.lang = case.lang
        self.page_url = case.page_url
        self.utm_source = case.utm_source
        self.utm_campaign = case.utm_campaign
        self.utm_medium = case.utm_medium
        self.referrer = case.referrer
        self.device = case.device
        self.status = case.status.value
        self.next_action = (
            case.next_action.value if isinstance(case.next_action, NextAction) else case.next_action
        )
        self.follow_up_at = case.follow_up_at
        self.last_contacted_at = case.last_contacted_at
        self.doctor_id = case.doctor_id
        self.doctor_assigned_at = case.doctor_assigned_at
        self.doctor_review_status = case.doctor_review_status.value if case.doctor_review_status else None
        self.doctor_review_notes = case.doctor_review_notes
        self.doctor_reviewed_at = case.doctor_reviewed_at
        self.cal_booking_id = case.cal_booking_id
        self.meeting_start = case.meeting_start
        self.meeting_end = case.meeting_end
        self.ai_summary = case.ai_summary
        self.portal_token = case.portal_token
        self.files = [f.model_dump(mode="json") for f in case.files]

    @classmethod
    def from_domain(cls, case: Case) -> "CaseORM":
        orm = cls(id=case.id)
        orm.apply(case)
        return orm

    def to_domain(self) -> Case:
        return Case(
            id=self.id,
            uuid=self.uuid,
            created_at=self.created_at,
            updated_at=self.updated_at,
            name=self.name,
            email=self.email,
            phone=self.phone,
            treatment=self.treatment,
            message=self.message,
            preferred_timeline=self.preferred_timeline,
            source=CaseSource(self.source),
            lang=self.lang,
            page_url=self.page_url,
            utm_source=self.utm_source,
            utm_campaign=self.utm_campaign,
            utm_medium=self.utm_medium,
            referrer=self.referrer,
            device=self.device,
            status=self.status,
            next_action=self.next_action,
            follow_up_at=self.follow_up_at,
            last_contacted_at=self.last_contacted_at,
            doctor_id=self.doctor_id,
            doctor_assigned_at=self.doctor_assigned_at,
            doctor_review_status=DoctorReviewStatus(self.doctor_review_status) if self.doctor_review_status else None,
            doctor_review_notes=self.doctor_review_notes,
            doctor_reviewed_at=self.doctor_reviewed_at,
            cal_booking_id=self.cal_booking_id,
            meeting_start=self.meeting_start,
            meeting_end=self.meeting_end,
            ai_summary=self.ai_summary,
            portal_token=self.portal_token,
            files=[CaseFile.model_validate(f) for f in (self.files or [])],
        )


class TimelineEventORM(Base):
    __tablename__ = "case_timeline_events"

    # Insertion sequence; orders events that share a timestamp.
    seq: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    id: Mapped[UUID] = mapped_column(Uuid, unique=True, nullable=False)
    case_id: Mapped[str] = mapped_column(ForeignKey("cases.id"), nullable=False, index=True)
    stage: Mapped[str] = mapped_column(String(32), nullable=False)
    kind: Mapped[str] = mapped_column(String(32), nullable=False)
    note: Mapped[str] = mapped_column(Text, nullable=False)
    payload: Mapped[Dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    actor_role: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    actor_id: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    @classmethod
    def from_domain(cls, event: TimelineEvent) -> "TimelineEventORM":
        return cls(
            id=event.id,
            case_id=event.case_id,
            stage=event.stage.value,
            kind=event.kind.value,
            note=event.note,
            payload=event.payload,
            actor_role=event.actor_role,
            actor_id=event.actor_id,
            created_at=event.created_at,
        )

    def to_domain(self) -> TimelineEvent:
        return TimelineEvent(
            id=self.id,
            case_id=self.case_id,
            stage=CaseStatus(self.stage),
            kind=TimelineEventKind(self.kind),
            note=self.note,
            payload=dict(self.payload or {}),
            actor_role=self.actor_role,
            actor_id=self.actor_id,
            created_at=ensure_utc(self.created_at),
        )


class ContactEventORM(Base):
    __tablename__ = "case_contact_events"

    seq: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    id: Mapped[UUID] = mapped_column(Uuid, unique=True, nullable=False)
    case_id: Mapped[str] = mapped_column(ForeignKey("cases.id"), nullable=False, index=True)
    channel: Mapped[str] = mapped_column(String(32), nullable=False)
    note: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_by: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    @classmethod
    def from_domain(cls, event: ContactEvent) -> "ContactEventORM":
        return cls(
            id=event.id,
            case_id=event.case_id,
            channel=event.channel.value,
            note=event.note,
            created_by=event.created_by,
            created_at=event.created_at,
        )

    def to_domain(self) -> ContactEvent:
        return ContactEvent(
            id=self.id,
            case_id=self.case_id,
            channel=ContactChannel(self.channel),
            note=self.note,
            created_by=self.created_by,
            created_at=ensure_utc(self.created_at),
        )


class CaseNoteORM(Base):
    __tablename__ = "case_notes"

    seq: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    id: Mapped[UUID] = mapped_column(Uuid, unique=True, nullable=False)
    case_id: Mapped[str] = mapped_column(ForeignKey("cases.id"), nullable=False, index=True)
    note: Mapped[str] = mapped_column(Text, nullable=False)
    created_by: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    @classmethod
    def from_domain(cls, note: CaseNote) -> "CaseNoteORM":
        return cls(
            id=note.id,
            case_id=note.case_id,
            note=note.note,
            created_by=note.created_by,
            created_at=note.created_at,
        )

    def to_domain(self) -> CaseNote:
        return CaseNote(
            id=self.id,
            case_id=self.case_id,
            note=self.note,
            created_by=self.created_by,
            created_at=ensure_utc(self.created_at),
        )
