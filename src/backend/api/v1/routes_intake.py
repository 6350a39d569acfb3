from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile, status
from pydantic import BaseModel, ConfigDict, EmailStr, PrivateAttr, field_validator, model_validator

from src.backend.config import settings
from src.backend.domain.models.case import CaseFile, CaseSource
from src.backend.errors import CaseNotFound
from src.backend.infra.storage.files import case_file_storage, safe_filename
from src.backend.request_context import request_id_dependency
from src.backend.services.audit.service import audit_service
from src.backend.services.cases.service import NewCase, case_service

logger = logging.getLogger("intake")

# Public endpoints: the marketing form and the patient's own uploads.
router = APIRouter(prefix="/intake", tags=["intake"], dependencies=[Depends(request_id_dependency)])


class IntakeRequest(BaseModel):
    model_config = ConfigDict(extra="allow")

    source: CaseSource = CaseSource.CONTACT
    name: Optional[str] = None
    email: Optional[EmailStr] = None
    phone: Optional[str] = None
    treatment: Optional[str] = None
    message: Optional[str] = None
    preferred_timeline: Optional[str] = None
    lang: Optional[str] = None
    page_url: Optional[str] = None
    utm_source: Optional[str] = None
    utm_campaign: Optional[str] = None
    utm_medium: Optional[str] = None
    referrer: Optional[str] = None
    device: Optional[str] = None

    _honeypot_tripped: bool = PrivateAttr(default=False)

    @model_validator(mode="wrap")
    @classmethod
    def _honeypot_first(cls, data, handler):
        # A filled honeypot short-circuits every other check.
        if isinstance(data, dict):
            value = data.get(settings.intake_honeypot_field)
            if value is not None and str(value).strip():
                instance = cls.model_construct()
                instance._honeypot_tripped = True
                return instance
        return handler(data)

    @field_validator(
        "name", "email", "phone", "treatment", "message", "preferred_timeline", "lang",
        "page_url", "utm_source", "utm_campaign", "utm_medium", "referrer", "device",
        mode="before",
    )
    @classmethod
    def _blank_to_none(cls, value):
        if isinstance(value, str) and not value.strip():
            return None
        return value.strip() if isinstance(value, str) else value

    @model_validator(mode="after")
    def _has_contact_route(self) -> "IntakeRequest":
        if not (self.name or self.email or self.phone):
            raise ValueError("At least one of name, email or phone is required")
        return self

    @property
    def honeypot_tripped(self) -> bool:
        return self._honeypot_tripped


class UploadedFileResponse(BaseModel):
    name: str
    content_type: Optional[str] = None
    size: int
    uploaded_at: datetime


class IntakeResponse(BaseModel):
    ok: bool
    case_id: Optional[str] = None
    portal_token: Optional[str] = None
    error: Optional[str] = None


@router.post("", response_model=IntakeResponse)
async def submit_intake(payload: IntakeRequest) -> IntakeResponse:
    """Create a case from a public form submission.

    A populated honeypot gets the same ``ok`` answer as a real submission
    but creates nothing.
    """

    if payload.honeypot_tripped:
        logger.info("intake honeypot populated; no case created")
        audit_service.log_event(action="intake_rejected", resource_type="case", extra={"reason": "honeypot"})
        return IntakeResponse(ok=True)

    data = NewCase(
        **payload.model_dump(
            include=set(NewCase.model_fields),
            exclude_none=True,
        )
    )
    result = case_service.create_case(data)

    audit_service.log_event(
        action="create",
        resource_type="case",
        resource_id=result.case.id,
        extra={
            "source": result.case.source.value,
            "has_email": bool(result.case.email),
            "has_phone": bool(result.case.phone),
            "timeline_warnings": len(result.warnings),
        },
    )
    return IntakeResponse(ok=True, case_id=result.case.id, portal_token=result.case.portal_token)


@router.post("/{case_id}/files", response_model=UploadedFileResponse, status_code=status.HTTP_201_CREATED)
async def upload_case_file(
    case_id: str,
    portal_token: str = Form(...),
    file: UploadFile = File(...),
) -> UploadedFileResponse:
    """Attach a file the patient staged before the case existed."""

    case = case_service.verify_portal_token(case_id, portal_token)
    if case is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Case not found")

    content = await file.read()
    if not content:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Empty file")
    if len(content) > settings.max_upload_bytes:
        raise HTTPException(status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE, detail="File too large")

    name = safe_filename(file.filename or "upload")
    ref = case_file_storage.save_file(case.id, name, content)
    staged = CaseFile(
        name=name,
        content_type=file.content_type,
        size=len(content),
        ref=ref,
        uploaded_at=datetime.now(timezone.utc),
    )
    try:
        case_service.attach_file(case.id, staged)
    except CaseNotFound:
        case_file_storage.delete_file(ref)
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Case not found")

    audit_service.log_event(
        action="upload_file",
        resource_type="case",
        resource_id=case.id,
        extra={"size": staged.size, "content_type": staged.content_type},
    )
    return UploadedFileResponse(
        name=staged.name,
        content_type=staged.content_type,
        size=staged.size,
        uploaded_at=staged.uploaded_at,
    )
