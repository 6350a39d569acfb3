from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import UUID

from pydantic import BaseModel


class ContactChannel(str, Enum):
    PHONE = "phone"
    WHATSAPP = "whatsapp"
    EMAIL = "email"
    SMS = "sms"
    OTHER = "other"


class ContactEvent(BaseModel):
    """One outbound contact attempt. Append-only."""

    model_config = {"frozen": True}

    id: UUID
    case_id: str
    channel: ContactChannel
    note: Optional[str] = None
    created_by: Optional[str] = None
    created_at: datetime
