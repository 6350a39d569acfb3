from __future__ import annotations

from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel


class CaseNote(BaseModel):
    """Staff-authored free-text note. Never shown to doctors or patients."""

    id: UUID
    case_id: str
    note: str
    created_by: Optional[str] = None
    created_at: datetime
