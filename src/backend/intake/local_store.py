from __future__ import annotations

import csv
import io
import json
import logging
import secrets
import string
import time
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import List, Optional

from pydantic import BaseModel, Field, ValidationError

from src.backend.config import settings

logger = logging.getLogger("intake")

_ID_ALPHABET = string.ascii_lowercase + string.digits


class SavedTo(str, Enum):
    LOCAL = "local"
    REMOTE = "remote"


class LeadMeta(BaseModel):
    saved_to: SavedTo = SavedTo.LOCAL
    case_id: Optional[str] = None


class LocalLead(BaseModel):
    """A lead as captured on the submitting device."""

    id: str
    created_at: datetime
    source: str = "contact"
    name: Optional[str] = None
    email: Optional[str] = None
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
    meta: LeadMeta = Field(default_factory=LeadMeta)


def new_local_lead_id() -> str:
    suffix = "".join(secrets.choice(_ID_ALPHABET) for _ in range(7))
    return f"{int(time.time() * 1000)}-{suffix}"


CSV_COLUMNS = [
    ("ID", "id"),
    ("Created At", "created_at"),
    ("Source", "source"),
    ("Name", "name"),
    ("Email", "email"),
    ("Phone", "phone"),
    ("Treatment", "treatment"),
    ("Message", "message"),
    ("Timeline", "preferred_timeline"),
    ("Language", "lang"),
    ("Page URL", "page_url"),
    ("UTM Source", "utm_source"),
    ("UTM Campaign", "utm_campaign"),
    ("UTM Medium", "utm_medium"),
    ("Referrer", "referrer"),
    ("Device", "device"),
    ("Saved To", "saved_to"),
]


class LocalLeadStore(ABC):
    """Append-only, newest-first list of submitted leads kept on the device.

    This is the source of truth for "did we capture this lead". Entries start
    as ``saved_to=local`` and are flipped to ``remote`` once the intake
    endpoint confirms the case; nothing is removed when delivery fails.
    """

    def __init__(self, max_leads: Optional[int] = None) -> None:
        self.max_leads = settings.intake_local_max_leads if max_leads is None else max_leads

    @abstractmethod
    def _read(self) -> List[LocalLead]:
        raise NotImplementedError

    @abstractmethod
    def _write(self, leads: List[LocalLead]) -> None:
        raise NotImplementedError

    def append(self, lead: LocalLead) -> LocalLead:
        leads = [lead, *self._read()][: self.max_leads]
        self._write(leads)
        return lead

    def mark_remote(self, lead_id: str, case_id: Optional[str] = None) -> Optional[LocalLead]:
        leads = self._read()
        updated: Optional[LocalLead] = None
        for index, lead in enumerate(leads):
            if lead.id == lead_id:
                updated = lead.model_copy(update={"meta": LeadMeta(saved_to=SavedTo.REMOTE, case_id=case_id)})
                leads[index] = updated
                break
        if updated is not None:
            self._write(leads)
        return updated

    def list_leads(self) -> List[LocalLead]:
        return sorted(self._read(), key=lambda lead: lead.created_at, reverse=True)

    def clear(self) -> None:
        self._write([])

    def export_csv(self) -> str:
        leads = self.list_leads()
        if not leads:
            return "No leads found."
        buffer = io.StringIO()
        writer = csv.writer(buffer, lineterminator="\n")
        writer.writerow([header for header, _ in CSV_COLUMNS])
        for lead in leads:
            row = []
            for _, attr in CSV_COLUMNS:
                if attr == "saved_to":
                    row.append(lead.meta.saved_to.value)
                elif attr == "created_at":
                    row.append(lead.created_at.isoformat())
                else:
                    row.append(getattr(lead, attr) or "")
            writer.writerow(row)
        return buffer.getvalue().rstrip("\n")


class InMemoryLocalLeadStore(LocalLeadStore):
    def __init__(self, max_leads: Optional[int] = None) -> None:
        super().__init__(max_leads)
        self._leads: List[LocalLead] = []

    def _read(self) -> List[LocalLead]:
        return [lead.model_copy(deep=True) for lead in self._leads]

    def _write(self, leads: List[LocalLead]) -> None:
        self._leads = [lead.model_copy(deep=True) for lead in leads]


class JsonFileLocalLeadStore(LocalLeadStore):
    def __init__(self, path: Path, max_leads: Optional[int] = None) -> None:
        super().__init__(max_leads)
        self.path = path

    def _read(self) -> List[LocalLead]:
        if not self.path.exists():
            return []
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8") or "[]")
        except ValueError:
            logger.warning("local lead store at %s is corrupt; starting empty", self.path)
            return []
        if not isinstance(raw, list):
            logger.warning("local lead store at %s is not a list; starting empty", self.path)
            return []

        leads: List[LocalLead] = []
        for index, item in enumerate(raw):
            try:
                leads.append(LocalLead.model_validate(item))
            except ValidationError:
                logger.warning("skipping unreadable entry %d in local lead store %s", index, self.path)
        return leads

    def _write(self, leads: List[LocalLead]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp.write_text(json.dumps([lead.model_dump(mode="json") for lead in leads]), encoding="utf-8")
        tmp.replace(self.path)


def default_local_store() -> LocalLeadStore:
    if settings.intake_local_store_path is not None:
        return JsonFileLocalLeadStore(settings.intake_local_store_path)
    return InMemoryLocalLeadStore()


def utcnow() -> datetime:
    return datetime.now(timezone.utc)
