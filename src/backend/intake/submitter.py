from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Mapping, Optional, Set

from pydantic import BaseModel, ConfigDict

from src.backend.intake.guard import SubmissionGuard
from src.backend.intake.local_store import (
    LocalLead,
    LocalLeadStore,
    SavedTo,
    default_local_store,
    new_local_lead_id,
    utcnow,
)
from src.backend.intake.transport import StagedFile, SubmissionTransport
from src.backend.intake.webhook import LeadWebhook

logger = logging.getLogger("intake")


class LeadForm(BaseModel):
    """Raw public-form payload. Unknown keys (the honeypot among them) are kept."""

    model_config = ConfigDict(extra="allow")

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


class SubmissionOutcome(BaseModel):
    allowed: bool
    delivered: bool = False
    reason: Optional[str] = None
    message: Optional[str] = None
    retry_after_seconds: Optional[float] = None
    timed_out: bool = False
    lead_id: Optional[str] = None
    saved_to: Optional[SavedTo] = None
    case_id: Optional[str] = None
    portal_token: Optional[str] = None
    files_uploaded: int = 0


_LEAD_FIELDS = (
    "source",
    "name",
    "email",
    "phone",
    "treatment",
    "message",
    "preferred_timeline",
    "lang",
    "page_url",
    "utm_source",
    "utm_campaign",
    "utm_medium",
    "referrer",
    "device",
)


class LeadSubmitter:
    """Client-side pipeline: guard, local durable write, transport, side effects.

    A lead that passes the guard is always written locally first; a failed
    delivery leaves that record in place tagged ``local``. Staged files are
    only uploaded once a case id exists. The webhook runs as a detached task
    and never affects the outcome.
    """

    def __init__(
        self,
        *,
        guard: Optional[SubmissionGuard] = None,
        transport: Optional[SubmissionTransport] = None,
        store: Optional[LocalLeadStore] = None,
        webhook: Optional[LeadWebhook] = None,
    ) -> None:
        self.guard = guard or SubmissionGuard()
        self.transport = transport or SubmissionTransport()
        self.store = store or default_local_store()
        self.webhook = webhook or LeadWebhook()
        self._background: Set[asyncio.Task[Any]] = set()

    async def submit(
        self,
        form: Mapping[str, Any] | LeadForm,
        *,
        form_open_time: float,
        files: Optional[List[StagedFile]] = None,
    ) -> SubmissionOutcome:
        data = form.model_dump() if isinstance(form, LeadForm) else dict(form)

        verdict = self.guard.check(data, form_open_time)
        if not verdict.allowed:
            return SubmissionOutcome(
                allowed=False,
                reason=verdict.reason,
                message=verdict.message,
                retry_after_seconds=verdict.retry_after_seconds,
            )

        lead = LocalLead(
            id=new_local_lead_id(),
            created_at=utcnow(),
            **{name: data.get(name) for name in _LEAD_FIELDS if data.get(name) is not None},
        )
        saved_locally = self._save_local(lead)

        payload: Dict[str, Any] = {name: getattr(lead, name) for name in _LEAD_FIELDS}
        payload[self.guard.honeypot_field] = ""
        result = await self.transport.submit(payload)

        outcome = SubmissionOutcome(
            allowed=True,
            delivered=result.success,
            message=result.error,
            timed_out=result.timed_out,
            lead_id=lead.id,
            saved_to=SavedTo.LOCAL if saved_locally else None,
            case_id=result.case_id,
            portal_token=result.portal_token,
        )

        if result.success:
            if saved_locally:
                self._mark_remote(lead.id, result.case_id)
                outcome.saved_to = SavedTo.REMOTE
            if files and result.case_id and result.portal_token:
                outcome.files_uploaded = await self.transport.upload_files(
                    result.case_id, result.portal_token, files
                )
        else:
            logger.warning("lead %s kept locally; delivery failed (timed_out=%s)", lead.id, result.timed_out)

        self._dispatch_webhook(lead)
        return outcome

    async def drain(self) -> None:
        """Wait for detached side effects. Used at shutdown and in tests."""

        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    def _save_local(self, lead: LocalLead) -> bool:
        try:
            self.store.append(lead)
        except (OSError, ValueError) as exc:
            logger.warning("local lead store write failed: %s", exc)
            return False
        return True

    def _mark_remote(self, lead_id: str, case_id: Optional[str]) -> None:
        try:
            self.store.mark_remote(lead_id, case_id)
        except (OSError, ValueError) as exc:
            logger.warning("could not mark lead %s as remote: %s", lead_id, exc)

    def _dispatch_webhook(self, lead: LocalLead) -> None:
        if not self.webhook.enabled:
            return
        task = asyncio.create_task(self.webhook.send(lead))
        self._background.add(task)
        task.add_done_callback(self._background.discard)
