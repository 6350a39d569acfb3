from __future__ import annotations

import logging
from typing import Optional

import httpx

from src.backend.config import settings
from src.backend.intake.local_store import LocalLead

logger = logging.getLogger("webhook")


class LeadWebhook:
    """Mirror captured leads to an optional external webhook.

    Delivery is best effort: any failure is logged (without PII) and
    reported as ``False``; nothing is raised to the caller.
    """

    def __init__(
        self,
        url: Optional[str] = None,
        *,
        secret: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.url = (url if url is not None else settings.lead_webhook_url or "").strip()
        self.secret = (secret if secret is not None else settings.lead_webhook_secret or "").strip()
        self.timeout_seconds = (
            settings.lead_webhook_timeout_seconds if timeout_seconds is None else timeout_seconds
        )
        self._transport = transport

    @property
    def enabled(self) -> bool:
        return bool(self.url)

    async def send(self, lead: LocalLead) -> bool:
        if not self.enabled:
            return False

        headers = {"Content-Type": "application/json"}
        if self.secret:
            headers["x-lead-secret"] = self.secret

        try:
            async with httpx.AsyncClient(timeout=self.timeout_seconds, transport=self._transport) as client:
                response = await client.post(self.url, json=lead.model_dump(mode="json"), headers=headers)
                response.raise_for_status()
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            logger.warning("lead webhook failed source=%s (%s)", lead.source, type(exc).__name__)
            return False

        logger.info("lead webhook delivered source=%s", lead.source)
        return True
