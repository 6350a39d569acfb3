from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional

import httpx
from pydantic import BaseModel

from src.backend.config import settings
from src.backend.errors import TransportFailure, TransportTimeout

logger = logging.getLogger("intake")

INTAKE_PATH = "/api/v1/intake"

TIMEOUT_MESSAGE = (
    "Our server is taking too long to respond. Your details are saved on this device; "
    "you can also reach us directly on WhatsApp."
)
FAILURE_MESSAGE = "We could not send your request right now. Please try again in a moment."


class StagedFile(BaseModel):
    """A file the patient picked before the case existed. Held client-side only."""

    name: str
    content: bytes
    content_type: Optional[str] = None


class TransportResult(BaseModel):
    success: bool
    error: Optional[str] = None
    case_id: Optional[str] = None
    portal_token: Optional[str] = None
    timed_out: bool = False
    attempts: int = 0


class SubmissionTransport:
    """Deliver a validated lead to the intake endpoint with bounded resilience.

    Makes at most ``retries + 1`` attempts, each cancelled after
    ``timeout_seconds``. Non-timeout failures before the last attempt back off
    linearly (``backoff_seconds * attempt``); timeouts retry straight away.
    Every outcome is terminal and reported as a TransportResult, never raised.
    """

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        *,
        base_url: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
        retries: Optional[int] = None,
        backoff_seconds: Optional[float] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._client = client
        self.base_url = (base_url or settings.intake_base_url).rstrip("/")
        self.timeout_seconds = settings.intake_timeout_seconds if timeout_seconds is None else timeout_seconds
        self.retries = max(0, settings.intake_retries if retries is None else retries)
        self.backoff_seconds = settings.intake_backoff_seconds if backoff_seconds is None else backoff_seconds
        self._sleep = sleep

    async def submit(self, payload: Mapping[str, Any]) -> TransportResult:
        if self._client is not None:
            return await self._submit_with(self._client, payload)
        async with httpx.AsyncClient(base_url=self.base_url, timeout=self.timeout_seconds) as client:
            return await self._submit_with(client, payload)

    async def _submit_with(self, client: httpx.AsyncClient, payload: Mapping[str, Any]) -> TransportResult:
        max_attempts = self.retries + 1
        last_error = FAILURE_MESSAGE

        for attempt in range(1, max_attempts + 1):
            is_last = attempt == max_attempts
            try:
                body = await asyncio.wait_for(self._post(client, payload), timeout=self.timeout_seconds)
            except (asyncio.TimeoutError, TransportTimeout):
                logger.warning("intake attempt %d/%d timed out", attempt, max_attempts)
                if is_last:
                    return TransportResult(success=False, error=TIMEOUT_MESSAGE, timed_out=True, attempts=attempt)
                continue
            except TransportFailure as exc:
                logger.warning("intake attempt %d/%d failed: %s", attempt, max_attempts, exc)
                last_error = str(exc) or FAILURE_MESSAGE
                if exc.status_code is not None and 400 <= exc.status_code < 500 and exc.status_code not in (408, 429):
                    # The server rejected the payload itself; resending it cannot help.
                    return TransportResult(success=False, error=last_error, attempts=attempt)
                if not is_last:
                    await self._sleep(self.backoff_seconds * attempt)
                continue

            return TransportResult(
                success=True,
                case_id=body.get("case_id"),
                portal_token=body.get("portal_token"),
                attempts=attempt,
            )

        return TransportResult(success=False, error=last_error, attempts=max_attempts)

    async def _post(self, client: httpx.AsyncClient, payload: Mapping[str, Any]) -> Dict[str, Any]:
        try:
            response = await client.post(f"{self.base_url}{INTAKE_PATH}", json=dict(payload))
        except httpx.TimeoutException as exc:
            raise TransportTimeout(str(exc)) from exc
        except httpx.HTTPError as exc:
            raise TransportFailure(f"{FAILURE_MESSAGE} ({type(exc).__name__})") from exc

        if response.status_code >= 400:
            raise TransportFailure(_error_detail(response), status_code=response.status_code)

        try:
            body = response.json()
        except ValueError as exc:
            raise TransportFailure(FAILURE_MESSAGE, status_code=response.status_code) from exc
        if not isinstance(body, dict) or not body.get("ok"):
            error = body.get("error") if isinstance(body, dict) else None
            raise TransportFailure(error or FAILURE_MESSAGE, status_code=response.status_code)
        return body

    async def upload_files(self, case_id: str, portal_token: str, files: List[StagedFile]) -> int:
        """Upload staged files to an existing case; returns how many landed.

        Each file is attempted once. Failures are logged and skipped so a bad
        file never turns a captured lead into a failed submission.
        """

        if not files:
            return 0
        if self._client is not None:
            return await self._upload_with(self._client, case_id, portal_token, files)
        async with httpx.AsyncClient(base_url=self.base_url, timeout=self.timeout_seconds) as client:
            return await self._upload_with(client, case_id, portal_token, files)

    async def _upload_with(
        self,
        client: httpx.AsyncClient,
        case_id: str,
        portal_token: str,
        files: List[StagedFile],
    ) -> int:
        uploaded = 0
        url = f"{self.base_url}{INTAKE_PATH}/{case_id}/files"
        for staged in files:
            try:
                response = await asyncio.wait_for(
                    client.post(
                        url,
                        data={"portal_token": portal_token},
                        files={"file": (staged.name, staged.content, staged.content_type or "application/octet-stream")},
                    ),
                    timeout=self.timeout_seconds,
                )
            except (asyncio.TimeoutError, httpx.HTTPError) as exc:
                logger.warning("staged file upload failed case_id=%s: %s", case_id, type(exc).__name__)
                continue
            if response.status_code >= 400:
                logger.warning("staged file upload rejected case_id=%s status=%s", case_id, response.status_code)
                continue
            uploaded += 1
        return uploaded


def _error_detail(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return FAILURE_MESSAGE
    if isinstance(body, dict):
        detail = body.get("error") or body.get("detail")
        if isinstance(detail, str) and detail:
            return detail
    return FAILURE_MESSAGE
