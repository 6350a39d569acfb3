from __future__ import annotations

import json
import logging
import time
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Callable, List, Mapping, Optional

from pydantic import BaseModel

from src.backend.config import settings
from src.backend.errors import GuardRejection

logger = logging.getLogger("intake")

HONEYPOT_MESSAGE = "Thank you for your interest. We will get back to you soon."
TOO_FAST_MESSAGE = "Please take a moment to review your information before submitting."
RATE_LIMIT_MESSAGE = (
    "You have submitted multiple requests recently. Please wait a few minutes before submitting again."
)


class GuardResult(BaseModel):
    allowed: bool
    reason: Optional[str] = None
    message: Optional[str] = None
    retry_after_seconds: Optional[float] = None

    def raise_for_rejection(self) -> None:
        if not self.allowed:
            raise GuardRejection(self.reason or "rejected", self.message or "", self.retry_after_seconds)


class RateLimitStore(ABC):
    """Client-persisted list of recent submission timestamps (epoch seconds)."""

    @abstractmethod
    def load(self) -> List[float]:
        raise NotImplementedError

    @abstractmethod
    def save(self, timestamps: List[float]) -> None:
        raise NotImplementedError


class InMemoryRateLimitStore(RateLimitStore):
    def __init__(self) -> None:
        self._timestamps: List[float] = []

    def load(self) -> List[float]:
        return list(self._timestamps)

    def save(self, timestamps: List[float]) -> None:
        self._timestamps = list(timestamps)


class JsonFileRateLimitStore(RateLimitStore):
    def __init__(self, path: Path) -> None:
        self.path = path

    def load(self) -> List[float]:
        if not self.path.exists():
            return []
        data = json.loads(self.path.read_text(encoding="utf-8") or "[]")
        if not isinstance(data, list):
            raise ValueError("rate limit store is not a list")
        return [float(ts) for ts in data]

    def save(self, timestamps: List[float]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(timestamps), encoding="utf-8")


def default_rate_limit_store() -> RateLimitStore:
    if settings.intake_rate_limit_path is not None:
        return JsonFileRateLimitStore(settings.intake_rate_limit_path)
    return InMemoryRateLimitStore()


class SubmissionGuard:
    """Anti-spam gate evaluated before a lead leaves the client.

    Checks run in order (honeypot, minimum fill time, rate limit) and the
    first failure short-circuits. The rate-limit counter only grows on an
    attempt that passes every check. Any failure reading or writing the
    counter store lets the submission through.
    """

    def __init__(
        self,
        store: Optional[RateLimitStore] = None,
        *,
        honeypot_field: Optional[str] = None,
        min_fill_ms: Optional[int] = None,
        window_seconds: Optional[float] = None,
        max_submits: Optional[int] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.store = store or default_rate_limit_store()
        self.honeypot_field = honeypot_field or settings.intake_honeypot_field
        self.min_fill_ms = settings.intake_min_fill_ms if min_fill_ms is None else min_fill_ms
        self.window_seconds = (
            settings.intake_rate_limit_window_seconds if window_seconds is None else window_seconds
        )
        self.max_submits = settings.intake_rate_limit_max if max_submits is None else max_submits
        self._clock = clock

    def is_honeypot_filled(self, form: Mapping[str, Any]) -> bool:
        value = form.get(self.honeypot_field)
        return value is not None and str(value).strip() != ""

    def check(self, form: Mapping[str, Any], form_open_time: float) -> GuardResult:
        """Run all checks. ``form_open_time`` is epoch seconds from the same clock."""

        if self.is_honeypot_filled(form):
            logger.info("intake rejected reason=honeypot")
            return GuardResult(allowed=False, reason="honeypot", message=HONEYPOT_MESSAGE)

        now = self._clock()
        if (now - form_open_time) * 1000 < self.min_fill_ms:
            logger.info("intake rejected reason=too_fast")
            return GuardResult(allowed=False, reason="too_fast", message=TOO_FAST_MESSAGE)

        return self._check_rate_limit(now)

    def _check_rate_limit(self, now: float) -> GuardResult:
        try:
            timestamps = self.store.load()
        except (OSError, TypeError, ValueError) as exc:
            logger.warning("rate limit store unreadable, allowing submission: %s", exc)
            return GuardResult(allowed=True)

        window_start = now - self.window_seconds
        recent = [ts for ts in timestamps if ts > window_start]
        if len(recent) >= self.max_submits:
            retry_after = max(0.0, min(recent) + self.window_seconds - now)
            logger.info("intake rejected reason=rate_limit retry_after=%.0fs", retry_after)
            return GuardResult(
                allowed=False,
                reason="rate_limit",
                message=RATE_LIMIT_MESSAGE,
                retry_after_seconds=retry_after,
            )

        recent.append(now)
        try:
            self.store.save(recent)
        except (OSError, ValueError) as exc:
            logger.warning("rate limit store not writable, allowing submission: %s", exc)
        return GuardResult(allowed=True)
