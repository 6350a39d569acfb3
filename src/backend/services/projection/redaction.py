from __future__ import annotations

import re
from typing import Optional

_EMAIL_RE = re.compile(r"[A-Z0-9._%+-]+@[A-Z0-9.-]+\.[A-Z]{2,}", re.IGNORECASE)
_PHONE_RE = re.compile(r"\+?\d[\d\s().-]{6,}\d")
_URL_RE = re.compile(r"https?://\S+", re.IGNORECASE)


def redact_pii(text: Optional[str]) -> Optional[str]:
    """Mask emails, phone-like digit runs and URLs in free text."""

    if not text:
        return text
    text = _EMAIL_RE.sub("[redacted email]", text)
    text = _PHONE_RE.sub("[redacted phone]", text)
    return _URL_RE.sub("[redacted url]", text)
