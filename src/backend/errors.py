from __future__ import annotations

from typing import Optional

from pydantic import BaseModel


class GuardRejection(Exception):
    """A submission was stopped by an anti-spam check before any network call."""

    def __init__(self, reason: str, message: str, retry_after_seconds: Optional[float] = None) -> None:
        super().__init__(message)
        self.reason = reason
        self.message = message
        self.retry_after_seconds = retry_after_seconds


class TransportError(Exception):
    """Base class for failures delivering a lead to the intake endpoint."""


class TransportTimeout(TransportError):
    pass


class TransportFailure(TransportError):
    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class CaseError(Exception):
    """Base class for errors scoped to a single write against an existing case."""


class CaseNotFound(CaseError):
    pass


class InvalidTransition(CaseError):
    """A status write named something that is not a canonical status."""


class AuthorizationError(CaseError):
    """Role or ownership mismatch.

    Raised internally so it can be audited as "forbidden"; the HTTP boundary
    decides whether the caller sees 403 or 404.
    """


class CaseAccessDenied(AuthorizationError):
    pass


class FieldNotWritable(AuthorizationError):
    def __init__(self, fields: list[str]) -> None:
        super().__init__(f"Fields not writable for this role: {', '.join(sorted(fields))}")
        self.fields = sorted(fields)


class PartialWriteWarning(BaseModel):
    """Non-fatal diagnostic: the write landed but a side effect did not.

    Returned alongside a successful result, never raised.
    """

    code: str = "timeline_append_failed"
    message: str
    correlation_id: Optional[str] = None
