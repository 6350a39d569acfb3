from __future__ import annotations

from contextvars import ContextVar
from typing import Optional
from uuid import uuid4

from fastapi import Header, Response


# Correlation id for the in-flight request. Outside of HTTP requests (direct
# service calls in tests, the intake client) it stays None and callers that
# need one generate their own.
_current_request_id: ContextVar[Optional[str]] = ContextVar("current_request_id", default=None)


def get_request_id() -> Optional[str]:
    """Return the correlation id of the current request, if any."""

    return _current_request_id.get()


def new_correlation_id() -> str:
    return get_request_id() or uuid4().hex


async def request_id_dependency(
    response: Response,
    x_request_id: Optional[str] = Header(None, alias="X-Request-ID"),
) -> str:
    """FastAPI dependency that establishes the correlation id for a request.

    A caller-supplied X-Request-ID is reused so support can correlate client
    and server logs; otherwise a fresh id is generated. The id is echoed back
    in the response headers.
    """

    request_id = (x_request_id or "").strip() or uuid4().hex
    _current_request_id.set(request_id)
    response.headers["X-Request-ID"] = request_id
    return request_id
