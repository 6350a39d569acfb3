from __future__ import annotations

import hashlib
from contextvars import ContextVar
from typing import Dict, Optional, Tuple

from fastapi import Depends, Header, HTTPException, Security, status
from fastapi.security import APIKeyHeader

from src.backend.config import settings
from src.backend.domain.models.user import User, UserRole
from src.backend.services.users.service import user_service

# API key is expected in this header when ENABLE_API_AUTH is true.
_api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)

# Context variable storing a stable, non-raw identifier for the current caller
# (e.g., a hashed API key). This allows downstream consumers such as the
# audit logger to associate events with a subject without exposing the raw
# secret.
_current_subject: ContextVar[Optional[str]] = ContextVar("current_subject", default=None)


def get_current_subject() -> Optional[str]:
    """Return the current subject identifier, if any."""

    return _current_subject.get()


def _subject_for_key(api_key: str) -> str:
    return "api-key:" + hashlib.sha256(api_key.encode("utf-8")).hexdigest()[:16]


def _parse_api_keys() -> Dict[str, Tuple[UserRole, Optional[str]]]:
    """Return the configured API keys mapped to (role, user id).

    API_KEYS is a comma-separated list. Each entry is either a bare key, which
    authenticates as an employee, or ``key:role:user_id``. Whitespace is
    stripped and empty entries are ignored.
    """

    if not settings.api_keys:
        return {}

    keys: Dict[str, Tuple[UserRole, Optional[str]]] = {}
    for entry in settings.api_keys.split(","):
        entry = entry.strip()
        if not entry:
            continue
        key, _, rest = entry.partition(":")
        role_raw, _, user_id = rest.partition(":")
        try:
            role = UserRole(role_raw.strip().lower()) if role_raw.strip() else UserRole.EMPLOYEE
        except ValueError:
            role = UserRole.EMPLOYEE
        keys[key.strip()] = (role, user_id.strip() or None)
    return keys


async def get_api_key(api_key: Optional[str] = Security(_api_key_header)) -> str:
    """FastAPI dependency for simple API-key based authentication.

    - If ENABLE_API_AUTH is false (default for development/tests), this is a
      no-op and always succeeds.
    - If ENABLE_API_AUTH is true, a valid API key must be supplied in the
      X-API-Key header and match the configured API_KEYS list.
    """

    if not settings.enable_api_auth:
        _current_subject.set(None)
        return ""

    allowed_keys = _parse_api_keys()
    if not allowed_keys:
        # Misconfiguration: auth is enabled but no keys are configured.
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="API authentication is enabled but no API keys are configured.",
        )

    if not api_key or api_key not in allowed_keys:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or missing API key.",
        )

    _current_subject.set(_subject_for_key(api_key))
    return api_key


async def get_current_user(
    api_key: str = Depends(get_api_key),
    x_user_id: Optional[str] = Header(None, alias="X-User-Id"),
    x_user_role: Optional[str] = Header(None, alias="X-User-Role"),
) -> User:
    """Resolve the caller into an explicit User.

    With API auth enabled, the role and user id come from the matching
    API_KEYS entry. With auth disabled (local development and tests), the
    X-User-Id and X-User-Role headers pick the identity, and a request with
    neither is treated as an anonymous admin. The identity headers are
    ignored whenever auth is enabled.
    """

    if settings.enable_api_auth:
        role, user_id = _parse_api_keys()[api_key]
        subject = get_current_subject() or _subject_for_key(api_key)
        return user_service.upsert_user_for_subject(
            subject=subject,
            user_id=user_id or subject,
            role=role,
        )

    if not x_user_id and not x_user_role:
        return user_service.upsert_user_for_subject(
            subject="anonymous",
            user_id="anonymous",
            email="anonymous@example.com",
            role=UserRole.ADMIN,
        )

    try:
        role = UserRole((x_user_role or UserRole.EMPLOYEE.value).strip().lower())
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unknown role in X-User-Role.",
        )
    user_id = (x_user_id or "").strip() or f"dev-{role.value}"
    _current_subject.set(f"dev:{role.value}:{user_id}")
    return user_service.upsert_user_for_subject(
        subject=f"dev:{role.value}:{user_id}",
        user_id=user_id,
        role=role,
    )


async def require_staff(user: User = Depends(get_current_user)) -> User:
    """Raise HTTP 403 unless the caller is an admin or employee."""

    if user.is_staff:
        return user
    raise HTTPException(
        status_code=status.HTTP_403_FORBIDDEN,
        detail="Not authorized to access staff resources",
    )


async def require_doctor(user: User = Depends(get_current_user)) -> User:
    """Raise HTTP 403 unless the caller is a doctor."""

    if user.role == UserRole.DOCTOR:
        return user
    raise HTTPException(
        status_code=status.HTTP_403_FORBIDDEN,
        detail="Not authorized to access doctor resources",
    )
