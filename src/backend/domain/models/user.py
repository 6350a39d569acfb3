from __future__ import annotations

from enum import Enum
from typing import Optional

from pydantic import BaseModel


class UserRole(str, Enum):
    ADMIN = "admin"
    EMPLOYEE = "employee"
    DOCTOR = "doctor"
    PATIENT = "patient"


STAFF_ROLES = frozenset({UserRole.ADMIN, UserRole.EMPLOYEE})


class User(BaseModel):
    """Request-scoped identity threaded explicitly into every core call."""

    id: str
    role: UserRole
    email: Optional[str] = None

    @property
    def is_staff(self) -> bool:
        return self.role in STAFF_ROLES
