from __future__ import annotations

from typing import Dict, Optional

from src.backend.domain.models.user import User, UserRole


class InMemoryUserService:
    """Very small in-memory user store keyed by auth subject.

    The security layer maps a hashed API key (or, with auth disabled, the
    development identity headers) to a subject; this store turns that subject
    into a concrete User so downstream code can reason about roles without
    ever handling the raw secret.
    """

    def __init__(self) -> None:
        self._by_subject: Dict[str, User] = {}

    def upsert_user_for_subject(
        self,
        *,
        subject: str,
        user_id: str,
        role: UserRole,
        email: Optional[str] = None,
    ) -> User:
        existing = self._by_subject.get(subject)
        if existing is not None and existing.id == user_id and existing.role == role:
            return existing

        user = User(id=user_id, email=email, role=role)
        self._by_subject[subject] = user
        return user

    def get_user_by_subject(self, subject: str) -> Optional[User]:
        return self._by_subject.get(subject)


user_service = InMemoryUserService()
