from __future__ import annotations

from typing import Iterable, Optional
from uuid import UUID

from src.backend.domain.models.case import Case, CaseStatus
from src.backend.infra.db.models import CaseORM
from src.backend.infra.db.repositories import CaseRepository
from src.backend.infra.db.session import SessionFactory


class SqlCaseRepository(CaseRepository):
    """SQL-backed CaseRepository.

    Each call opens and closes its own session; cases are returned as
    detached domain models, never as ORM rows.
    """

    def __init__(self, session_factory: SessionFactory) -> None:
        self._session_factory = session_factory

    def get(self, case_id: str) -> Optional[Case]:
        session = self._session_factory()
        try:
            orm = session.get(CaseORM, case_id)
            return orm.to_domain() if orm is not None else None
        finally:
            session.close()

    def get_by_uuid(self, case_uuid: UUID) -> Optional[Case]:
        session = self._session_factory()
        try:
            orm = session.query(CaseORM).filter(CaseORM.uuid == case_uuid).first()
            return orm.to_domain() if orm is not None else None
        finally:
            session.close()

    def list_by_filters(
        self,
        *,
        doctor_id: Optional[str] = None,
        status: Optional[CaseStatus] = None,
    ) -> Iterable[Case]:
        session = self._session_factory()
        try:
            query = session.query(CaseORM)
            if doctor_id is not None:
                query = query.filter(CaseORM.doctor_id == doctor_id)
            if status is not None:
                query = query.filter(CaseORM.status == status.value)
            rows = query.all()
        finally:
            session.close()
        return [orm.to_domain() for orm in rows]

    def save(self, case: Case) -> None:
        """Insert or update a Case in the database."""

        session = self._session_factory()
        try:
            existing = session.get(CaseORM, case.id)
            if existing is None:
                session.add(CaseORM.from_domain(case))
            else:
                existing.apply(case)
            session.commit()
        finally:
            session.close()
