from __future__ import annotations

import logging
from typing import Optional

from src.backend.config import settings
from src.backend.infra.db.models import Base
from src.backend.infra.db.session import create_sqlalchemy_engine, create_sqlalchemy_session_factory
from src.backend.infra.db.sql_cases import SqlCaseRepository
from src.backend.infra.db.sql_events import (
    SqlCaseNoteRepository,
    SqlContactEventRepository,
    SqlTimelineEventRepository,
)

logger = logging.getLogger(__name__)


def init_sql_repositories(database_url: Optional[str] = None, *, force: bool = False) -> bool:
    """Optionally switch in-memory repositories to SQL-backed implementations.

    Called from application startup. If USE_SQL_REPOS is not enabled (and
    ``force`` is not set) or no database URL is configured, this is a no-op
    and the in-memory repositories remain active. Returns True when the swap
    happened.
    """

    if not (settings.use_sql_repos or force):
        return False

    db_url = database_url or settings.database_url
    if not db_url:
        logger.warning("USE_SQL_REPOS is set but DATABASE_URL is empty; keeping in-memory repositories")
        return False

    engine = create_sqlalchemy_engine(db_url)

    # Create tables if they do not exist. A real deployment should run
    # migrations instead.
    Base.metadata.create_all(engine)

    session_factory = create_sqlalchemy_session_factory(engine)

    # Services hold their repositories as attributes, so rebinding them here
    # reaches every module that already imported the service singletons.
    from src.backend.services.cases.service import case_service
    from src.backend.services.contacts.service import contact_service
    from src.backend.services.notes.service import note_service
    from src.backend.services.timeline.service import timeline_service

    case_service.cases = SqlCaseRepository(session_factory)
    timeline_service.events = SqlTimelineEventRepository(session_factory)
    contact_service.events = SqlContactEventRepository(session_factory)
    note_service.notes = SqlCaseNoteRepository(session_factory)
    logger.info("SQL repositories enabled")
    return True
