from __future__ import annotations

from collections.abc import Callable
from typing import Union

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

SessionFactory = Callable[[], Session]


def create_sqlalchemy_engine(database_url: str) -> Engine:
    return create_engine(database_url, future=True)


def create_sqlalchemy_session_factory(bind: Union[str, Engine]) -> SessionFactory:
    """Create a SQLAlchemy-backed SessionFactory.

    ``bind`` is either a database URL or an already-built engine, so the
    bootstrap path and tests can share one engine with ``create_all``.
    """

    engine = create_sqlalchemy_engine(bind) if isinstance(bind, str) else bind
    SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False, class_=Session)

    def _factory() -> Session:
        return SessionLocal()

    return _factory
