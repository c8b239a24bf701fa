"""Engine and session management.

Postgres in deployment; a SQLite URL works for local runs (upserts in
infra/upsert.py support both dialects).
"""
from __future__ import annotations

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from .settings import settings


class Base(DeclarativeBase):
    pass


_engine: Engine | None = None
_session_factory: sessionmaker[Session] | None = None


def init_engine(database_url: str | None = None) -> Engine:
    global _engine, _session_factory
    url = database_url or settings.database_url
    connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
    _engine = create_engine(url, pool_pre_ping=True, connect_args=connect_args)
    _session_factory = sessionmaker(bind=_engine, autoflush=False)
    return _engine


def get_db():
    """Request-scoped session. Routers commit; anything left uncommitted is rolled back."""
    if _session_factory is None:
        init_engine()
    db = _session_factory()
    try:
        yield db
    finally:
        db.rollback()
        db.close()
