"""Database plumbing shared by all appealdesk models."""
from datetime import datetime
from typing import Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker, scoped_session

from appealdesk import settings

Base = declarative_base()


def now_utc() -> datetime:
    return datetime.utcnow()


def make_engine(url: Optional[str] = None) -> Engine:
    url = url or settings.DATABASE_URL
    if url.startswith("sqlite"):
        return create_engine(url, future=True, connect_args={"check_same_thread": False})
    return create_engine(url, pool_pre_ping=True, future=True)


def make_session_factory(engine: Engine):
    return scoped_session(sessionmaker(bind=engine, autoflush=False, autocommit=False))


def init_db(engine: Engine) -> None:
    """Create all tables known to ``Base``. Alembic handles production schemas."""
    # models must be imported so their tables are registered on Base.metadata
    from appealdesk.workflow import models  # noqa: F401

    Base.metadata.create_all(bind=engine)
