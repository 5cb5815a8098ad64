"""Database engine, session factory and the request-scoped session dependency."""

import logging
from collections.abc import Generator
from typing import Annotated, Any

from fastapi import Depends
from sqlalchemy import Engine, create_engine, text
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from app.core.config import settings

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    pass


def create_db_engine(url: str, **overrides: Any) -> Engine:
    """Engine for ``url``; SQLite (local runs, tests) takes no pool sizing."""
    if url.startswith("sqlite"):
        options: dict[str, Any] = {"connect_args": {"check_same_thread": False}}
    else:
        options = {"pool_pre_ping": True, "pool_size": 10, "max_overflow": 20}
    options.update(overrides)
    # echo stays off; ingestion logs its own store calls
    return create_engine(url, echo=False, **options)


def session_factory(bind: Engine) -> sessionmaker[Session]:
    # Objects stay readable after the per-chunk commits of the store
    return sessionmaker(bind=bind, class_=Session, expire_on_commit=False, autoflush=False)


engine = create_db_engine(settings.DATABASE_URL)
SessionLocal = session_factory(engine)


def check_connection(bind: Engine | None = None) -> bool:
    """True when a trivial query succeeds."""
    try:
        with (bind or engine).connect() as conn:
            conn.execute(text("SELECT 1"))
        return True
    except Exception as e:
        logger.warning(f"Database health check failed: {e}")
        return False


def get_db() -> Generator[Session, None, None]:
    """Get database session dependency."""
    session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


DbSession = Annotated[Session, Depends(get_db)]
