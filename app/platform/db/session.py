from typing import Generator

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from app.platform.config import settings

# Single shared sync engine for the API process and Celery workers
_sync_engine = None
_sync_session_factory = None


def _sync_database_url() -> str:
    # Convert async URL to sync if needed
    db_url = settings.DATABASE_URL
    if db_url.startswith("postgresql+asyncpg://"):
        db_url = db_url.replace("postgresql+asyncpg://", "postgresql+psycopg2://")
    return db_url


def get_engine():
    global _sync_engine, _sync_session_factory

    if _sync_engine is None:
        db_url = _sync_database_url()
        if db_url.startswith("sqlite"):
            _sync_engine = create_engine(db_url, connect_args={"check_same_thread": False})
        else:
            _sync_engine = create_engine(
                db_url,
                pool_size=25,
                max_overflow=25,
                pool_timeout=30,
                pool_pre_ping=True,
                pool_recycle=3600,
            )
        _sync_session_factory = sessionmaker(autocommit=False, autoflush=False, bind=_sync_engine)

    return _sync_engine


def get_sync_db() -> Session:
    """Get a database session for Celery tasks and services. Caller closes it."""
    if _sync_session_factory is None:
        get_engine()
    return _sync_session_factory()


def get_db() -> Generator[Session, None, None]:
    """FastAPI dependency."""
    db = get_sync_db()
    try:
        yield db
    finally:
        db.close()
