"""Database session for worker."""

from functools import lru_cache

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from forj_worker.settings import get_settings


@lru_cache()
def get_session_factory() -> sessionmaker:
    """Session factory bound to the worker's engine (created on first use)."""
    engine = create_engine(
        get_settings().database_url_computed,
        pool_pre_ping=True,
        pool_size=5,
        max_overflow=10,
    )
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)
