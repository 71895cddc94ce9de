"""Database session management."""

from functools import lru_cache

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from forj_api.settings import get_settings


def build_engine(database_url: str):
    """Create an engine, with SQLite-specific connect args where needed."""
    if database_url.startswith("sqlite"):
        return create_engine(
            database_url,
            connect_args={"check_same_thread": False},
        )
    return create_engine(
        database_url,
        pool_pre_ping=True,
        pool_size=10,
        max_overflow=20,
    )


def build_session_factory(engine) -> sessionmaker:
    """Create the session factory handed to the service layer."""
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)


@lru_cache()
def get_engine():
    """Get the process-wide engine (created on first use)."""
    return build_engine(get_settings().database_url_computed)


@lru_cache()
def get_session_factory() -> sessionmaker:
    """Get the process-wide session factory."""
    return build_session_factory(get_engine())


def get_db():
    """Get database session."""
    db = get_session_factory()()
    try:
        yield db
    finally:
        db.close()
