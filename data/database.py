"""Database configuration and session management for SQLAlchemy."""

from typing import Any, Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from settings import settings

_raw_database_url = settings.database_url or ""
if _raw_database_url:
    _raw_database_url = _raw_database_url.strip()

DATABASE_URL = _raw_database_url or "sqlite:///./grievance_notify.db"

Base = declarative_base()


def get_engine(database_url: Optional[str] = None) -> Engine:
    """Create a SQLAlchemy engine with environment-aware configuration."""
    database_url = database_url or DATABASE_URL
    engine_kwargs: dict[str, Any] = {
        "echo": settings.database_echo,
        "future": True,
    }

    if database_url.startswith("sqlite"):
        # Dispatcher writes happen on worker threads
        engine_kwargs["connect_args"] = {"check_same_thread": False, "timeout": 15}
    else:
        engine_kwargs.update(
            pool_pre_ping=True,
            pool_size=settings.database_pool_size,
            max_overflow=settings.database_max_overflow,
            pool_timeout=settings.database_pool_timeout,
        )

    return create_engine(database_url, **engine_kwargs)


def get_session_local(bind_engine: Optional[Engine] = None) -> sessionmaker:
    """Return a configured sessionmaker bound to the provided engine."""
    engine_to_use = bind_engine or engine
    return sessionmaker(
        autocommit=False,
        autoflush=False,
        expire_on_commit=False,
        bind=engine_to_use,
        class_=Session,
    )


def init_db(bind_engine: Optional[Engine] = None) -> None:
    """Initialise the database by creating all tables."""
    from data import models  # noqa: F401  # Ensure models are imported for metadata

    Base.metadata.create_all(bind=bind_engine or engine)


engine = get_engine()
SessionLocal = get_session_local()

__all__ = [
    "Base",
    "DATABASE_URL",
    "engine",
    "get_engine",
    "SessionLocal",
    "get_session_local",
    "init_db",
]
