"""
Database access for paycore.

The engine and session factory are built on first use from DATABASE_URL.
Settlement code opens one session per unit of work, so callers hold the
factory rather than a session.
"""

import functools

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from paycore.settings import get_settings


@functools.lru_cache()
def get_engine():
    """SQLAlchemy engine for DATABASE_URL (cached)."""
    settings = get_settings()
    return create_engine(settings.DATABASE_URL, pool_pre_ping=True, echo=False)


@functools.lru_cache()
def get_sessionmaker():
    """Session factory bound to the cached engine."""
    return sessionmaker(autocommit=False, autoflush=False, bind=get_engine())
