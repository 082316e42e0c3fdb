"""Root-level pytest fixtures for all tests.

Provides shared fixtures:
- In-memory SQLite database with the transcript schema
- A store factory the session services can open per operation
"""

import os
from collections.abc import Generator, Iterator
from contextlib import contextmanager

# Keep the app engine off the user's data directory during tests.
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")

import pytest
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from src.db.models import Base
from src.services.transcript_store import TranscriptStore


# ============================================================================
# Database Fixtures
# ============================================================================


@pytest.fixture
def db_engine() -> Generator[Engine, None, None]:
    """In-memory SQLite engine shared across sessions of one test."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(db_engine: Engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, bind=db_engine)


@pytest.fixture
def db_session(session_factory: sessionmaker) -> Generator[Session, None, None]:
    """A session on the in-memory database."""
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def store_factory(session_factory: sessionmaker):
    """Store factory with the same commit/rollback contract as the app's."""

    @contextmanager
    def _open() -> Iterator[TranscriptStore]:
        session = session_factory()
        try:
            yield TranscriptStore(session)
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    return _open
