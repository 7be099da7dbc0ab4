"""
Shared fixtures: in-memory SQLite with the coach tables.
"""

import pytest
from unittest.mock import Mock
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from database import Base
from coach_engine import models  # noqa: F401  registers the tables
from coach_engine.repository import CoachStateRepository


@pytest.fixture
def session_factory():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool
    )
    Base.metadata.create_all(bind=engine)
    factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    yield factory
    engine.dispose()


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def store(db):
    return CoachStateRepository(db)


@pytest.fixture
def broken_store():
    """Store whose every call fails."""
    broken = Mock(spec=CoachStateRepository)
    broken.get_state.side_effect = RuntimeError("db down")
    broken.upsert_state.side_effect = RuntimeError("db down")
    broken.append_trace.side_effect = RuntimeError("db down")
    broken.append_unmet_tool.side_effect = RuntimeError("db down")
    return broken


@pytest.fixture
def offline_classifier(monkeypatch):
    """Regex-only intent classifier, no Gemini key."""
    from config import Settings
    from coach_engine.intent_classifier import IntentClassifier

    monkeypatch.setattr(Settings, "GOOGLE_API_KEY", None)
    return IntentClassifier()
