"""
Coach Engine SQLAlchemy Models
==============================

The minimal records the orchestrator reads and writes:
- coach_state: one JSON blob per (user_id, coach_id, state_key)
- coach_traces: append-only trace stages
- coach_unmet_tools: append-only fallback events for tool-gap analysis
"""

from sqlalchemy import (
    Column, Integer, String, DateTime, Boolean, Text, JSON, UniqueConstraint
)
from datetime import datetime
from database import Base


class CoachState(Base):
    """Key-value dialogue state per user and coach."""
    __tablename__ = "coach_state"
    __table_args__ = (
        UniqueConstraint('user_id', 'coach_id', 'state_key', name='uq_coach_state_key'),
    )

    id = Column(Integer, primary_key=True)
    user_id = Column(String(64), nullable=False, index=True)
    coach_id = Column(String(64), nullable=False)
    state_key = Column(String(64), nullable=False)  # identity, message_history

    value = Column(JSON, nullable=False, default=dict)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class CoachTrace(Base):
    """One stage of one conversational turn."""
    __tablename__ = "coach_traces"

    id = Column(Integer, primary_key=True)
    trace_id = Column(String(64), nullable=False, index=True)
    stage = Column(String(64), nullable=False)
    data = Column(JSON)

    created_at = Column(DateTime, default=datetime.utcnow)


class UnmetToolLog(Base):
    """A turn the tool catalog could not serve."""
    __tablename__ = "coach_unmet_tools"

    id = Column(Integer, primary_key=True)
    user_id = Column(String(64), nullable=False, index=True)
    trace_id = Column(String(64), nullable=False)
    client_event_id = Column(String(128))

    event = Column(JSON)
    intent = Column(JSON)
    handled_manually = Column(Boolean, default=True)
    error = Column(Text)
    source = Column(String(64))

    created_at = Column(DateTime, default=datetime.utcnow)
