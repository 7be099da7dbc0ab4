"""
Coach Engine Repository Layer
=============================

The persistence collaborator behind the orchestrator:
- JSON blob per (user_id, coach_id, state_key), plain upsert
- Append-only trace and unmet-tool records

There is no locking and no version column. Two turns that read the same
state and write it back race; the later write wins.
"""

from contextvars import ContextVar
from typing import Optional, Any
from datetime import datetime
from sqlalchemy.orm import Session
from sqlalchemy.exc import SQLAlchemyError
import logging

from database import SessionLocal
from coach_engine.models import CoachState, CoachTrace, UnmetToolLog
from coach_engine.schemas import TraceEntry, UnmetToolEvent


class CoachStateRepository:
    """
    Repository for dialogue state and telemetry records.

    Write methods commit immediately. On a database error the session is
    rolled back and the error re-raised; callers decide whether it is fatal.
    """

    def __init__(self, db: Session, owns_session: bool = False):
        self.db = db
        self.owns_session = owns_session

    def close(self) -> None:
        """Close the session if this repository opened it."""
        if self.owns_session:
            self.db.close()

    # ==========================================================================
    # KEY-VALUE STATE
    # ==========================================================================

    def _get_row(self, user_id: str, coach_id: str, state_key: str) -> Optional[CoachState]:
        return self.db.query(CoachState).filter(
            CoachState.user_id == user_id,
            CoachState.coach_id == coach_id,
            CoachState.state_key == state_key
        ).first()

    def get_state(self, user_id: str, coach_id: str, state_key: str) -> Optional[Any]:
        """Read a JSON blob, None if absent."""
        row = self._get_row(user_id, coach_id, state_key)
        return row.value if row else None

    def upsert_state(self, user_id: str, coach_id: str, state_key: str, value: Any) -> None:
        """Create or overwrite a JSON blob."""
        try:
            existing = self._get_row(user_id, coach_id, state_key)
            if existing:
                existing.value = value
                existing.updated_at = datetime.utcnow()
            else:
                self.db.add(CoachState(
                    user_id=user_id,
                    coach_id=coach_id,
                    state_key=state_key,
                    value=value
                ))
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            raise

    # ==========================================================================
    # APPEND-ONLY RECORDS
    # ==========================================================================

    def append_trace(self, entry: TraceEntry) -> None:
        try:
            self.db.add(CoachTrace(
                trace_id=entry.trace_id,
                stage=entry.stage,
                data=entry.data
            ))
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            raise

    def append_unmet_tool(self, event: UnmetToolEvent) -> None:
        try:
            self.db.add(UnmetToolLog(
                user_id=event.user_id,
                trace_id=event.trace_id,
                client_event_id=event.client_event_id,
                event=event.event,
                intent=event.intent,
                handled_manually=event.handled_manually,
                error=event.error,
                source=event.source
            ))
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            raise

    def count_traces(self, trace_id: str) -> int:
        return self.db.query(CoachTrace).filter(CoachTrace.trace_id == trace_id).count()


# ==============================================================================
# AMBIENT REQUEST CONTEXT
# ==============================================================================

# Session of the request currently being served, bound by the HTTP dependency
_request_session: ContextVar[Optional[Session]] = ContextVar("coach_request_session", default=None)


def bind_request_session(db: Optional[Session]):
    """Bind the session of the current request. Returns a token for reset_request_session."""
    return _request_session.set(db)


def reset_request_session(token) -> None:
    """Restore the binding that was active before the matching bind."""
    try:
        _request_session.reset(token)
    except ValueError:
        # Token was created in another context; nothing to restore here
        logging.warning("Request session token from another context, clearing binding")
        _request_session.set(None)


def store_from_request_context() -> CoachStateRepository:
    """
    Build a repository for callers that were not handed one.
    Prefers the request-bound session, else opens a fresh one.
    """
    db = _request_session.get()
    if db is None:
        logging.info("No request-bound session, opening a new one for telemetry")
        return CoachStateRepository(SessionLocal(), owns_session=True)
    return CoachStateRepository(db)
