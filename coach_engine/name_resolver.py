"""
Name Resolver
=============

Ask for the user's preferred name at most once.

States over Identity:
- UNKNOWN:  no name, no asked_at
- ASKED:    no name, asked_at set (stay silent, never re-ask)
- RESOLVED: name known (terminal)

resolve_user_name is pure. Persisting the UNKNOWN -> ASKED transition is a
separate call so the caller decides when it happens.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional, Callable
import logging

from config import Settings
from coach_engine.repository import CoachStateRepository
from coach_engine.schemas import Identity

IDENTITY_STATE_KEY = "identity"
ASK_NAME_TEXT = "Wie soll ich dich ansprechen?"


@dataclass
class NameResolution:
    name: Optional[str]
    ask: bool
    ask_text: Optional[str] = None
    set_asked_at: bool = False


def resolve_user_name(
    identity: Identity,
    get_profile_name: Callable[[], Optional[str]]
) -> NameResolution:
    """Decide whether to greet by name, stay silent, or ask once."""
    if identity.name and identity.name.strip():
        return NameResolution(name=identity.name.strip(), ask=False)

    profile_name = get_profile_name()
    if profile_name and profile_name.strip():
        return NameResolution(name=profile_name.strip(), ask=False)

    if identity.asked_at:
        return NameResolution(name=None, ask=False)

    return NameResolution(name=None, ask=True, ask_text=ASK_NAME_TEXT, set_asked_at=True)


def load_name_state(
    store: CoachStateRepository,
    user_id: str,
    coach_id: str = Settings.DEFAULT_COACH_ID
) -> Identity:
    """Read the raw identity record. Unreadable state counts as UNKNOWN."""
    try:
        return Identity.from_dict(user_id, store.get_state(user_id, coach_id, IDENTITY_STATE_KEY))
    except Exception as e:
        logging.warning(f"Failed to load name state for user {user_id}: {e}")
        return Identity(user_id=user_id)


def persist_name_asked(
    store: CoachStateRepository,
    user_id: str,
    coach_id: str = Settings.DEFAULT_COACH_ID
) -> None:
    """
    Record that the name question was asked.
    A failed write only means we may ask again on a later turn.
    """
    try:
        current = store.get_state(user_id, coach_id, IDENTITY_STATE_KEY) or {}
        updated = dict(current)
        updated["asked_at"] = datetime.now(timezone.utc).isoformat()
        store.upsert_state(user_id, coach_id, IDENTITY_STATE_KEY, updated)
    except Exception as e:
        logging.warning(f"Failed to persist name-asked state for user {user_id}: {e}")
