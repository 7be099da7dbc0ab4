"""
Message History Store
=====================

Short rolling window of recent coach turns per (user_id, coach_id), used to
avoid repeating questions and answers. Only the last MAX_HISTORY items are
ever persisted; callers append to the end before saving.

Load, append in memory, save: concurrent turns race and the later save wins.
"""

from typing import List
import logging

from config import Settings
from coach_engine.repository import CoachStateRepository
from coach_engine.schemas import MessageHistoryItem

HISTORY_STATE_KEY = "message_history"
MAX_HISTORY = 12


def load_message_history(
    store: CoachStateRepository,
    user_id: str,
    coach_id: str = Settings.DEFAULT_COACH_ID
) -> List[MessageHistoryItem]:
    """Stored history in chronological order; [] on any read failure."""
    try:
        raw = store.get_state(user_id, coach_id, HISTORY_STATE_KEY) or []
    except Exception as e:
        logging.warning(f"Failed to load message history for user {user_id}: {e}")
        return []

    if not isinstance(raw, list):
        logging.warning(f"Message history for user {user_id} is not a list, ignoring")
        return []

    items = []
    for entry in raw:
        try:
            items.append(MessageHistoryItem.from_dict(entry))
        except (KeyError, TypeError, ValueError) as e:
            logging.warning(f"Skipping malformed history item for user {user_id}: {e}")
    return items


def save_message_history(
    store: CoachStateRepository,
    user_id: str,
    history: List[MessageHistoryItem],
    coach_id: str = Settings.DEFAULT_COACH_ID
) -> None:
    """Persist the most recent MAX_HISTORY items. Write failures are logged, not raised."""
    bounded = history[-MAX_HISTORY:]
    try:
        store.upsert_state(user_id, coach_id, HISTORY_STATE_KEY, [item.to_dict() for item in bounded])
    except Exception as e:
        logging.warning(f"Failed to save message history for user {user_id}: {e}")
