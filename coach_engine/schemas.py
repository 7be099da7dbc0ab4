"""
Coach Engine Data Model
=======================

Plain dataclasses passed between the orchestration components.
Only Identity and MessageHistoryItem are persisted (as JSON blobs);
everything else lives for a single turn.
"""

from dataclasses import dataclass, field, asdict
from typing import Optional, Dict, Any
from enum import Enum


class EventType(str, Enum):
    TEXT = "TEXT"
    IMAGE = "IMAGE"
    END = "END"


HISTORY_KINDS = {"short", "deep", "goal", "tip"}


@dataclass(frozen=True)
class Event:
    """Incoming chat event. client_event_id is the caller's idempotency token."""
    type: EventType
    client_event_id: str
    text: Optional[str] = None
    url: Optional[str] = None
    context: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        data = asdict(self)
        data["type"] = self.type.value
        return data


@dataclass(frozen=True)
class Intent:
    """Classifier output."""
    name: str
    score: float
    tool_candidate: Optional[str] = None

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class Identity:
    """What we know about the user's preferred name. Absent record = all None."""
    user_id: str
    name: Optional[str] = None
    asked_at: Optional[str] = None  # ISO timestamp

    @classmethod
    def from_dict(cls, user_id: str, data: Optional[Dict[str, Any]]) -> "Identity":
        data = data or {}
        return cls(
            user_id=user_id,
            name=data.get("name"),
            asked_at=data.get("asked_at")
        )

    def to_dict(self) -> dict:
        return {"name": self.name, "asked_at": self.asked_at}


@dataclass
class MessageHistoryItem:
    """One entry of the rolling per-(user, coach) history."""
    text: str
    ts: int          # epoch ms
    kind: str        # short | deep | goal | tip

    def __post_init__(self):
        if self.kind not in HISTORY_KINDS:
            raise ValueError(f"Unknown history kind: {self.kind}")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MessageHistoryItem":
        return cls(text=str(data["text"]), ts=int(data["ts"]), kind=data["kind"])

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class ModelChoice:
    chat: str
    tools: str


@dataclass(frozen=True)
class TraceEntry:
    trace_id: str
    stage: str
    data: Any = None


@dataclass
class UnmetToolEvent:
    """Recorded whenever a turn is answered without a structured tool."""
    user_id: str
    trace_id: str
    event: Dict[str, Any]
    intent: Dict[str, Any]
    handled_manually: bool
    error: Optional[str]
    source: str
    client_event_id: str
