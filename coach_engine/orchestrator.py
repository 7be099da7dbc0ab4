"""
Coach Orchestrator
==================

One chat event in, one reply out. Stateless between turns: identity and
history are re-read from the store every turn and written back.

Flow:
1. Classify the event
2. Resolve the user's name (ask at most once)
3. Load the rolling history
4. Choose models for the turn
5. Dispatch to a tool, or answer through the fallback flow
6. Save history, emit traces, publish turn events

Trace and unmet-tool rows are queued during the turn and written by
flush_telemetry once the reply has gone out.
"""

import re
import time
import uuid
from dataclasses import dataclass, field
from typing import Optional, Dict, Any, Callable, Awaitable, Union
import logging

from config import Settings
from coach_engine.answer_builder import ManualAnswerBuilder
from coach_engine.events import EventBus
from coach_engine.fallback import (
    fallback, call_maybe_async, FallbackDeps, FallbackOptions
)
from coach_engine.intent_classifier import IntentClassifier
from coach_engine.llm_client import LLMClient
from coach_engine.message_history import load_message_history, save_message_history
from coach_engine.model_router import choose_models, should_use_high_fidelity, detect_task_type
from coach_engine.name_resolver import resolve_user_name, load_name_state, persist_name_asked
from coach_engine.repository import CoachStateRepository
from coach_engine.schemas import (
    Event, EventType, Intent, MessageHistoryItem, ModelChoice, TraceEntry, UnmetToolEvent
)
from coach_engine.telemetry import TelemetryBuffer

ToolDispatcher = Callable[[str, Intent, Event, ModelChoice], Union[str, Awaitable[str]]]

GOAL_PATTERN = re.compile(r"\bziel|\bgoal", re.IGNORECASE)


@dataclass
class ChatRequest:
    """Chat request from user."""
    user_id: str
    event: Event
    coach_id: str = Settings.DEFAULT_COACH_ID
    trace_id: Optional[str] = None
    profile_name: Optional[str] = None
    source: str = "chat"


@dataclass
class ChatResponse:
    """Chat response to user."""
    reply: str
    trace_id: str
    routed: str
    flags: Dict[str, Any] = field(default_factory=dict)
    models: Optional[ModelChoice] = None


class CoachOrchestrator:
    """
    Wires classifier, model router, name resolver, history and fallback
    flow together for a single turn.
    """

    def __init__(
        self,
        store: CoachStateRepository,
        llm: LLMClient,
        classifier: Optional[IntentClassifier] = None,
        tool_dispatcher: Optional[ToolDispatcher] = None,
        bus: Optional[EventBus] = None
    ):
        self.store = store
        self.llm = llm
        self.classifier = classifier or IntentClassifier()
        self.tool_dispatcher = tool_dispatcher
        self.bus = bus or EventBus()
        self.telemetry = TelemetryBuffer()

    def flush_telemetry(self, store: Optional[CoachStateRepository] = None) -> int:
        """Write queued traces and unmet-tool records. Call after the reply is sent."""
        return self.telemetry.flush(store)

    def _trace(self, trace_id: str, stage: str, data: Any = None) -> None:
        self.telemetry.log_trace(TraceEntry(trace_id=trace_id, stage=stage, data=data))

    def _log_unmet_tool(self, event: UnmetToolEvent) -> None:
        self.telemetry.log_unmet_tool(event)
        self.bus.publish("unmet_tool", {"user_id": event.user_id, "trace_id": event.trace_id,
                                        "intent": event.intent})

    @staticmethod
    def _history_kind(event: Event, intent: Intent, high_fidelity: bool) -> str:
        if intent.name == "advice":
            return "tip"
        if GOAL_PATTERN.search(event.text or ""):
            return "goal"
        if high_fidelity:
            return "deep"
        return "short"

    async def handle_event(self, request: ChatRequest) -> ChatResponse:
        event = request.event
        trace_id = request.trace_id or str(uuid.uuid4())
        self._trace(trace_id, "received", {
            "user_id": request.user_id,
            "event_type": event.type.value,
            "client_event_id": event.client_event_id,
            "source": request.source
        })

        if event.type == EventType.END:
            self._trace(trace_id, "session_end")
            self.bus.publish("turn_completed", {"user_id": request.user_id, "trace_id": trace_id,
                                                "routed": "end"})
            return ChatResponse(reply="", trace_id=trace_id, routed="end", flags={"session_end": True})

        # 1. Intent
        intent = await call_maybe_async(self.classifier.classify, event)
        self._trace(trace_id, "intent", intent.to_dict())

        # 2. Name
        identity = load_name_state(self.store, request.user_id, request.coach_id)
        resolution = resolve_user_name(identity, lambda: request.profile_name)
        if resolution.set_asked_at:
            persist_name_asked(self.store, request.user_id, request.coach_id)

        # 3. History
        history = load_message_history(self.store, request.user_id, request.coach_id)

        # 4. Models
        text = event.text or ""
        task_type = detect_task_type(text, {"has_images": event.type == EventType.IMAGE, **event.context})
        model_flags = {
            "high_fidelity": should_use_high_fidelity(text, event.context),
            "requires_reasoning": task_type in ("analysis", "research"),
            "cost_sensitive": bool(event.context.get("cost_sensitive"))
        }
        models = choose_models(model_flags)
        self._trace(trace_id, "model_choice", {"flags": model_flags, "task_type": task_type,
                                               "chat": models.chat, "tools": models.tools})

        # 5. Tool or fallback
        reply = None
        routed = "fallback"
        flags: Dict[str, Any] = {}

        if intent.tool_candidate and self.tool_dispatcher is not None:
            try:
                reply = await call_maybe_async(self.tool_dispatcher, intent.tool_candidate, intent, event, models)
                if reply is None:
                    raise ValueError("tool returned no reply")
                routed = intent.tool_candidate
                flags["tool_used"] = True
                self._trace(trace_id, "tool_exec", {"tool": intent.tool_candidate})
            except Exception as e:
                logging.error(f"Tool {intent.tool_candidate} failed for trace {trace_id}: {e}")
                self._trace(trace_id, "tool_error", {"tool": intent.tool_candidate, "error": str(e)})
                reply = None

        if reply is None:
            builder = ManualAnswerBuilder(self.llm, models, history, resolution.name)
            result = await fallback(
                request.user_id,
                trace_id,
                event,
                intent,
                FallbackDeps(
                    build_manual_answer=builder,
                    log_unmet_tool=self._log_unmet_tool,
                    log_trace=self.telemetry.log_trace
                ),
                FallbackOptions(source=request.source)
            )
            reply = result.reply
            flags.update(result.flags)

        if resolution.ask:
            reply = f"{reply}\n\n{resolution.ask_text}" if reply else resolution.ask_text
            flags["name_asked"] = True

        # 6. Persist and report
        history.append(MessageHistoryItem(
            text=reply,
            ts=int(time.time() * 1000),
            kind=self._history_kind(event, intent, model_flags["high_fidelity"])
        ))
        save_message_history(self.store, request.user_id, history, request.coach_id)

        self._trace(trace_id, "reply_send", {"routed": routed, "flags": flags, "chars": len(reply)})
        self.bus.publish("turn_completed", {"user_id": request.user_id, "trace_id": trace_id,
                                            "routed": routed})

        return ChatResponse(reply=reply, trace_id=trace_id, routed=routed, flags=flags, models=models)
