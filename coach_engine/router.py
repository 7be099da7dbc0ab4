"""
Coach Engine API Router
=======================

FastAPI router for the orchestration endpoints.
"""

from typing import Optional, Dict, Any, List
from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Header
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from config import Settings
from database import get_db
from coach_engine.llm_client import LLMError, get_llm_client
from coach_engine.message_history import load_message_history
from coach_engine.orchestrator import CoachOrchestrator, ChatRequest
from coach_engine.repository import CoachStateRepository, bind_request_session, reset_request_session
from coach_engine.schemas import Event, EventType


router = APIRouter(prefix="/api/coach", tags=["coach_engine"])


# ==============================================================================
# Request/Response Models
# ==============================================================================

class EventBody(BaseModel):
    type: EventType
    text: Optional[str] = Field(default=None, max_length=4000)
    url: Optional[str] = None
    context: Dict[str, Any] = Field(default_factory=dict)


class OrchestrateRequestBody(BaseModel):
    user_id: str
    client_event_id: str
    event: EventBody
    coach_id: str = Settings.DEFAULT_COACH_ID
    profile_name: Optional[str] = None
    mode: Optional[str] = None  # e.g. "training"


class ChatResponseBody(BaseModel):
    reply: str
    trace_id: str
    routed: str
    flags: Dict[str, Any] = Field(default_factory=dict)
    chat_model: Optional[str] = None
    tool_model: Optional[str] = None


class HistoryItemBody(BaseModel):
    text: str
    ts: int
    kind: str


# ==============================================================================
# Dependencies
# ==============================================================================

async def get_store(db: Session = Depends(get_db)):
    """Repository for this request; also bound as the ambient telemetry session."""
    token = bind_request_session(db)
    try:
        yield CoachStateRepository(db)
    finally:
        reset_request_session(token)


def get_orchestrator(store: CoachStateRepository = Depends(get_store)) -> CoachOrchestrator:
    """Orchestrator with the configured provider."""
    api_key = Settings.GOOGLE_API_KEY if Settings.LLM_PROVIDER == "gemini" else Settings.OPENAI_API_KEY
    try:
        llm = get_llm_client(Settings.LLM_PROVIDER, api_key)
    except LLMError as e:
        raise HTTPException(status_code=503, detail=str(e))
    return CoachOrchestrator(store, llm)


# ==============================================================================
# Endpoints
# ==============================================================================

@router.post("/orchestrate", response_model=ChatResponseBody)
async def orchestrate(
    body: OrchestrateRequestBody,
    background_tasks: BackgroundTasks,
    orchestrator: CoachOrchestrator = Depends(get_orchestrator),
    x_trace_id: Optional[str] = Header(default=None),
    x_source: Optional[str] = Header(default=None),
    x_chat_mode: Optional[str] = Header(default=None)
):
    """
    Handle one chat event.

    The reply is either a tool result or a free-text fallback answer.
    flags.unmet_tool marks turns no tool could serve. Telemetry rows are
    written in a background task after the response.
    """
    context = dict(body.event.context)
    mode = body.mode or x_chat_mode
    if mode:
        context["mode"] = mode

    event = Event(
        type=body.event.type,
        client_event_id=body.client_event_id,
        text=body.event.text,
        url=body.event.url,
        context=context
    )

    request = ChatRequest(
        user_id=body.user_id,
        event=event,
        coach_id=body.coach_id,
        trace_id=x_trace_id,
        profile_name=body.profile_name,
        source=x_source or "chat"
    )

    background_tasks.add_task(orchestrator.flush_telemetry)
    try:
        response = await orchestrator.handle_event(request)
    except LLMError as e:
        # No response, so no background task: record the failed turn now
        orchestrator.flush_telemetry()
        raise HTTPException(status_code=502, detail=f"Coach answer failed: {e}")

    return ChatResponseBody(
        reply=response.reply,
        trace_id=response.trace_id,
        routed=response.routed,
        flags=response.flags,
        chat_model=response.models.chat if response.models else None,
        tool_model=response.models.tools if response.models else None
    )


@router.get("/history/{user_id}", response_model=List[HistoryItemBody])
async def get_history(
    user_id: str,
    coach_id: str = Settings.DEFAULT_COACH_ID,
    store: CoachStateRepository = Depends(get_store)
):
    """The stored rolling history, oldest first."""
    return [item.to_dict() for item in load_message_history(store, user_id, coach_id)]
