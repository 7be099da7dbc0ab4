"""
Coach Engine - Conversation Orchestration for the AI Coach
==========================================================

Turns one chat event into one reply:
- Intent classification with tool routing
- Per-turn model selection
- Name resolution (ask once, never re-ask)
- Bounded rolling message history
- Fallback answers with unmet-tool telemetry

Key Design Principles:
1. Stateless turns - every invocation re-reads and re-writes its state
2. Last write wins on concurrent turns, no locking
3. Telemetry never fails a reply
4. Only a failed fallback answer is fatal to a turn
"""

from coach_engine.repository import CoachStateRepository
from coach_engine.orchestrator import CoachOrchestrator, ChatRequest, ChatResponse
from coach_engine.fallback import fallback, FallbackDeps, FallbackResult
from coach_engine.model_router import choose_models, should_use_high_fidelity, get_model_parameters
from coach_engine.name_resolver import resolve_user_name, persist_name_asked, load_name_state
from coach_engine.message_history import load_message_history, save_message_history
from coach_engine.telemetry import log_trace, log_unmet_tool, TelemetryBuffer
from coach_engine.llm_client import LLMClient, OpenAIClient, GeminiClient

__all__ = [
    'CoachStateRepository',
    'CoachOrchestrator',
    'ChatRequest',
    'ChatResponse',
    'fallback',
    'FallbackDeps',
    'FallbackResult',
    'choose_models',
    'should_use_high_fidelity',
    'get_model_parameters',
    'resolve_user_name',
    'persist_name_asked',
    'load_name_state',
    'load_message_history',
    'save_message_history',
    'log_trace',
    'log_unmet_tool',
    'TelemetryBuffer',
    'LLMClient',
    'OpenAIClient',
    'GeminiClient',
]
