"""
Model Router
============

Pure, per-turn decisions about which language model to call:
- choose_models: chat model + tool-extraction model from turn flags
- should_use_high_fidelity: complexity / context-depth signal
- get_model_parameters: request shaping by model family
- detect_task_type / fallback_model: routing helpers used by the orchestrator
"""

import re
from typing import Dict, Any, Optional, List

from config import Settings
from coach_engine.schemas import ModelChoice


# ==============================================================================
# MODEL SELECTION
# ==============================================================================

def choose_models(flags: Optional[Dict[str, bool]] = None) -> ModelChoice:
    """
    Pick the (chat, tools) pair for one turn.

    First match wins: high_fidelity > requires_reasoning > cost_sensitive > default.
    Tool-argument extraction always runs on the lightweight model.
    """
    flags = flags or {}
    tools_model = Settings.MODEL_LIGHTWEIGHT

    if flags.get("high_fidelity"):
        return ModelChoice(chat=Settings.MODEL_PREMIUM, tools=tools_model)
    if flags.get("requires_reasoning"):
        return ModelChoice(chat=Settings.MODEL_REASONING, tools=tools_model)
    if flags.get("cost_sensitive"):
        return ModelChoice(chat=Settings.MODEL_LIGHTWEIGHT, tools=tools_model)
    return ModelChoice(chat=Settings.MODEL_BALANCED, tools=tools_model)


# Explanation requests, strategy/planning language, expressions of difficulty
COMPLEXITY_TRIGGERS = [
    re.compile(r"erkl[äa]r", re.IGNORECASE),
    re.compile(r"warum", re.IGNORECASE),
    re.compile(r"wieso|weshalb", re.IGNORECASE),
    re.compile(r"\bexplain|\bwhy\b", re.IGNORECASE),
    re.compile(r"strategie|strategy", re.IGNORECASE),
    re.compile(r"\bplan(e|en|ung)?\b|planning", re.IGNORECASE),
    re.compile(r"periodisierung|langfristig|long[- ]term", re.IGNORECASE),
    re.compile(r"optimier|optimi[sz]e", re.IGNORECASE),
    re.compile(r"vergleich|unterschied.*zwischen", re.IGNORECASE),
    re.compile(r"schwierig|schwer f[äa]llt|struggl|difficult", re.IGNORECASE),
    re.compile(r"komme? nicht weiter|stagnier|plateau", re.IGNORECASE),
    re.compile(r"frustriert|überfordert|ueberfordert", re.IGNORECASE),
]

MAX_GOALS_BEFORE_DEPTH = 2
CALORIE_DEVIATION_THRESHOLD = 500  # kcal


def _as_number(value: Any) -> Optional[float]:
    """Numeric context value, or None when absent or not a number."""
    if isinstance(value, bool) or value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _goal_count(goals: Any) -> int:
    if isinstance(goals, (list, tuple, set, dict)):
        return len(goals)
    count = _as_number(goals)
    return int(count) if count is not None else 0


def should_use_high_fidelity(user_message: str, context: Optional[Dict[str, Any]] = None) -> bool:
    """
    True when either the message looks complex or the context is deep.

    Context depth: more than 2 active goals, or a caloric deviation beyond
    the threshold in either direction.
    """
    message = user_message or ""
    if any(trigger.search(message) for trigger in COMPLEXITY_TRIGGERS):
        return True

    context = context or {}
    if _goal_count(context.get("active_goals")) > MAX_GOALS_BEFORE_DEPTH:
        return True

    deviation = _as_number(context.get("calorie_deviation"))
    if deviation is not None and abs(deviation) > CALORIE_DEVIATION_THRESHOLD:
        return True

    return False


# ==============================================================================
# REQUEST PARAMETERS
# ==============================================================================

# Families that reject a custom temperature and take max_completion_tokens
NEWER_GENERATION_PATTERNS = [
    re.compile(r"gpt-4\.1"),
    re.compile(r"gpt-5"),
    re.compile(r"(^|/)o[134](-|$)"),
]

DEFAULT_TEMPERATURE = 0.7


def is_newer_generation(model: str) -> bool:
    return any(p.search(model or "") for p in NEWER_GENERATION_PATTERNS)


def get_model_parameters(model: str, max_tokens: Optional[int] = None) -> Dict[str, Any]:
    """Token cap for every model; older families additionally get a fixed temperature."""
    cap = max_tokens or Settings.MAX_OUTPUT_TOKENS
    if is_newer_generation(model):
        return {"max_completion_tokens": cap}
    return {"max_tokens": cap, "temperature": DEFAULT_TEMPERATURE}


# ==============================================================================
# TASK ROUTING
# ==============================================================================

RESEARCH_TRIGGERS = [
    re.compile(p, re.IGNORECASE) for p in [
        r"studien?\b", r"research", r"pubmed", r"evidenz", r"wissenschaft",
        r"meta-analyse", r"clinical trial", r"gibt es studien", r"forschungslage",
    ]
]

TOOL_TRIGGERS = [
    re.compile(p, re.IGNORECASE) for p in [
        r"\b(erstell|generier|berechn|analys|zeig|plan)\w*\b.*\b(plan|workout|ern.hrung|rezept|blutwert)",
        r"mein.*(gewicht|kalorien|makros|fortschritt)",
        r"tracke?|logge?|speicher",
        r"wie viel.*(protein|kcal|kalorien)",
    ]
]

ANALYSIS_TRIGGERS = [
    re.compile(p, re.IGNORECASE) for p in [
        r"erkl.r.*detail", r"warum.*genau", r"vergleich", r"unterschied.*zwischen",
        r"optimier", r"strategie", r"langfristig", r"periodisierung",
    ]
]


def detect_task_type(text: str, context: Optional[Dict[str, Any]] = None) -> str:
    """Classify a turn as vision | research | tools | analysis | chat."""
    context = context or {}
    text = text or ""

    if context.get("has_images"):
        return "vision"
    if any(t.search(text) for t in RESEARCH_TRIGGERS):
        return "research"
    if context.get("requires_tools") or any(t.search(text) for t in TOOL_TRIGGERS):
        return "tools"
    complexity = _as_number(context.get("complexity"))
    if any(t.search(text) for t in ANALYSIS_TRIGGERS) or (complexity is not None and complexity > 0.7):
        return "analysis"
    return "chat"


def fallback_model(failed_model: str, candidates: Optional[List[str]] = None) -> str:
    """Next model to try after a provider failure (rate limit / 5xx)."""
    candidates = candidates or [Settings.MODEL_BALANCED, Settings.MODEL_PREMIUM, Settings.MODEL_LIGHTWEIGHT]
    for candidate in candidates:
        if candidate != failed_model:
            return candidate
    return Settings.MODEL_BALANCED
