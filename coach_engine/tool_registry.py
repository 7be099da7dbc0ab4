"""
Tool Registry
=============

Which intents a structured tool can serve. The tools themselves live
outside the engine; the orchestrator only needs their names to decide
between tool dispatch and the fallback flow.
"""

from dataclasses import dataclass, field
from typing import List, Dict, Optional


@dataclass
class ToolCapability:
    """Describes what a tool can do."""
    name: str
    intent: str
    description: str
    use_when: List[str] = field(default_factory=list)  # Keywords for the classifier prompt


TOOL_REGISTRY: Dict[str, ToolCapability] = {

    "log_workout": ToolCapability(
        name="log_workout",
        intent="training",
        description="Trainingseinheit mit Sätzen, Wiederholungen und Gewicht erfassen",
        use_when=["3x10 bankdrücken 80kg", "squat", "kreuzheben", "rpe 8"]
    ),

    "log_meal": ToolCapability(
        name="log_meal",
        intent="meal",
        description="Mahlzeit analysieren und ins Tagebuch übernehmen",
        use_when=["frühstück", "mittagessen", "kalorien", "protein", "snack"]
    ),

    "log_weight": ToolCapability(
        name="log_weight",
        intent="weight",
        description="Körpergewicht speichern",
        use_when=["gewicht", "gewogen", "82.4 kg"]
    ),

    "log_diary": ToolCapability(
        name="log_diary",
        intent="diary",
        description="Tagebuch- oder Stimmungseintrag speichern",
        use_when=["tagebuch", "journal", "notiz", "stimmung"]
    ),

    "log_supplement": ToolCapability(
        name="log_supplement",
        intent="supplement",
        description="Supplement zum Stack hinzufügen",
        use_when=["kreatin", "vitamin d", "omega 3", "supplement"]
    ),
}

# Intents the classifier may return that no tool serves
TOOL_LESS_INTENTS = {"advice", "chat", "image", "unknown"}


def get_tool_for_intent(intent_name: str) -> Optional[str]:
    """Tool name for an intent, None if only a free-text answer fits."""
    for cap in TOOL_REGISTRY.values():
        if cap.intent == intent_name:
            return cap.name
    return None


def valid_intents() -> List[str]:
    return [cap.intent for cap in TOOL_REGISTRY.values()] + sorted(TOOL_LESS_INTENTS)


def get_tool_capabilities_prompt() -> str:
    """Prompt section listing the available tools for the classifier."""
    lines = ["VERFÜGBARE TOOLS:"]
    lines.append("")

    for name, cap in TOOL_REGISTRY.items():
        lines.append(f"### {cap.intent} -> {name}")
        lines.append(f"Beschreibung: {cap.description}")
        lines.append(f"Beispiele: {', '.join(cap.use_when[:5])}")
        lines.append("")

    lines.append("Ohne Tool: advice (Rat, Tipp, Empfehlung), chat (alles andere)")
    return "\n".join(lines)
