"""
Manual Answer Builder
=====================

Free-text coach answer for turns no tool can serve. Bound to one turn:
the chosen models, the user's name and the rolling history (so the coach
does not repeat itself).
"""

from typing import List, Optional
import logging

from coach_engine.llm_client import LLMClient, LLMError
from coach_engine.model_router import get_model_parameters, fallback_model
from coach_engine.schemas import Event, EventType, Intent, MessageHistoryItem, ModelChoice

MAX_HISTORY_SNIPPET = 200


COACH_PERSONA = """Du bist ARES, ein erfahrener Fitness-, Trainings- und Ernährungscoach.

TON:
- Duze den Nutzer. Direkt, warm, kompetent.
- Kurze Sätze. Keine Floskeln wie "Hast du noch Fragen?".
- Wiederhole keine Fragen oder Tipps, die im Verlauf schon vorkamen.

REGELN:
- Keine medizinischen Diagnosen.
- Wenn eine Aktion (Mahlzeit, Training, Supplement) nicht direkt möglich ist, erkläre kurz, was der Nutzer stattdessen tun kann.
"""


class ManualAnswerBuilder:
    """Callable (intent, event) -> reply text for the fallback flow."""

    def __init__(
        self,
        llm: LLMClient,
        models: ModelChoice,
        history: Optional[List[MessageHistoryItem]] = None,
        user_name: Optional[str] = None
    ):
        self.llm = llm
        self.models = models
        self.history = history or []
        self.user_name = user_name

    def build_prompt(self, intent: Intent, event: Event) -> str:
        lines = []
        if self.user_name:
            lines.append(f"NUTZER: {self.user_name}")

        if self.history:
            lines.append("BEREITS GESAGT (nicht wiederholen):")
            for item in self.history:
                snippet = item.text[:MAX_HISTORY_SNIPPET]
                if len(item.text) > MAX_HISTORY_SNIPPET:
                    snippet += "..."
                lines.append(f"- [{item.kind}] {snippet}")

        lines.append(f"ERKANNTER INTENT: {intent.name} ({intent.score:.2f})")

        if event.type == EventType.IMAGE:
            lines.append(f"NUTZER HAT EIN BILD GESCHICKT: {event.url}")
        if event.text:
            lines.append(f"NACHRICHT: {event.text}")

        lines.append("ANTWORT:")
        return "\n".join(lines)

    def __call__(self, intent: Intent, event: Event) -> str:
        prompt = self.build_prompt(intent, event)
        model = self.models.chat
        try:
            response = self.llm.generate(
                prompt, model, system_instruction=COACH_PERSONA, **get_model_parameters(model)
            )
        except LLMError as e:
            if not e.retryable:
                raise
            retry_model = fallback_model(model)
            logging.warning(f"{model} failed ({e}), retrying with {retry_model}")
            response = self.llm.generate(
                prompt, retry_model, system_instruction=COACH_PERSONA, **get_model_parameters(retry_model)
            )
        return response.text
