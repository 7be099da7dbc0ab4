"""
AI Intent Classifier
====================

Uses Gemini Flash for fast intent classification.
Returns an Intent with:
- name: training, meal, weight, diary, supplement, advice, chat, image, unknown
- score: 0.0-1.0
- tool_candidate: tool that can serve it, only above MIN_TOOL_SCORE

Falls back to German keyword heuristics when no API key is configured or
the model call fails. Never raises for "nothing found": a low-score
Intent is returned instead.
"""

import json
import re
import logging
from typing import Optional, Dict, Any, Tuple, Union
import google.generativeai as genai

from config import Settings
from coach_engine.schemas import Event, EventType, Intent
from coach_engine.tool_registry import (
    get_tool_for_intent, get_tool_capabilities_prompt, valid_intents
)

MIN_TOOL_SCORE = 0.5


CLASSIFICATION_PROMPT = """Du bist der Intent-Klassifikator eines Fitness- und Ernährungscoachs.

{tools}

NACHRICHT: "{message}"

AUFGABE: Analysiere die Nachricht und antworte ausschließlich mit JSON:

```json
{{
  "intent": "<training|meal|weight|diary|supplement|advice|chat>",
  "confidence": <0.0-1.0>
}}
```

WICHTIG:
- Wenn du unsicher bist, gib eine niedrige confidence (0.3-0.6)
- Nur JSON zurückgeben

JSON:"""


SET_PATTERN = re.compile(r"(\d+)\s*(x|×|\*)\s*(\d+)(?:\s*(kg|lb))?", re.IGNORECASE)
RPE_PATTERN = re.compile(r"rpe\s*\d+(?:\.\d+)?", re.IGNORECASE)
EXERCISE_PATTERN = re.compile(r"bankdr|ohp|rudern|latzug|curls|squat|kreuzheben|deadlift|bench|overhead")
MEAL_PATTERN = re.compile(r"essen|mahlzeit|kalorien|protein|frühstück|mittag|abend|snack|meal")
SUPPLEMENT_PATTERN = re.compile(r"supplement|kreatin|creatin|vitamin|omega|magnesium|zink")
WEIGHT_PATTERN = re.compile(r"gewicht|wiegen|gewogen|kg\b")
DIARY_PATTERN = re.compile(r"tagebuch|journal|notiz|stimmung|mood")
ADVICE_PATTERN = re.compile(r"was (wäre|ist) jetzt gut|tipp|\brat\b|empfehlung")


class IntentClassifier:
    """Fast intent classifier using Gemini Flash with JSON output."""

    def __init__(self, api_key: Optional[str] = None, model_name: Optional[str] = None):
        self.api_key = api_key or Settings.GOOGLE_API_KEY
        self.model_name = model_name or Settings.INTENT_MODEL
        if self.api_key:
            genai.configure(api_key=self.api_key)
            self.model = genai.GenerativeModel(self.model_name)
        else:
            self.model = None

    def classify(
        self,
        event: Event,
        return_debug: bool = False
    ) -> Union[Intent, Tuple[Intent, Dict[str, Any]]]:
        """
        Classify a chat event.

        Args:
            event: Incoming event
            return_debug: If True, return (Intent, debug_dict)
        """
        debug_info = {
            "model": self.model_name,
            "raw_response": None,
            "result": None
        }

        if event.type == EventType.IMAGE:
            result = self._classify_image(event)
            debug_info["model"] = "image_rules"
        elif event.type != EventType.TEXT or not (event.text or "").strip():
            result = Intent(name="unknown", score=0.0)
            debug_info["model"] = "empty"
        elif not self.model:
            result = self._fallback_classify(event.text)
            debug_info["model"] = "fallback_regex"
        else:
            try:
                prompt = CLASSIFICATION_PROMPT.format(
                    tools=get_tool_capabilities_prompt(),
                    message=event.text
                )
                response = self.model.generate_content(
                    prompt,
                    generation_config=genai.GenerationConfig(
                        max_output_tokens=100,
                        temperature=0.0  # Deterministic
                    )
                )
                raw_response = response.text.strip()
                debug_info["raw_response"] = raw_response
                result = self._parse_json_response(raw_response)
            except Exception as e:
                logging.warning(f"Intent model failed, using regex fallback: {e}")
                debug_info["error"] = str(e)
                debug_info["model"] = "fallback_regex"
                result = self._fallback_classify(event.text)

        debug_info["result"] = result.to_dict()
        return (result, debug_info) if return_debug else result

    def _with_tool(self, name: str, score: float) -> Intent:
        score = max(0.0, min(1.0, score))
        tool = get_tool_for_intent(name) if score >= MIN_TOOL_SCORE else None
        return Intent(name=name, score=score, tool_candidate=tool)

    def _classify_image(self, event: Event) -> Intent:
        if event.context.get("mode") == "training":
            return self._with_tool("training", 0.9)
        return Intent(name="image", score=0.3)

    def _parse_json_response(self, raw_response: str) -> Intent:
        """Parse JSON from LLM response."""
        try:
            json_match = re.search(r'```json\s*(.*?)\s*```', raw_response, re.DOTALL)
            json_str = json_match.group(1) if json_match else raw_response
            json_str = json_str.strip()

            if json_str.startswith('{') and json_str.endswith('}'):
                data = json.loads(json_str)
                name = data.get("intent", "chat")
                if name not in valid_intents():
                    name = "chat"
                return self._with_tool(name, float(data.get("confidence", 0.5)))
        except (json.JSONDecodeError, ValueError, TypeError):
            pass

        # If JSON parsing fails, try to find an intent name
        for name in valid_intents():
            if re.search(rf"\b{name}\b", raw_response.lower()):
                return self._with_tool(name, 0.6)

        return Intent(name="chat", score=0.3)

    def _fallback_classify(self, message: str) -> Intent:
        """Keyword heuristics if the model is unavailable."""
        msg = message.lower().strip()

        if SET_PATTERN.search(msg) or RPE_PATTERN.search(msg) or EXERCISE_PATTERN.search(msg):
            return self._with_tool("training", 0.85)
        if SUPPLEMENT_PATTERN.search(msg):
            return self._with_tool("supplement", 0.8)
        if MEAL_PATTERN.search(msg):
            return self._with_tool("meal", 0.8)
        if WEIGHT_PATTERN.search(msg):
            return self._with_tool("weight", 0.8)
        if DIARY_PATTERN.search(msg):
            return self._with_tool("diary", 0.8)
        if ADVICE_PATTERN.search(msg):
            return Intent(name="advice", score=0.8)

        return Intent(name="unknown", score=0.2)
