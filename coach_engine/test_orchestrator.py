"""
Orchestrator Tests
==================

Full turns against in-memory SQLite and the mock LLM client.
"""

import asyncio

import pytest

from config import Settings
from coach_engine.events import EventBus
from coach_engine.llm_client import MockLLMClient, LLMError
from coach_engine.message_history import load_message_history
from coach_engine.models import UnmetToolLog, CoachTrace
from coach_engine.name_resolver import ASK_NAME_TEXT, load_name_state
from coach_engine.orchestrator import CoachOrchestrator, ChatRequest
from coach_engine.schemas import Event, EventType


def text_request(message, trace_id=None, **kwargs):
    return ChatRequest(
        user_id="u1",
        event=Event(type=EventType.TEXT, client_event_id="c-1", text=message),
        trace_id=trace_id,
        **kwargs
    )


@pytest.fixture
def llm():
    return MockLLMClient(text="Klingt gut, weiter so!")


@pytest.fixture
def orchestrator(store, llm, offline_classifier):
    return CoachOrchestrator(store, llm, classifier=offline_classifier)


def run(orchestrator, request, flush=True):
    response = asyncio.run(orchestrator.handle_event(request))
    if flush:
        orchestrator.flush_telemetry(orchestrator.store)
    return response


class TestFallbackTurns:

    def test_first_turn_asks_for_name(self, orchestrator, store):
        response = run(orchestrator, text_request("Hallo"))

        assert response.reply == f"Klingt gut, weiter so!\n\n{ASK_NAME_TEXT}"
        assert response.routed == "fallback"
        assert response.flags["unmet_tool"] is True
        assert response.flags["name_asked"] is True
        assert load_name_state(store, "u1").asked_at is not None

    def test_second_turn_does_not_re_ask(self, orchestrator):
        run(orchestrator, text_request("Hallo"))

        response = run(orchestrator, text_request("Wie geht's?"))

        assert response.reply == "Klingt gut, weiter so!"
        assert "name_asked" not in response.flags

    def test_profile_name_reaches_prompt(self, orchestrator, llm):
        response = run(orchestrator, text_request("Hallo", profile_name="Lena"))

        assert "name_asked" not in response.flags
        assert "NUTZER: Lena" in llm.last_prompt

    def test_unmet_tool_recorded_once_per_turn(self, orchestrator, db):
        run(orchestrator, text_request("Hallo", trace_id="t-1"))

        rows = db.query(UnmetToolLog).filter(UnmetToolLog.trace_id == "t-1").all()
        assert len(rows) == 1
        assert rows[0].handled_manually is True

    def test_traces_share_turn_id(self, orchestrator, store, db):
        run(orchestrator, text_request("Hallo", trace_id="t-1"))

        stages = [row.stage for row in db.query(CoachTrace).filter(CoachTrace.trace_id == "t-1")]
        assert stages[0] == "received"
        assert "intent" in stages
        assert "model_choice" in stages
        assert "fallback_llm_only" in stages
        assert stages[-1] == "reply_send"
        assert store.count_traces("t-1") == len(stages)

    def test_telemetry_waits_for_flush(self, orchestrator, store, db):
        run(orchestrator, text_request("Hallo", trace_id="t-1"), flush=False)

        assert db.query(CoachTrace).count() == 0
        assert db.query(UnmetToolLog).count() == 0

        written = orchestrator.flush_telemetry(store)

        assert written == store.count_traces("t-1") + 1
        assert db.query(UnmetToolLog).count() == 1
        assert orchestrator.flush_telemetry(store) == 0

    def test_generated_trace_id(self, orchestrator):
        assert run(orchestrator, text_request("Hallo")).trace_id

    def test_history_grows_and_feeds_prompt(self, orchestrator, store, llm):
        run(orchestrator, text_request("Hallo", profile_name="Lena"))
        run(orchestrator, text_request("Hast du einen Tipp?", profile_name="Lena"))

        history = load_message_history(store, "u1")
        assert len(history) == 2
        assert history[1].kind == "tip"
        assert "BEREITS GESAGT" in llm.last_prompt

    def test_history_stays_bounded(self, orchestrator, store):
        for n in range(14):
            run(orchestrator, text_request(f"Nachricht {n}", profile_name="Lena"))

        assert len(load_message_history(store, "u1")) == 12

    def test_default_models_for_plain_chat(self, orchestrator, llm):
        response = run(orchestrator, text_request("Hallo"))

        assert response.models.chat == Settings.MODEL_BALANCED
        assert llm.calls[0]["model"] == Settings.MODEL_BALANCED

    def test_complex_question_uses_premium_model(self, orchestrator, llm):
        response = run(orchestrator, text_request("Kannst du mir erklären, warum ich stagniere?"))

        assert response.models.chat == Settings.MODEL_PREMIUM
        assert "temperature" not in llm.calls[0]["params"]

    def test_answer_failure_fails_the_turn(self, store, offline_classifier, db):
        class BrokenLLM:
            def generate(self, prompt, model, system_instruction=None, **params):
                raise LLMError("invalid key", model=model, retryable=False)

        orchestrator = CoachOrchestrator(store, BrokenLLM(), classifier=offline_classifier)

        with pytest.raises(LLMError):
            run(orchestrator, text_request("Hallo", trace_id="t-1"))
        assert db.query(UnmetToolLog).count() == 0

    def test_retryable_failure_retries_other_model(self, store, offline_classifier):
        llm = MockLLMClient(text="Zweiter Versuch.", fail_models={Settings.MODEL_BALANCED})
        orchestrator = CoachOrchestrator(store, llm, classifier=offline_classifier)

        response = run(orchestrator, text_request("Hallo", profile_name="Lena"))

        assert response.reply == "Zweiter Versuch."
        assert len(llm.calls) == 2
        assert llm.calls[1]["model"] != Settings.MODEL_BALANCED


class TestToolTurns:

    def test_tool_dispatch(self, store, llm, offline_classifier, db):
        dispatched = []

        def dispatcher(tool, intent, event, models):
            dispatched.append(tool)
            return "Training gespeichert."

        orchestrator = CoachOrchestrator(store, llm, classifier=offline_classifier, tool_dispatcher=dispatcher)

        response = run(orchestrator, text_request("3x10 Bankdrücken 80kg", profile_name="Lena"))

        assert dispatched == ["log_workout"]
        assert response.reply == "Training gespeichert."
        assert response.routed == "log_workout"
        assert response.flags == {"tool_used": True}
        assert llm.calls == []
        assert db.query(UnmetToolLog).count() == 0

    def test_tool_failure_falls_back(self, store, llm, offline_classifier, db):
        def dispatcher(tool, intent, event, models):
            raise RuntimeError("tool crashed")

        orchestrator = CoachOrchestrator(store, llm, classifier=offline_classifier, tool_dispatcher=dispatcher)

        response = run(orchestrator, text_request("3x10 Bankdrücken 80kg", profile_name="Lena"))

        assert response.routed == "fallback"
        assert response.flags["unmet_tool"] is True
        assert db.query(UnmetToolLog).count() == 1

    def test_tool_without_reply_falls_back(self, store, llm, offline_classifier, db):
        orchestrator = CoachOrchestrator(store, llm, classifier=offline_classifier,
                                         tool_dispatcher=lambda tool, intent, event, models: None)

        response = run(orchestrator, text_request("3x10 Bankdrücken 80kg", profile_name="Lena", trace_id="t-5"))

        assert response.routed == "fallback"
        assert response.reply == "Klingt gut, weiter so!"
        assert "tool_used" not in response.flags
        assert response.flags["unmet_tool"] is True
        stages = [row.stage for row in db.query(CoachTrace).filter(CoachTrace.trace_id == "t-5")]
        assert "tool_error" in stages
        assert "tool_exec" not in stages

    def test_tool_intent_without_dispatcher_is_unmet(self, orchestrator, db):
        response = run(orchestrator, text_request("Frühstück: Porridge", profile_name="Lena"))

        assert response.flags["unmet_tool"] is True
        assert db.query(UnmetToolLog).one().intent["tool_candidate"] == "log_meal"


class TestSessionEndAndEvents:

    def test_end_event(self, orchestrator, llm, store):
        request = ChatRequest(user_id="u1", event=Event(type=EventType.END, client_event_id="c-9"))

        response = run(orchestrator, request)

        assert response.reply == ""
        assert response.routed == "end"
        assert response.flags == {"session_end": True}
        assert llm.calls == []
        assert load_message_history(store, "u1") == []

    def test_bus_events(self, store, llm, offline_classifier):
        bus = EventBus()
        seen = []
        bus.subscribe("unmet_tool", lambda topic, payload: seen.append(topic))
        bus.subscribe("turn_completed", lambda topic, payload: seen.append(topic))
        orchestrator = CoachOrchestrator(store, llm, classifier=offline_classifier, bus=bus)

        run(orchestrator, text_request("Hallo"))

        assert seen == ["unmet_tool", "turn_completed"]


class TestStoreOutage:

    def test_turn_still_answers(self, broken_store, llm, offline_classifier):
        orchestrator = CoachOrchestrator(broken_store, llm, classifier=offline_classifier)

        response = run(orchestrator, text_request("Hallo"))

        assert response.reply == f"Klingt gut, weiter so!\n\n{ASK_NAME_TEXT}"
        assert response.routed == "fallback"
        assert response.flags["unmet_tool"] is True

    def test_unreadable_identity_asks_again(self, broken_store, llm, offline_classifier):
        orchestrator = CoachOrchestrator(broken_store, llm, classifier=offline_classifier)

        run(orchestrator, text_request("Hallo"))
        response = run(orchestrator, text_request("Noch da?"))

        assert response.flags["name_asked"] is True
        assert "BEREITS GESAGT" not in llm.last_prompt

    def test_failed_telemetry_writes_are_dropped(self, broken_store, llm, offline_classifier):
        orchestrator = CoachOrchestrator(broken_store, llm, classifier=offline_classifier)
        run(orchestrator, text_request("Hallo"), flush=False)

        assert orchestrator.flush_telemetry(broken_store) == 0
        assert broken_store.append_unmet_tool.call_count == 1
