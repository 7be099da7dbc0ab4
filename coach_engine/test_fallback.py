"""
Fallback Flow Tests
===================
"""

import asyncio
from unittest.mock import Mock

import pytest

from coach_engine.fallback import fallback, FallbackDeps, FallbackOptions, FALLBACK_STAGE
from coach_engine.schemas import Event, EventType, Intent, UnmetToolEvent, TraceEntry


EVENT = Event(type=EventType.TEXT, client_event_id="c-1", text="Wie viel Protein brauche ich?")
INTENT = Intent(name="advice", score=0.8)


def run(coro):
    return asyncio.run(coro)


class TestFallback:

    def test_reply_and_unmet_flag(self):
        unmet = Mock()
        deps = FallbackDeps(build_manual_answer=lambda i, e: "Etwa 1,8 g pro kg.", log_unmet_tool=unmet)

        result = run(fallback("u1", "t-1", EVENT, INTENT, deps))

        assert result.reply == "Etwa 1,8 g pro kg."
        assert result.trace_id == "t-1"
        assert result.flags == {"unmet_tool": True}

    def test_unmet_tool_logged_exactly_once(self):
        unmet = Mock()
        deps = FallbackDeps(build_manual_answer=lambda i, e: "x", log_unmet_tool=unmet)

        run(fallback("u1", "t-1", EVENT, INTENT, deps, FallbackOptions(source="voice")))

        unmet.assert_called_once()
        logged = unmet.call_args[0][0]
        assert isinstance(logged, UnmetToolEvent)
        assert logged.handled_manually is True
        assert logged.error is None
        assert logged.source == "voice"
        assert logged.client_event_id == "c-1"
        assert logged.intent == {"name": "advice", "score": 0.8, "tool_candidate": None}
        assert logged.event["type"] == "TEXT"

    def test_trace_stage_emitted(self):
        traces = []
        deps = FallbackDeps(
            build_manual_answer=lambda i, e: "x",
            log_unmet_tool=Mock(),
            log_trace=traces.append
        )

        run(fallback("u1", "t-1", EVENT, INTENT, deps))

        assert len(traces) == 1
        assert isinstance(traces[0], TraceEntry)
        assert traces[0].stage == FALLBACK_STAGE == "fallback_llm_only"
        assert traces[0].trace_id == "t-1"

    def test_async_answer_builder(self):
        async def build(intent, event):
            await asyncio.sleep(0)
            return "async reply"

        deps = FallbackDeps(build_manual_answer=build, log_unmet_tool=Mock())

        assert run(fallback("u1", "t-1", EVENT, INTENT, deps)).reply == "async reply"

    def test_async_unmet_logger_is_awaited(self):
        seen = []

        async def log_unmet(event):
            seen.append(event.trace_id)

        deps = FallbackDeps(build_manual_answer=lambda i, e: "x", log_unmet_tool=log_unmet)
        run(fallback("u1", "t-9", EVENT, INTENT, deps))

        assert seen == ["t-9"]

    def test_builder_error_propagates(self):
        unmet = Mock()

        def explode(intent, event):
            raise RuntimeError("llm down")

        deps = FallbackDeps(build_manual_answer=explode, log_unmet_tool=unmet)

        with pytest.raises(RuntimeError, match="llm down"):
            run(fallback("u1", "t-1", EVENT, INTENT, deps))
        unmet.assert_not_called()

    def test_logging_failures_do_not_abort_reply(self):
        deps = FallbackDeps(
            build_manual_answer=lambda i, e: "still here",
            log_unmet_tool=Mock(side_effect=RuntimeError("db down")),
            log_trace=Mock(side_effect=RuntimeError("db down"))
        )

        result = run(fallback("u1", "t-1", EVENT, INTENT, deps))

        assert result.reply == "still here"
        assert result.flags["unmet_tool"] is True

    def test_empty_reply_returned_verbatim(self):
        deps = FallbackDeps(build_manual_answer=lambda i, e: "", log_unmet_tool=Mock())

        assert run(fallback("u1", "t-1", EVENT, INTENT, deps)).reply == ""
