"""
Fallback Flow
=============

Answer a turn manually when no structured tool can serve the intent, and
record that the tool catalog fell short. The caller decides when to take
this path; once invoked it always answers.
"""

from dataclasses import dataclass, field
from typing import Optional, Callable, Dict, Any, Awaitable, Union
import inspect
import logging

from coach_engine.schemas import Event, Intent, TraceEntry, UnmetToolEvent

FALLBACK_STAGE = "fallback_llm_only"


@dataclass
class FallbackDeps:
    build_manual_answer: Callable[[Intent, Event], Union[str, Awaitable[str]]]
    log_unmet_tool: Callable[[UnmetToolEvent], Any]
    log_trace: Optional[Callable[[TraceEntry], Any]] = None


@dataclass
class FallbackOptions:
    source: str = "chat"


@dataclass
class FallbackResult:
    reply: str
    trace_id: str
    flags: Dict[str, bool] = field(default_factory=lambda: {"unmet_tool": True})


async def call_maybe_async(fn: Callable, *args):
    """Call fn and await the result when it is awaitable."""
    result = fn(*args)
    if inspect.isawaitable(result):
        result = await result
    return result


async def fallback(
    user_id: str,
    trace_id: str,
    event: Event,
    intent: Intent,
    deps: FallbackDeps,
    opts: Optional[FallbackOptions] = None
) -> FallbackResult:
    """
    Build a free-text reply and log the unmet tool.

    Errors from build_manual_answer propagate: without an answer there is no
    reply. Logging errors never do.
    """
    opts = opts or FallbackOptions()

    # Returned verbatim, empty string included
    reply = await call_maybe_async(deps.build_manual_answer, intent, event)

    unmet = UnmetToolEvent(
        user_id=user_id,
        trace_id=trace_id,
        event=event.to_dict(),
        intent=intent.to_dict(),
        handled_manually=True,
        error=None,
        source=opts.source,
        client_event_id=event.client_event_id
    )
    try:
        await call_maybe_async(deps.log_unmet_tool, unmet)
    except Exception as e:
        logging.warning(f"Unmet tool logging failed for trace {trace_id}: {e}")

    if deps.log_trace is not None:
        try:
            await call_maybe_async(deps.log_trace, TraceEntry(
                trace_id=trace_id,
                stage=FALLBACK_STAGE,
                data={"intent": intent.to_dict()}
            ))
        except Exception as e:
            logging.warning(f"Trace logging failed for trace {trace_id}: {e}")

    return FallbackResult(reply=reply, trace_id=trace_id)
