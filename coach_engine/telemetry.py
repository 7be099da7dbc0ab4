"""
Coach Telemetry Sink
====================

Best-effort recording of:
- trace stages (one trace_id per conversational turn)
- unmet-tool events (turns answered without a structured tool)

Nothing in here may fail a user-facing reply: every write error is
caught and logged as a warning. During a turn records are collected in a
TelemetryBuffer and written after the reply has been sent.
"""

from typing import Optional, Any, Callable, List
import json
import logging

from coach_engine.repository import CoachStateRepository, store_from_request_context
from coach_engine.schemas import TraceEntry, UnmetToolEvent

MAX_TRACE_PAYLOAD_CHARS = 4000

# Builds a repository when the caller did not pass one. Replaceable in tests.
store_factory: Callable[[], CoachStateRepository] = store_from_request_context


def soft_truncate(data: Any, max_chars: int = MAX_TRACE_PAYLOAD_CHARS) -> Any:
    """
    Keep trace payloads bounded.
    Small payloads pass through untouched; oversized ones are replaced by a
    preview string so the record stays valid JSON.
    """
    try:
        serialized = json.dumps(data, ensure_ascii=False, default=str)
    except (TypeError, ValueError):
        serialized = str(data)
    if len(serialized) <= max_chars:
        return data
    return {
        "truncated": True,
        "original_chars": len(serialized),
        "preview": serialized[:max_chars]
    }


def log_trace(entry: TraceEntry, store: Optional[CoachStateRepository] = None) -> None:
    """
    Make a trace stage observable.
    Always emits one JSON log line; additionally persists it when a store is given.
    """
    data = soft_truncate(entry.data)
    try:
        logging.info(json.dumps(
            {"trace_id": entry.trace_id, "stage": entry.stage, "data": data},
            ensure_ascii=False,
            default=str
        ))
    except (TypeError, ValueError) as e:
        logging.warning(f"Trace {entry.trace_id}/{entry.stage} not serializable: {e}")

    if store is not None:
        _persist_trace(store, TraceEntry(trace_id=entry.trace_id, stage=entry.stage, data=data))


def _persist_trace(store: CoachStateRepository, entry: TraceEntry) -> bool:
    try:
        store.append_trace(entry)
        return True
    except Exception as e:
        logging.warning(f"Failed to persist trace {entry.trace_id}/{entry.stage}: {e}")
        return False


def log_unmet_tool(event: UnmetToolEvent, store: Optional[CoachStateRepository] = None) -> None:
    """
    Persist an unmet-tool event for tool-gap analysis.
    Without an explicit store, one is built from the ambient request context.
    """
    owned = None
    try:
        if store is None:
            store = owned = store_factory()
        store.append_unmet_tool(event)
        logging.info(f"Unmet tool recorded for user {event.user_id} (trace {event.trace_id})")
    except Exception as e:
        logging.warning(f"Failed to record unmet tool event for trace {event.trace_id}: {e}")
    finally:
        if owned is not None:
            try:
                owned.close()
            except Exception as e:
                logging.warning(f"Failed to close telemetry session: {e}")


class TelemetryBuffer:
    """
    Telemetry records of in-flight turns.

    log_trace writes the JSON log line right away and queues the database
    row; log_unmet_tool only queues. flush() does the writes, typically from
    a background task once the reply is out, so a slow database never delays
    a turn.
    """

    def __init__(self):
        self._traces: List[TraceEntry] = []
        self._unmet: List[UnmetToolEvent] = []

    def __len__(self) -> int:
        return len(self._traces) + len(self._unmet)

    def log_trace(self, entry: TraceEntry) -> None:
        log_trace(entry)
        self._traces.append(TraceEntry(trace_id=entry.trace_id, stage=entry.stage,
                                       data=soft_truncate(entry.data)))

    def log_unmet_tool(self, event: UnmetToolEvent) -> None:
        self._unmet.append(event)

    def flush(self, store: Optional[CoachStateRepository] = None) -> int:
        """
        Persist and drain queued records. Returns how many rows were written.
        Without a store one is built by store_factory and closed afterwards.
        """
        traces, self._traces = self._traces, []
        unmet, self._unmet = self._unmet, []
        if not traces and not unmet:
            return 0

        owned = None
        if store is None:
            try:
                store = owned = store_factory()
            except Exception as e:
                logging.warning(f"Dropping {len(traces) + len(unmet)} telemetry records, no store: {e}")
                return 0

        written = 0
        try:
            for entry in traces:
                if _persist_trace(store, entry):
                    written += 1
            for event in unmet:
                try:
                    store.append_unmet_tool(event)
                    written += 1
                    logging.info(f"Unmet tool recorded for user {event.user_id} (trace {event.trace_id})")
                except Exception as e:
                    logging.warning(f"Failed to record unmet tool event for trace {event.trace_id}: {e}")
        finally:
            if owned is not None:
                try:
                    owned.close()
                except Exception as e:
                    logging.warning(f"Failed to close telemetry session: {e}")
        return written
