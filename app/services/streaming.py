from __future__ import annotations

import time
from typing import Any

from app.models.analysis import Analysis, SynthesisRecord
from app.models.events import EventType, SSEEvent


def start(analysis_id: str, unit_id: str) -> SSEEvent:
    return SSEEvent(
        event=EventType.START,
        data={"analysis_id": analysis_id, "unit_id": unit_id, "message": "Analysis started..."},
    )


def progress(message: str, **kwargs: Any) -> SSEEvent:
    return SSEEvent(event=EventType.PROGRESS, data={"message": message, **kwargs})


def result_primary(analysis: Analysis) -> SSEEvent:
    """Cumulative perspective results accumulated so far."""
    return SSEEvent(event=EventType.RESULT_PRIMARY, data=analysis.snapshot())


def result_synthesis(synthesis: SynthesisRecord) -> SSEEvent:
    return SSEEvent(event=EventType.RESULT_SYNTHESIS, data={"synthesis": synthesis.to_dict()})


def error(message: str, *, fatal: bool = False) -> SSEEvent:
    data: dict[str, Any] = {"message": message}
    if fatal:
        data["fatal"] = True
    return SSEEvent(event=EventType.ERROR, data=data)


def ping() -> SSEEvent:
    return SSEEvent(event=EventType.PING, data={"timestamp": int(time.time() * 1000)})


def done(analysis_id: str) -> SSEEvent:
    return SSEEvent(event=EventType.DONE, data={"analysis_id": analysis_id})
