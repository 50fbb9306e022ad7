from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class EventType(str, Enum):
    START = "start"
    PROGRESS = "progress"
    RESULT_PRIMARY = "result-primary"
    RESULT_SYNTHESIS = "result-synthesis"
    ERROR = "error"
    PING = "ping"
    DONE = "done"


@dataclass
class SSEEvent:
    event: EventType
    data: dict[str, Any] = field(default_factory=dict)

    def format(self) -> str:
        return f"event: {self.event.value}\ndata: {json.dumps(self.data)}\n\n"

    def to_sse(self) -> dict[str, str]:
        return {"event": self.event.value, "data": json.dumps(self.data)}
