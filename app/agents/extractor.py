"""Best-effort recovery of JSON records from opaque generation payloads.

The generation backends do not promise a response shape. A payload may be a
mapping with the record at the top level, a string holding fenced or bare
JSON, a mapping that wraps such a string under ``output``/``message``/
``response``, or an agent transcript whose ``steps`` carry the record inside a
tool call or a message-creation step. ``ResponseExtractor`` runs a fixed chain
of strategies over the payload and returns the first record that has at least
one of the required fields.
"""
from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Any, Callable

from app.services.logger import logger

Record = dict[str, Any]

# Known locations of the generated text, in priority order.
DIRECT_LOCATIONS: tuple[tuple[str, ...], ...] = (
    ("output",),
    ("message",),
    ("response", "message"),
    ("response", "output"),
)
STEP_TYPES = ("tool_call", "message_creation")
STEP_CONTENT_LOCATIONS: tuple[tuple[str, ...], ...] = (
    ("content",),
    ("params", "data"),
    ("results",),
)
MAX_DEPTH = 4

_FENCE_OPEN = re.compile(r"^```[a-zA-Z0-9_-]*\s*")
_FENCE_CLOSE = re.compile(r"\s*```$")
_BRACES = re.compile(r"\{[\s\S]*\}")


@dataclass(frozen=True)
class Strategy:
    name: str
    run: Callable[["ResponseExtractor", Any, int], Record | None]


def _lookup(payload: Any, path: tuple[str, ...]) -> Any:
    node = payload
    for key in path:
        if not isinstance(node, dict) or key not in node:
            return None
        node = node[key]
    return node


def strip_fences(text: str) -> str:
    """Remove a leading/trailing markdown code fence, if present."""
    clean = text.strip()
    clean = _FENCE_OPEN.sub("", clean)
    clean = _FENCE_CLOSE.sub("", clean)
    return clean.strip()


class ResponseExtractor:
    """Ordered, short-circuiting strategy chain over one opaque payload."""

    def __init__(self, required_fields: tuple[str, ...]):
        if not required_fields:
            raise ValueError("At least one required field is needed")
        self.required_fields = required_fields
        self.strategies: tuple[Strategy, ...] = (
            Strategy("direct", ResponseExtractor._direct),
            Strategy("fenced", ResponseExtractor._fenced),
            Strategy("braces", ResponseExtractor._braces),
            Strategy("steps", ResponseExtractor._steps),
            Strategy("serialized", ResponseExtractor._serialized),
        )
        self.last_strategy: str | None = None

    def extract(self, payload: Any) -> Record | None:
        record, strategy = self.extract_with_strategy(payload)
        self.last_strategy = strategy
        return record

    def extract_with_strategy(self, payload: Any) -> tuple[Record | None, str | None]:
        return self._run_chain(payload, 0)

    def is_valid(self, candidate: Any) -> bool:
        if not isinstance(candidate, dict):
            return False
        for name in self.required_fields:
            value = candidate.get(name)
            if value is None:
                continue
            if isinstance(value, str) and not value.strip():
                continue
            return True
        return False

    # --- chain ---

    def _run_chain(self, payload: Any, depth: int) -> tuple[Record | None, str | None]:
        if depth > MAX_DEPTH:
            return None, None
        for strategy in self.strategies:
            try:
                record = strategy.run(self, payload, depth)
            except Exception as exc:
                logger.debug(f"Extraction strategy '{strategy.name}' raised: {exc}")
                record = None
            if record is not None:
                return record, strategy.name
        return None, None

    def _accept(self, value: Any, depth: int) -> Record | None:
        """Validate a parsed value, unwrapping JSON-in-a-string and known wrappers."""
        if depth > MAX_DEPTH:
            return None
        if self.is_valid(value):
            return value
        if isinstance(value, str):
            return self._parse_text(value, depth + 1)
        if isinstance(value, dict):
            for path in DIRECT_LOCATIONS:
                inner = _lookup(value, path)
                if inner is not None and inner is not value:
                    record = self._accept(inner, depth + 1)
                    if record is not None:
                        return record
        return None

    def _parse_text(self, text: str, depth: int) -> Record | None:
        record = self._parse_fenced(text, depth)
        if record is not None:
            return record
        return self._parse_braces(text, depth)

    def _parse_fenced(self, text: str, depth: int) -> Record | None:
        try:
            parsed = json.loads(strip_fences(text))
        except (json.JSONDecodeError, ValueError):
            return None
        return self._accept(parsed, depth)

    def _parse_braces(self, text: str, depth: int) -> Record | None:
        match = _BRACES.search(text)
        if not match:
            return None
        try:
            parsed = json.loads(match.group(0))
        except (json.JSONDecodeError, ValueError):
            return None
        return self._accept(parsed, depth)

    def _candidates(self, payload: Any) -> list[Any]:
        if isinstance(payload, str):
            return [payload]
        candidates: list[Any] = []
        for path in DIRECT_LOCATIONS:
            value = _lookup(payload, path)
            if value is not None:
                candidates.append(value)
        return candidates

    # --- strategies ---

    def _direct(self, payload: Any, depth: int) -> Record | None:
        if self.is_valid(payload):
            return payload
        for candidate in self._candidates(payload):
            if self.is_valid(candidate):
                return candidate
        return None

    def _fenced(self, payload: Any, depth: int) -> Record | None:
        for candidate in self._candidates(payload):
            if isinstance(candidate, str):
                record = self._parse_fenced(candidate, depth)
                if record is not None:
                    return record
        return None

    def _braces(self, payload: Any, depth: int) -> Record | None:
        for candidate in self._candidates(payload):
            if isinstance(candidate, str):
                record = self._parse_braces(candidate, depth)
                if record is not None:
                    return record
        return None

    def _steps(self, payload: Any, depth: int) -> Record | None:
        steps = _lookup(payload, ("steps",))
        if steps is None:
            steps = _lookup(payload, ("response", "steps"))
        if not isinstance(steps, list):
            return None
        for step in steps:
            if not isinstance(step, dict) or step.get("type") not in STEP_TYPES:
                continue
            for path in STEP_CONTENT_LOCATIONS:
                embedded = _lookup(step, path)
                if embedded is None:
                    continue
                record, _ = self._run_chain(embedded, depth + 1)
                if record is not None:
                    return record
        return None

    def _serialized(self, payload: Any, depth: int) -> Record | None:
        if isinstance(payload, str):
            text = payload
        else:
            text = json.dumps(payload, default=str)
        return self._parse_text(text, depth)
