from __future__ import annotations

import time
from typing import Any
from uuid import uuid4

from app.agents.capability import GenerationCapability
from app.agents.extractor import ResponseExtractor
from app.models.analysis import (
    ENERGY_LEVELS,
    RATING_LEVELS,
    PerspectiveFailure,
    PerspectiveOutcome,
    PrimaryRecord,
    SecondaryRecord,
)
from app.services import logger as log_service
from app.services.logger import logger

REACTION_FIELDS = ("feedback_text",)
RATING_FIELDS = ("relatability", "laugh_potential", "crowd_energy")

DEFAULT_PERSPECTIVES = (
    "Literal",
    "Inferred",
    "Ambiguity Spotter",
    "The Skeptic",
    "The Fan",
    "The Surrealist",
)


def role_id(role: str) -> str:
    """'The Fan' -> 'the_fan'."""
    return role.strip().lower().replace(" ", "_")


def build_perspective_prompt(role: str, line_text: str) -> str:
    rid = role_id(role)
    return (
        f'Act as the "{role}" audience persona.\n'
        f'Analyze this standup line: "{line_text.strip()}"\n\n'
        "Return a SINGLE JSON object with this structure:\n"
        "{\n"
        f'  "agent_mode": "{rid}",\n'
        f'  "feedback_text": "Your reaction as {role}...",\n'
        '  "relatability": "High/Medium/Low",\n'
        '  "laugh_potential": "High/Medium/Low",\n'
        '  "crowd_energy": "Hot/Warm/Cold",\n'
        '  "reason_codes": ["tag1", "tag2"],\n'
        '  "concepts": [\n'
        "    {\n"
        '      "angle_name": "Name of the comedy angle spotted",\n'
        '      "explanation": "Why this angle works from your perspective",\n'
        '      "exploration_direction": "How to expand on this"\n'
        "    }\n"
        "  ]\n"
        "}\n"
    )


def _normalize_level(value: Any, allowed: tuple[str, ...]) -> str | None:
    if not isinstance(value, str):
        return None
    lowered = value.strip().lower()
    return lowered if lowered in allowed else None


def _normalize_tags(value: Any) -> list[str]:
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, list):
        return []
    tags: list[str] = []
    for item in value:
        if isinstance(item, str) and item.strip():
            tags.append(item.strip())
    return tags


def _text(value: Any) -> str:
    return value.strip() if isinstance(value, str) else ""


def has_minimal_shape(record: dict[str, Any]) -> bool:
    """A reaction or at least one rating must be present."""
    for name in REACTION_FIELDS + RATING_FIELDS:
        value = record.get(name)
        if isinstance(value, str) and value.strip():
            return True
    return False


class PerspectiveWorker:
    """Runs one audience persona against a line.

    Failures never escape ``run``: the caller gets a ``PerspectiveOutcome``
    with either a record or a failure reason.
    """

    def __init__(self, capability: GenerationCapability, extractor: ResponseExtractor | None = None):
        self.capability = capability
        self.extractor = extractor or ResponseExtractor(REACTION_FIELDS + RATING_FIELDS)

    async def run(self, role: str, line_text: str, analysis_id: str) -> PerspectiveOutcome:
        rid = role_id(role)
        conversation_id = f"{analysis_id}-{rid}"
        logger.info(f"Starting perspective: {role} ({conversation_id})")
        t0 = time.monotonic()

        try:
            payload = await self.capability.invoke(
                conversation_id, build_perspective_prompt(role, line_text)
            )
        except Exception as e:
            return self._failed(analysis_id, role, f"capability call failed: {e}")

        raw, strategy = self.extractor.extract_with_strategy(payload)
        if raw is None:
            return self._failed(analysis_id, role, "no structured record in response")
        if not has_minimal_shape(raw):
            return self._failed(analysis_id, role, "record has neither reaction nor rating")

        record = self._to_record(raw, rid)
        secondary = derive_secondary(record, analysis_id)
        log_service.log_analysis_step(
            analysis_id,
            step_type=f"perspective_{rid}",
            status="completed",
            data={
                "strategy": strategy,
                "concepts": len(secondary),
                "duration_ms": int((time.monotonic() - t0) * 1000),
            },
        )
        return PerspectiveOutcome(role=role, record=record, secondary=secondary)

    @staticmethod
    def _to_record(raw: dict[str, Any], rid: str) -> PrimaryRecord:
        concepts = raw.get("concepts")
        return PrimaryRecord(
            # Identity comes from the request, never from the generated text.
            feedback_id=f"f_{rid}_{uuid4().hex[:12]}",
            agent_mode=rid,
            feedback_text=_text(raw.get("feedback_text")),
            relatability=_normalize_level(raw.get("relatability"), RATING_LEVELS),
            laugh_potential=_normalize_level(raw.get("laugh_potential"), RATING_LEVELS),
            crowd_energy=_normalize_level(raw.get("crowd_energy"), ENERGY_LEVELS),
            reason_codes=_normalize_tags(raw.get("reason_codes")),
            concepts=[c for c in concepts if isinstance(c, dict)] if isinstance(concepts, list) else [],
        )

    @staticmethod
    def _failed(analysis_id: str, role: str, reason: str) -> PerspectiveOutcome:
        logger.warning(f"Skipping perspective {role}: {reason}")
        log_service.log_analysis_step(
            analysis_id,
            step_type=f"perspective_{role_id(role)}",
            status="skipped",
            data={"reason": reason},
        )
        return PerspectiveOutcome(role=role, failure=PerspectiveFailure(role=role, reason=reason))


def derive_secondary(record: PrimaryRecord, analysis_id: str) -> list[SecondaryRecord]:
    """Exploration angles embedded in a perspective record, in their original order."""
    return [
        SecondaryRecord(
            concept_id=f"c_{record.feedback_id}_{idx}",
            parent_feedback_id=record.feedback_id,
            analysis_id=analysis_id,
            angle_name=_text(concept.get("angle_name")),
            explanation=_text(concept.get("explanation")),
            exploration_direction=_text(concept.get("exploration_direction")),
        )
        for idx, concept in enumerate(record.concepts)
    ]
