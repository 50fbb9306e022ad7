from __future__ import annotations

import re
from typing import Any

from app.agents.capability import GenerationCapability
from app.agents.extractor import ResponseExtractor
from app.models.analysis import RISK_LEVELS, PrimaryRecord, SynthesisRecord
from app.services.logger import logger

CONFLICT_SEPARATOR = " vs "
_PUNCTUATION = re.compile(r"[^\w\s]")
_VS_SPLIT = re.compile(r"\s+vs\s+")


def canonicalize_conflict(conflict: Any) -> str | None:
    """Normalize a two-party conflict label so that order does not matter.

    "Literal vs. The Fan" and "The Fan vs Literal" both become
    "literal vs the fan".
    """
    if not isinstance(conflict, str) or not conflict.strip():
        return None
    normalized = _PUNCTUATION.sub("", conflict.lower())
    normalized = " ".join(normalized.split())
    parts = [p.strip() for p in _VS_SPLIT.split(f" {normalized} ") if p.strip()]
    if len(parts) < 2:
        return normalized
    return CONFLICT_SEPARATOR.join(sorted(parts))


def insufficient_data_record() -> SynthesisRecord:
    return SynthesisRecord(
        divergence_score=0,
        risk_level="low",
        primary_conflict="N/A",
        conflict_summary="Insufficient data for analysis",
        recommendation="Need more reactions to provide meaningful review",
    )


def default_record() -> SynthesisRecord:
    return SynthesisRecord(
        divergence_score=0,
        risk_level="unknown",
        primary_conflict="None detected",
        conflict_summary="Insufficient data for analysis",
        recommendation="No recommendation available",
        reasoning="Analysis pending...",
    )


def build_review_prompt(analysis_id: str, line_text: str, primaries: list[PrimaryRecord]) -> str:
    reactions = "\n\n".join(
        f"{r.agent_mode.upper()}:\n"
        f"  Feedback: {r.feedback_text}\n"
        f"  Relatability: {r.relatability}, Laugh Potential: {r.laugh_potential}, "
        f"Crowd Energy: {r.crowd_energy}\n"
        f"  Reason Codes: {', '.join(r.reason_codes)}"
        for r in primaries
    )
    return (
        f"set_id={analysis_id}\n"
        f"line_text={line_text}\n\n"
        f"REACTIONS:\n{reactions}\n\n"
        f"Analyze these {len(primaries)} reactions and provide your assessment.\n"
        "1. Analyze divergence: how much do the perspectives disagree?\n"
        "2. Identify the primary conflict (which two disagree most)\n"
        "3. Assess risk level for live performance\n"
        "4. Provide a specific, actionable recommendation\n\n"
        "Respond ONLY with this JSON:\n"
        "{\n"
        '  "divergence_score": 0-100,\n'
        '  "risk_level": "low" | "medium" | "high",\n'
        '  "primary_conflict": "e.g., literal vs inferred",\n'
        '  "conflict_summary": "1 sentence explaining the core tension",\n'
        '  "recommendation": "1-2 sentences of specific advice",\n'
        '  "reasoning": "optional notes"\n'
        "}\n"
    )


def _coerce_score(value: Any) -> float:
    if isinstance(value, bool):
        return 0
    if isinstance(value, (int, float)):
        return value
    if isinstance(value, str):
        try:
            number = float(value.strip().rstrip("%"))
        except ValueError:
            return 0
        return int(number) if number.is_integer() else number
    return 0


def _coerce_risk(value: Any) -> str:
    if isinstance(value, str) and value.strip().lower() in RISK_LEVELS:
        return value.strip().lower()
    return "unknown"


class ReviewerAgent:
    """Synthesizes the perspectives into one divergence/risk assessment."""

    name = "reviewer"

    def __init__(self, capability: GenerationCapability, extractor: ResponseExtractor | None = None):
        self.capability = capability
        self.extractor = extractor or ResponseExtractor(("divergence_score", "risk_level"))

    async def synthesize(
        self,
        analysis_id: str,
        line_text: str,
        primaries: list[PrimaryRecord],
    ) -> SynthesisRecord:
        if len(primaries) < 2:
            logger.info("Insufficient perspective data for review")
            return insufficient_data_record()

        prompt = build_review_prompt(analysis_id, line_text, primaries)
        payload = await self.capability.invoke(analysis_id, prompt)

        raw, strategy = self.extractor.extract_with_strategy(payload)
        if raw is None:
            logger.warning(f"Reviewer response for {analysis_id} had no usable record")
            return default_record()

        fallback = default_record()
        record = SynthesisRecord(
            divergence_score=_coerce_score(raw.get("divergence_score")),
            risk_level=_coerce_risk(raw.get("risk_level")),
            primary_conflict=(
                canonicalize_conflict(raw.get("primary_conflict")) or fallback.primary_conflict
            ),
            conflict_summary=str(raw.get("conflict_summary") or fallback.conflict_summary),
            recommendation=str(raw.get("recommendation") or fallback.recommendation),
            reasoning=raw.get("reasoning") if isinstance(raw.get("reasoning"), str) else None,
        )
        logger.info(
            f"Parsed review via {strategy}: divergence={record.divergence_score}, "
            f"risk={record.risk_level}, conflict={record.primary_conflict}"
        )
        return record
