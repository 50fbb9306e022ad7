from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any

DEFAULT_UNIT_ID = "l1"

RATING_LEVELS = ("low", "medium", "high")
ENERGY_LEVELS = ("cold", "warm", "hot")
RISK_LEVELS = ("low", "medium", "high", "unknown")


class Stage(int, Enum):
    PRIMARY = 1
    SECONDARY = 2
    SYNTHESIS = 3


@dataclass(slots=True)
class SecondaryRecord:
    """An exploration angle spotted by one perspective."""

    concept_id: str
    parent_feedback_id: str
    analysis_id: str
    angle_name: str = ""
    explanation: str = ""
    exploration_direction: str = ""

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(slots=True)
class PrimaryRecord:
    """One perspective's reaction to the line."""

    feedback_id: str
    agent_mode: str
    feedback_text: str = ""
    relatability: str | None = None
    laugh_potential: str | None = None
    crowd_energy: str | None = None
    reason_codes: list[str] = field(default_factory=list)
    concepts: list[dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(slots=True)
class SynthesisRecord:
    divergence_score: float = 0
    risk_level: str = "unknown"
    primary_conflict: str = "None detected"
    conflict_summary: str = "Insufficient data for analysis"
    recommendation: str = "No recommendation available"
    reasoning: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(slots=True)
class PerspectiveFailure:
    role: str
    reason: str


@dataclass(slots=True)
class PerspectiveOutcome:
    """Result of one perspective worker: either a record or an isolated failure."""

    role: str
    record: PrimaryRecord | None = None
    secondary: list[SecondaryRecord] = field(default_factory=list)
    failure: PerspectiveFailure | None = None

    @property
    def ok(self) -> bool:
        return self.record is not None


@dataclass
class Analysis:
    """Aggregate root for one submitted line.

    Append-only while a session owns it: records are added as stages complete
    and never rewritten.
    """

    analysis_id: str
    line_text: str
    unit_id: str = DEFAULT_UNIT_ID
    primary: list[PrimaryRecord] = field(default_factory=list)
    secondary: list[SecondaryRecord] = field(default_factory=list)
    synthesis: SynthesisRecord | None = None

    def add_outcome(self, outcome: PerspectiveOutcome) -> None:
        if outcome.record is None:
            return
        self.primary.append(outcome.record)
        self.secondary.extend(outcome.secondary)

    def snapshot(self) -> dict[str, Any]:
        return {
            "primary": [r.to_dict() for r in self.primary],
            "secondary": [r.to_dict() for r in self.secondary],
        }


def build_documents(
    analysis: Analysis,
    *,
    created_at: str,
    include_perspectives: bool = True,
    include_synthesis: bool = True,
) -> list[dict[str, Any]]:
    """Flatten an analysis into stage-tagged store documents."""
    base = {
        "analysis_id": analysis.analysis_id,
        "unit_id": analysis.unit_id,
        "line_text": analysis.line_text,
        "hypothesis": True,
        "created_at": created_at,
    }
    docs: list[dict[str, Any]] = []

    if include_perspectives:
        for item in analysis.primary:
            docs.append(
                {
                    **base,
                    "stage": Stage.PRIMARY.value,
                    "feedback_id": item.feedback_id,
                    "agent_mode": item.agent_mode,
                    "feedback_text": item.feedback_text,
                    "reason_codes": list(item.reason_codes),
                    "relatability": item.relatability,
                    "laugh_potential": item.laugh_potential,
                    "crowd_energy": item.crowd_energy,
                }
            )
        for item in analysis.secondary:
            docs.append(
                {
                    **base,
                    "stage": Stage.SECONDARY.value,
                    "concept_id": item.concept_id,
                    "parent_feedback_id": item.parent_feedback_id,
                    "angle_name": item.angle_name,
                    "explanation": item.explanation,
                    "exploration_direction": item.exploration_direction,
                }
            )

    if include_synthesis and analysis.synthesis is not None:
        docs.append({**base, "stage": Stage.SYNTHESIS.value, **analysis.synthesis.to_dict()})

    return docs


def split_documents(docs: list[dict[str, Any]]) -> dict[str, Any]:
    """Group stored documents back into primary/secondary/synthesis collections."""
    primary = [d for d in docs if d.get("stage") == Stage.PRIMARY.value]
    secondary = [d for d in docs if d.get("stage") == Stage.SECONDARY.value]
    synthesis_docs = [d for d in docs if d.get("stage") == Stage.SYNTHESIS.value]
    return {
        "primary": primary,
        "secondary": secondary,
        "synthesis": synthesis_docs[0] if synthesis_docs else None,
    }
