from __future__ import annotations

import json
from unittest.mock import AsyncMock

import pytest

from app.agents.perspective import (
    DEFAULT_PERSPECTIVES,
    PerspectiveWorker,
    build_perspective_prompt,
    derive_secondary,
    has_minimal_shape,
    role_id,
)


def _payload(**overrides):
    record = {
        "agent_mode": "someone_else",
        "feedback_id": "f_forged",
        "feedback_text": "I pictured an actual elephant in the room.",
        "relatability": "Medium",
        "laugh_potential": "HIGH",
        "crowd_energy": "Hot",
        "reason_codes": ["wordplay", "", 3],
        "concepts": [
            {
                "angle_name": "Literal elephant",
                "explanation": "The image is absurd",
                "exploration_direction": "Describe the elephant",
            },
            "not a concept",
            {"angle_name": "Office politics"},
        ],
    }
    record.update(overrides)
    return {"output": "```json\n" + json.dumps(record) + "\n```"}


def test_role_id():
    assert role_id("Ambiguity Spotter") == "ambiguity_spotter"
    assert role_id("The Fan") == "the_fan"
    assert [role_id(r) for r in DEFAULT_PERSPECTIVES] == [
        "literal",
        "inferred",
        "ambiguity_spotter",
        "the_skeptic",
        "the_fan",
        "the_surrealist",
    ]


def test_prompt_names_role_and_line():
    prompt = build_perspective_prompt("The Skeptic", "  I'm not lazy, I'm on energy-saving mode.  ")

    assert 'Act as the "The Skeptic" audience persona.' in prompt
    assert "\"I'm not lazy, I'm on energy-saving mode.\"" in prompt
    assert '"agent_mode": "the_skeptic"' in prompt


def test_minimal_shape():
    assert has_minimal_shape({"feedback_text": "meh"})
    assert has_minimal_shape({"crowd_energy": "cold"})
    assert not has_minimal_shape({"feedback_text": "  ", "reason_codes": ["x"]})


@pytest.mark.asyncio
async def test_run_forces_identity_and_normalizes_ratings():
    capability = AsyncMock()
    capability.invoke.return_value = _payload()
    worker = PerspectiveWorker(capability)

    outcome = await worker.run("The Fan", "line", "a1")

    assert outcome.ok
    record = outcome.record
    assert record.agent_mode == "the_fan"
    assert record.feedback_id.startswith("f_the_fan_")
    assert record.feedback_id != "f_forged"
    assert record.relatability == "medium"
    assert record.laugh_potential == "high"
    assert record.crowd_energy == "hot"
    assert record.reason_codes == ["wordplay"]
    conversation_id = capability.invoke.await_args.args[0]
    assert conversation_id == "a1-the_fan"


@pytest.mark.asyncio
async def test_run_derives_secondary_records():
    capability = AsyncMock()
    capability.invoke.return_value = _payload()
    worker = PerspectiveWorker(capability)

    outcome = await worker.run("Literal", "line", "a1")

    assert [s.angle_name for s in outcome.secondary] == ["Literal elephant", "Office politics"]
    fid = outcome.record.feedback_id
    assert [s.concept_id for s in outcome.secondary] == [f"c_{fid}_0", f"c_{fid}_1"]
    assert all(s.parent_feedback_id == fid for s in outcome.secondary)
    assert all(s.analysis_id == "a1" for s in outcome.secondary)


@pytest.mark.asyncio
async def test_invalid_rating_becomes_none():
    capability = AsyncMock()
    capability.invoke.return_value = _payload(relatability="Very", crowd_energy=None)
    worker = PerspectiveWorker(capability)

    outcome = await worker.run("Literal", "line", "a1")

    assert outcome.record.relatability is None
    assert outcome.record.crowd_energy is None


@pytest.mark.asyncio
async def test_capability_error_is_isolated_failure():
    capability = AsyncMock()
    capability.invoke.side_effect = RuntimeError("503 from upstream")
    worker = PerspectiveWorker(capability)

    outcome = await worker.run("The Surrealist", "line", "a1")

    assert not outcome.ok
    assert outcome.failure.role == "The Surrealist"
    assert "503" in outcome.failure.reason


@pytest.mark.asyncio
async def test_unparseable_response_is_failure():
    capability = AsyncMock()
    capability.invoke.return_value = {"output": "I'd rather not."}
    worker = PerspectiveWorker(capability)

    outcome = await worker.run("Inferred", "line", "a1")

    assert outcome.record is None
    assert outcome.failure is not None


def test_derive_secondary_without_concepts():
    from app.models.analysis import PrimaryRecord

    record = PrimaryRecord(feedback_id="f_x_1", agent_mode="x", feedback_text="hi")
    assert derive_secondary(record, "a1") == []
