from __future__ import annotations

import asyncio
import json
from unittest.mock import AsyncMock

import pytest

from app.agents.orchestrator import FanOutOrchestrator
from app.agents.perspective import DEFAULT_PERSPECTIVES, PerspectiveWorker
from app.agents.reviewer import ReviewerAgent
from app.models.analysis import Stage
from app.services.analysis_session import (
    SYNTHESIS_FAILED_MESSAGE,
    AnalysisSession,
    InvalidTransition,
    SessionState,
)
from app.services.store_memory import InMemoryAnalysisStore


class RoleCapability:
    name = "fake"

    def __init__(self, failing: set[str] = frozenset(), delay: float = 0.0):
        self.failing = failing
        self.delay = delay

    async def invoke(self, conversation_id: str, prompt: str):
        rid = conversation_id.split("-", 1)[1]
        await asyncio.sleep(self.delay)
        if rid in self.failing:
            raise RuntimeError("upstream 500")
        return {"message": json.dumps({"feedback_text": f"{rid} reacts", "crowd_energy": "warm"})}


def _reviewer(response=None, error: Exception | None = None) -> ReviewerAgent:
    capability = AsyncMock()
    if error is not None:
        capability.invoke.side_effect = error
    else:
        capability.invoke.return_value = response or {
            "divergence_score": 40,
            "risk_level": "medium",
            "primary_conflict": "Literal vs Inferred",
            "conflict_summary": "They read it differently.",
            "recommendation": "Tighten the tag.",
        }
    return ReviewerAgent(capability)


def _session(store=None, *, failing=frozenset(), reviewer=None, synthesis=True, delay=0.0, keepalive=15.0):
    store = store or InMemoryAnalysisStore()
    return AnalysisSession(
        "  Why do they call it rush hour when nothing moves?  ",
        orchestrator=FanOutOrchestrator(PerspectiveWorker(RoleCapability(failing, delay)), store),
        reviewer=reviewer if reviewer is not None else _reviewer(),
        store=store,
        synthesis_enabled=synthesis,
        roles=DEFAULT_PERSPECTIVES,
        keepalive_interval=keepalive,
        analysis_id="a1",
    )


async def _collect(session):
    return [event async for event in session.stream()]


def _names(events):
    return [e.event.value for e in events]


@pytest.mark.asyncio
async def test_six_perspectives_one_failure():
    store = InMemoryAnalysisStore()
    session = _session(store, failing={"the_surrealist"})

    events = await _collect(session)
    names = _names(events)

    assert names.count("start") == 1
    assert names[0] == "start"
    primary_counts = [len(e.data["primary"]) for e in events if e.event.value == "result-primary"]
    assert primary_counts == [1, 2, 3, 4, 5]
    assert names.count("result-synthesis") == 1
    assert names.count("done") == 1
    assert names[-1] == "done"
    assert session.state is SessionState.DONE

    docs = await store.query("a1")
    assert sum(1 for d in docs if d["stage"] == Stage.PRIMARY.value) == 5
    synthesis_docs = [d for d in docs if d["stage"] == Stage.SYNTHESIS.value]
    assert len(synthesis_docs) == 1
    assert synthesis_docs[0]["primary_conflict"] == "inferred vs literal"
    assert synthesis_docs[0]["line_text"] == "Why do they call it rush hour when nothing moves?"


@pytest.mark.asyncio
async def test_skipped_perspective_is_reported_as_progress():
    events = await _collect(_session(failing={"literal"}))

    skipped = [e for e in events if e.event.value == "progress" and e.data.get("skipped")]
    assert len(skipped) == 1
    assert skipped[0].data["role"] == "Literal"
    assert "error" not in _names(events)


@pytest.mark.asyncio
async def test_zero_successes_still_completes_without_synthesis():
    reviewer = _reviewer()
    failing = {"literal", "inferred", "ambiguity_spotter", "the_skeptic", "the_fan", "the_surrealist"}
    session = _session(failing=failing, reviewer=reviewer)

    names = _names(await _collect(session))

    assert "result-primary" not in names
    assert "result-synthesis" not in names
    assert "error" not in names
    assert names[-1] == "done"
    reviewer.capability.invoke.assert_not_called()


@pytest.mark.asyncio
async def test_synthesis_failure_is_not_fatal():
    session = _session(reviewer=_reviewer(error=RuntimeError("reviewer offline")))

    events = await _collect(session)
    names = _names(events)

    errors = [e for e in events if e.event.value == "error"]
    assert len(errors) == 1
    assert errors[0].data["message"] == SYNTHESIS_FAILED_MESSAGE
    assert "fatal" not in errors[0].data
    assert names.count("result-primary") == 6
    assert names[-1] == "done"


@pytest.mark.asyncio
async def test_synthesis_disabled_skips_reviewer():
    reviewer = _reviewer()
    names = _names(await _collect(_session(reviewer=reviewer, synthesis=False)))

    assert "result-synthesis" not in names
    assert names[-1] == "done"
    reviewer.capability.invoke.assert_not_called()


@pytest.mark.asyncio
async def test_persistence_failure_is_fatal_but_done_follows():
    store = InMemoryAnalysisStore()
    store.bulk_store = AsyncMock(side_effect=ConnectionError("database went away"))
    session = _session(store)

    events = await _collect(session)
    names = _names(events)

    fatal = [e for e in events if e.event.value == "error"]
    assert len(fatal) == 1
    assert fatal[0].data["fatal"] is True
    assert "database went away" in fatal[0].data["message"]
    assert "result-synthesis" not in names
    assert names[-2:] == ["error", "done"]
    assert SessionState.FAILED in session.history


@pytest.mark.asyncio
async def test_keepalive_pings_while_perspectives_run():
    session = _session(delay=0.05, keepalive=0.01)

    events = await _collect(session)
    names = _names(events)

    assert "ping" in names
    assert names[-1] == "done"
    ping = next(e for e in events if e.event.value == "ping")
    assert isinstance(ping.data["timestamp"], int)


@pytest.mark.asyncio
async def test_heartbeat_stops_when_consumer_leaves_early():
    session = _session(delay=0.05, keepalive=0.01)

    stream = session.stream()
    first = await stream.__anext__()
    await stream.aclose()

    assert first.event.value == "start"
    await asyncio.sleep(0.02)
    heartbeats = [
        t for t in asyncio.all_tasks() if t.get_coro().__qualname__.endswith("_heartbeat")
    ]
    assert heartbeats == []


def test_transitions_are_guarded():
    session = _session()

    session.transition(SessionState.STARTED)
    with pytest.raises(InvalidTransition):
        session.transition(SessionState.SYNTHESIZED)

    session.transition(SessionState.PERSPECTIVE_PROGRESS)
    session.transition(SessionState.PERSPECTIVE_PROGRESS)
    session.transition(SessionState.PERSISTED)
    session.transition(SessionState.DONE)
    with pytest.raises(InvalidTransition):
        session.transition(SessionState.STARTED)
