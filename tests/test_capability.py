from __future__ import annotations

import json
from unittest.mock import AsyncMock

import httpx
import pytest

from app.agents import capability as capability_module
from app.agents.capability import (
    AgentBuilderCapability,
    CapabilityError,
    OpenRouterCapability,
    get_perspective_capability,
    get_reviewer_capability,
)
from app.config import settings
from app.llm_client import Completion, Usage


@pytest.fixture
def kibana(monkeypatch):
    monkeypatch.setattr(settings, "kibana_url", "https://kb.example.com/")
    monkeypatch.setattr(settings, "kibana_api_key", "secret")


@pytest.mark.asyncio
async def test_agent_builder_posts_scoped_conversation(kibana):
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["headers"] = request.headers
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"response": {"message": "{}"}, "steps": []})

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
        cap = AgentBuilderCapability(agent_id="how-it-lands-agent", caller="perspective", http_client=http)
        payload = await cap.invoke("a1-the_fan", "PROMPT")

    assert payload == {"response": {"message": "{}"}, "steps": []}
    assert seen["url"] == "https://kb.example.com/api/agent_builder/converse"
    assert seen["headers"]["authorization"] == "ApiKey secret"
    assert seen["headers"]["kbn-xsrf"] == "true"
    assert seen["body"] == {"agent_id": "how-it-lands-agent", "input": "set_id=a1-the_fan\nPROMPT"}


@pytest.mark.asyncio
async def test_agent_builder_error_status_raises(kibana):
    transport = httpx.MockTransport(lambda request: httpx.Response(502, text="bad gateway"))

    async with httpx.AsyncClient(transport=transport) as http:
        cap = AgentBuilderCapability(agent_id="x", caller="perspective", http_client=http)
        with pytest.raises(CapabilityError, match="502"):
            await cap.invoke("a1-literal", "PROMPT")


@pytest.mark.asyncio
async def test_agent_builder_requires_configuration(monkeypatch):
    monkeypatch.setattr(settings, "kibana_url", "")
    cap = AgentBuilderCapability(agent_id="x", caller="perspective")

    with pytest.raises(CapabilityError):
        await cap.invoke("a1-literal", "PROMPT")


@pytest.mark.asyncio
async def test_openrouter_returns_text_as_output(monkeypatch):
    monkeypatch.setattr(settings, "openrouter_api_key", "sk-test")
    cap = OpenRouterCapability(system_prompt="SYS", caller="reviewer", model="openai/gpt-4o-mini")
    cap.client = AsyncMock()
    cap.client.complete.return_value = Completion(
        text='{"divergence_score": 10}', usage=Usage(12, 34), model="openai/gpt-4o-mini"
    )

    payload = await cap.invoke("a1", "PROMPT")

    assert payload == {
        "conversation_id": "a1",
        "model": "openai/gpt-4o-mini",
        "output": '{"divergence_score": 10}',
    }
    kwargs = cap.client.complete.await_args.kwargs
    assert kwargs["system"] == "SYS"
    assert kwargs["prompt"] == "PROMPT"
    assert kwargs["user"] == "a1"


@pytest.mark.asyncio
async def test_openrouter_without_key_raises(monkeypatch):
    monkeypatch.setattr(settings, "openrouter_api_key", "")
    cap = OpenRouterCapability(system_prompt="SYS", caller="perspective", model="m")

    with pytest.raises(CapabilityError):
        await cap.invoke("a1", "PROMPT")


@pytest.mark.asyncio
async def test_openrouter_errors_propagate(monkeypatch):
    monkeypatch.setattr(settings, "openrouter_api_key", "sk-test")
    cap = OpenRouterCapability(system_prompt="SYS", caller="perspective", model="m")
    cap.client = AsyncMock()
    cap.client.complete.side_effect = TimeoutError("slow")

    with pytest.raises(TimeoutError):
        await cap.invoke("a1", "PROMPT")


def test_factories_follow_backend_setting(monkeypatch):
    monkeypatch.setattr(settings, "agent_backend", "agent_builder")
    perspective = get_perspective_capability()
    reviewer = get_reviewer_capability()
    assert isinstance(perspective, AgentBuilderCapability)
    assert perspective.agent_id == settings.agent_id
    assert reviewer.agent_id == settings.reviewer_agent_id

    monkeypatch.setattr(settings, "agent_backend", "openrouter")
    assert isinstance(get_reviewer_capability(), OpenRouterCapability)
    assert get_reviewer_capability().system_prompt == capability_module.REVIEWER_SYSTEM_PROMPT

    monkeypatch.setattr(settings, "agent_backend", "carrier-pigeon")
    with pytest.raises(ValueError):
        get_perspective_capability()
