from __future__ import annotations

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

from app.config import settings
from app.llm_client import OpenRouterChat, get_model


def _openai_client(content="hello", prompt_tokens=5, completion_tokens=7):
    response = SimpleNamespace(
        choices=[SimpleNamespace(message=SimpleNamespace(content=content))],
        usage=SimpleNamespace(prompt_tokens=prompt_tokens, completion_tokens=completion_tokens),
    )
    client = MagicMock()
    client.chat.completions.create = AsyncMock(return_value=response)
    return client


@pytest.mark.asyncio
async def test_complete_maps_response_and_usage():
    openai_client = _openai_client()
    chat = OpenRouterChat(openai_client)

    completion = await chat.complete(model="openai/gpt-4o-mini", max_tokens=100, system="S", prompt="P", user="a1")

    assert completion.text == "hello"
    assert completion.usage.input_tokens == 5
    assert completion.usage.output_tokens == 7
    kwargs = openai_client.chat.completions.create.await_args.kwargs
    assert kwargs["messages"] == [{"role": "system", "content": "S"}, {"role": "user", "content": "P"}]
    assert kwargs["temperature"] == 0.7
    assert kwargs["user"] == "a1"


@pytest.mark.asyncio
async def test_gpt5_models_use_temperature_one():
    openai_client = _openai_client()
    chat = OpenRouterChat(openai_client)

    await chat.complete(model="openai/gpt-5-mini", max_tokens=10, system="S", prompt="P")

    kwargs = openai_client.chat.completions.create.await_args.kwargs
    assert kwargs["temperature"] == 1
    assert "user" not in kwargs


@pytest.mark.asyncio
async def test_empty_choices_yield_empty_text():
    openai_client = MagicMock()
    openai_client.chat.completions.create = AsyncMock(return_value=SimpleNamespace(choices=[], usage=None))

    completion = await OpenRouterChat(openai_client).complete(model="m", max_tokens=1, system="S", prompt="P")

    assert completion.text == ""
    assert completion.usage.input_tokens == 0


def test_get_model_prefers_override(monkeypatch):
    monkeypatch.setattr(settings, "openrouter_model", "")
    monkeypatch.setattr(settings, "default_model", "openai/gpt-4o-mini")
    assert get_model() == "openai/gpt-4o-mini"

    monkeypatch.setattr(settings, "openrouter_model", "anthropic/claude-3.5-haiku")
    assert get_model() == "anthropic/claude-3.5-haiku"
