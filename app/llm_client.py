"""OpenRouter-only LLM client factory."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from app.config import settings


@dataclass
class Usage:
    input_tokens: int = 0
    output_tokens: int = 0


@dataclass
class Completion:
    text: str
    usage: Usage
    model: str


class OpenRouterChat:
    """Thin adapter over the OpenAI-compatible chat completions endpoint."""

    def __init__(self, openai_client: Any):
        self._client = openai_client

    @staticmethod
    def _temperature_for_model(model: str) -> float:
        # Some OpenAI GPT-5-compatible gateways reject temperatures below 1.
        lowered = (model or "").lower()
        if "gpt-5" in lowered:
            return 1
        return 0.7

    def _from_openai_response(self, response: Any, model: str) -> Completion:
        choices = getattr(response, "choices", None) or []
        text = ""
        if choices:
            message = getattr(choices[0], "message", None)
            text = getattr(message, "content", None) or ""

        usage = getattr(response, "usage", None)
        mapped_usage = Usage(
            input_tokens=getattr(usage, "prompt_tokens", 0) or 0,
            output_tokens=getattr(usage, "completion_tokens", 0) or 0,
        )
        return Completion(text=text, usage=mapped_usage, model=model)

    async def complete(
        self,
        *,
        model: str,
        max_tokens: int,
        system: str,
        prompt: str,
        user: str | None = None,
    ) -> Completion:
        kwargs: dict[str, Any] = {
            "model": model,
            "messages": [
                {"role": "system", "content": system},
                {"role": "user", "content": prompt},
            ],
            "max_tokens": max_tokens,
            "temperature": self._temperature_for_model(model),
        }
        if user:
            kwargs["user"] = user

        response = await self._client.chat.completions.create(**kwargs)
        return self._from_openai_response(response, model)


def get_client() -> OpenRouterChat:
    """Get OpenRouter client via OpenAI-compatible SDK."""
    from openai import AsyncOpenAI

    base_url = settings.openrouter_base_url.strip() or "https://openrouter.ai/api/v1"
    openai_client = AsyncOpenAI(
        api_key=settings.openrouter_api_key,
        base_url=base_url,
        timeout=settings.agent_timeout_seconds,
        max_retries=0,
    )
    return OpenRouterChat(openai_client)


def get_model() -> str:
    """Get the active OpenRouter model id."""
    if settings.openrouter_model:
        return settings.openrouter_model
    return settings.default_model


_client: OpenRouterChat | None = None


def client() -> OpenRouterChat:
    """Get or create the LLM client."""
    global _client
    if _client is None:
        _client = get_client()
    return _client
