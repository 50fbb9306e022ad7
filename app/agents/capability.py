"""Generation backends the perspective and reviewer agents talk to.

Both backends expose ``invoke(conversation_id, prompt)`` and hand back the raw
payload untouched; turning it into a record is the extractor's job.
"""
from __future__ import annotations

import time
from typing import Any, Protocol

import httpx

from app.config import settings
from app.llm_client import client as llm_client, get_model
from app.services import logger as log_service

PERSPECTIVE_SYSTEM_PROMPT = (
    "You are a panel of stand-up comedy audience members. You answer with a single "
    "JSON object and nothing else."
)
REVIEWER_SYSTEM_PROMPT = (
    "You are a comedy editor analyzing audience reactions to a joke. "
    "Respond ONLY with JSON. No markdown. No explanation."
)


class CapabilityError(RuntimeError):
    """The generation backend rejected the call or is not configured."""


class GenerationCapability(Protocol):
    name: str

    async def invoke(self, conversation_id: str, prompt: str) -> Any: ...


class OpenRouterCapability:
    """Chat-completions backend. Each conversation id is sent as the end-user tag."""

    name = "openrouter"

    def __init__(self, *, system_prompt: str, caller: str, model: str | None = None):
        self.system_prompt = system_prompt
        self.caller = caller
        self.model = model or get_model()
        self.client = None

    async def invoke(self, conversation_id: str, prompt: str) -> Any:
        if not settings.openrouter_api_key:
            raise CapabilityError("OPENROUTER_API_KEY is not configured")

        active_client = self.client or llm_client()
        t0 = time.monotonic()
        try:
            completion = await active_client.complete(
                model=self.model,
                max_tokens=settings.agent_max_tokens,
                system=self.system_prompt,
                prompt=prompt,
                user=conversation_id,
            )
        except Exception as e:
            log_service.log_agent_call(
                caller=self.caller,
                conversation_id=conversation_id,
                backend=self.name,
                duration_ms=int((time.monotonic() - t0) * 1000),
                status="error",
                error=str(e),
            )
            raise

        log_service.log_agent_call(
            caller=self.caller,
            conversation_id=conversation_id,
            backend=self.name,
            duration_ms=int((time.monotonic() - t0) * 1000),
            input_tokens=completion.usage.input_tokens,
            output_tokens=completion.usage.output_tokens,
        )
        return {
            "conversation_id": conversation_id,
            "model": completion.model,
            "output": completion.text,
        }


class AgentBuilderCapability:
    """Kibana Agent Builder converse API.

    The conversation scope travels inside the input text, the same way the
    agents are prompted when configured in Kibana.
    """

    name = "agent_builder"

    def __init__(self, *, agent_id: str, caller: str, http_client: httpx.AsyncClient | None = None):
        self.agent_id = agent_id
        self.caller = caller
        self.http_client = http_client

    @property
    def url(self) -> str:
        host = settings.kibana_url.strip().removeprefix("https://").rstrip("/")
        return f"https://{host}/api/agent_builder/converse"

    async def invoke(self, conversation_id: str, prompt: str) -> Any:
        if not settings.kibana_url or not settings.kibana_api_key:
            raise CapabilityError("KIBANA_URL and KIBANA_API_KEY must be configured")

        body = {
            "agent_id": self.agent_id,
            "input": f"set_id={conversation_id}\n{prompt}",
        }
        headers = {
            "Authorization": f"ApiKey {settings.kibana_api_key}",
            "kbn-xsrf": "true",
            "Content-Type": "application/json",
        }

        t0 = time.monotonic()
        if self.http_client is not None:
            response = await self.http_client.post(self.url, json=body, headers=headers)
        else:
            async with httpx.AsyncClient(timeout=settings.agent_timeout_seconds) as http:
                response = await http.post(self.url, json=body, headers=headers)
        elapsed_ms = int((time.monotonic() - t0) * 1000)

        if response.status_code >= 400:
            message = f"Agent Builder error: {response.status_code} - {response.text[:500]}"
            log_service.log_agent_call(
                caller=self.caller,
                conversation_id=conversation_id,
                backend=self.name,
                duration_ms=elapsed_ms,
                status="error",
                error=message,
            )
            raise CapabilityError(message)

        log_service.log_agent_call(
            caller=self.caller,
            conversation_id=conversation_id,
            backend=self.name,
            duration_ms=elapsed_ms,
        )
        return response.json()


def get_perspective_capability() -> GenerationCapability:
    backend = settings.agent_backend.lower().strip()
    if backend == "agent_builder":
        return AgentBuilderCapability(agent_id=settings.agent_id, caller="perspective")
    if backend == "openrouter":
        return OpenRouterCapability(system_prompt=PERSPECTIVE_SYSTEM_PROMPT, caller="perspective")
    raise ValueError(f"Unsupported AGENT_BACKEND: {settings.agent_backend}")


def get_reviewer_capability() -> GenerationCapability:
    backend = settings.agent_backend.lower().strip()
    if backend == "agent_builder":
        return AgentBuilderCapability(agent_id=settings.reviewer_agent_id, caller="reviewer")
    if backend == "openrouter":
        return OpenRouterCapability(system_prompt=REVIEWER_SYSTEM_PROMPT, caller="reviewer")
    raise ValueError(f"Unsupported AGENT_BACKEND: {settings.agent_backend}")
