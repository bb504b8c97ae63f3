"""Chat client used by the planner and the reflection phases."""

from __future__ import annotations

import logging
from typing import Any, Protocol, runtime_checkable

from openai import AsyncOpenAI
from pydantic import BaseModel, Field

from resilience.circuit_breaker import CircuitBreaker

from .config import LLMConfig

logger = logging.getLogger(__name__)

ChatMessage = dict[str, str]


class LLMResponse(BaseModel):
    content: str
    model: str | None = None
    usage: dict[str, Any] = Field(default_factory=dict)


@runtime_checkable
class LLMClient(Protocol):
    async def chat(
        self,
        messages: list[ChatMessage],
        *,
        temperature: float = 0.7,
        max_tokens: int | None = None,
    ) -> LLMResponse:
        ...


class OpenAIChatClient:
    """Chat client backed by the OpenAI SDK.

    Any OpenAI-compatible server (LM Studio, vLLM, Ollama's /v1) works by
    setting ``base_url``. When a breaker is given, every request goes through
    it so a dead endpoint fails fast with ``CircuitOpenError``.
    """

    def __init__(
        self,
        config: LLMConfig | None = None,
        client: AsyncOpenAI | None = None,
        breaker: CircuitBreaker | None = None,
    ):
        self._config = config or LLMConfig()
        self._client = client or AsyncOpenAI(
            base_url=self._config.base_url,
            api_key=self._config.api_key,
        )
        self._breaker = breaker

    @property
    def model(self) -> str:
        return self._config.model

    async def chat(
        self,
        messages: list[ChatMessage],
        *,
        temperature: float = 0.7,
        max_tokens: int | None = None,
    ) -> LLMResponse:
        if self._breaker is not None:
            return await self._breaker.execute(
                lambda: self._complete(messages, temperature, max_tokens)
            )
        return await self._complete(messages, temperature, max_tokens)

    async def _complete(
        self,
        messages: list[ChatMessage],
        temperature: float,
        max_tokens: int | None,
    ) -> LLMResponse:
        kwargs: dict[str, Any] = {
            "model": self._config.model,
            "messages": messages,
            "temperature": temperature,
        }
        if max_tokens is not None:
            kwargs["max_tokens"] = max_tokens

        response = await self._client.chat.completions.create(**kwargs)
        content = response.choices[0].message.content or ""
        usage = response.usage.model_dump() if response.usage else {}
        logger.debug("LLM reply: %d chars (model=%s)", len(content), response.model)
        return LLMResponse(content=content, model=response.model, usage=usage)
