"""
LLM client abstraction.

Provides a unified chat interface over the supported generation backends:
hosted OpenAI, a local Ollama server, and LM Studio (OpenAI-compatible API).
Clients raise `LLMError` on any failure; callers decide how to report it.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any

import httpx
from pydantic import BaseModel, Field

from interview_voice.voice.http_client import HTTPClientMixin
from interview_voice.voice.rate_limiter import RateLimit, RateLimiter

logger = logging.getLogger(__name__)


class LLMProviderKind(str, Enum):
    OPENAI = "openai"
    OLLAMA = "ollama"
    LMSTUDIO = "lmstudio"


# How many prior conversation messages each backend gets; local models get less.
DEFAULT_CONTEXT_LIMITS: dict[LLMProviderKind, int] = {
    LLMProviderKind.OPENAI: 10,
    LLMProviderKind.OLLAMA: 8,
    LLMProviderKind.LMSTUDIO: 6,
}


class Message(BaseModel):
    """A message in a conversation."""

    role: str = Field(..., description="Role of the speaker (system, user, assistant)")
    content: str = Field(..., description="Message content")


class LLMResponse(BaseModel):
    """Response from an LLM."""

    content: str = Field(..., description="Generated text content")
    finish_reason: str = Field(default="stop", description="Reason for completion")
    usage: dict[str, int] = Field(
        default_factory=dict,
        description="Token usage information",
    )
    model: str = Field(default="", description="Model used for generation")


class LLMError(Exception):
    """Exception raised when a chat backend fails."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class LLMClientBase(ABC):
    """Abstract base class for LLM clients."""

    kind: LLMProviderKind

    def __init__(
        self,
        *,
        context_limit: int | None = None,
        rate_limiter: RateLimiter | None = None,
    ) -> None:
        self._context_limit = DEFAULT_CONTEXT_LIMITS[self.kind] if context_limit is None else context_limit
        self._rate_limiter = rate_limiter or RateLimiter(60, 60_000)

    @property
    def name(self) -> str:
        return self.kind.value

    @property
    def context_limit(self) -> int:
        return self._context_limit

    @property
    def rate_limiter(self) -> RateLimiter:
        return self._rate_limiter

    @property
    @abstractmethod
    def model(self) -> str: ...

    @abstractmethod
    def is_configured(self) -> bool: ...

    def is_available(self) -> bool:
        return self.is_configured() and self._rate_limiter.can_make_request()

    def get_rate_limit(self) -> RateLimit:
        return self._rate_limiter.snapshot()

    @abstractmethod
    async def chat(
        self,
        messages: list[Message],
        temperature: float = 0.7,
        max_tokens: int | None = None,
        **kwargs: Any,
    ) -> LLMResponse:
        """
        Generate a chat completion.

        Args:
            messages: Conversation history.
            temperature: Sampling temperature.
            max_tokens: Maximum tokens to generate.
            **kwargs: Additional model-specific parameters.

        Returns:
            Generated response.

        Raises:
            LLMError: On transport failure, non-2xx status or malformed body.
        """
        ...


async def _post_json(client: httpx.AsyncClient, url: str, service: str, **kwargs: Any) -> dict[str, Any]:
    try:
        response = await client.post(url, **kwargs)
    except httpx.TimeoutException as e:
        raise LLMError(f"{service} request timed out") from e
    except httpx.HTTPError as e:
        raise LLMError(f"{service} request failed: {e}") from e

    if not response.is_success:
        raise LLMError(
            f"{service} API error: {response.status_code} {response.reason_phrase}",
            status_code=response.status_code,
        )

    try:
        body = response.json()
    except ValueError as e:
        raise LLMError(f"{service} returned a malformed response") from e
    if not isinstance(body, dict):
        raise LLMError(f"{service} returned a malformed response")
    return body


class OpenAIChatClient(HTTPClientMixin, LLMClientBase):
    """
    OpenAI-compatible `/chat/completions` client.

    Serves hosted OpenAI and, with `kind=LMSTUDIO`, a local LM Studio server
    (which needs no API key).
    """

    kind = LLMProviderKind.OPENAI

    def __init__(
        self,
        *,
        api_key: str = "",
        base_url: str = "https://api.openai.com/v1",
        model: str = "gpt-4o-mini",
        kind: LLMProviderKind = LLMProviderKind.OPENAI,
        context_limit: int | None = None,
        rate_limiter: RateLimiter | None = None,
        client: httpx.AsyncClient | None = None,
        timeout: float = 60.0,
    ) -> None:
        self.kind = kind
        super().__init__(context_limit=context_limit, rate_limiter=rate_limiter)
        self._api_key = api_key
        self._base_url = (base_url or "").rstrip("/")
        self._model = model
        self._init_client(client, timeout)

        logger.info(f"Initialized {self.name} chat client with model: {self._model}")

    @property
    def model(self) -> str:
        return self._model

    def is_configured(self) -> bool:
        if self.kind is LLMProviderKind.LMSTUDIO:
            return bool(self._base_url)
        return bool(self._api_key and self._base_url)

    async def chat(
        self,
        messages: list[Message],
        temperature: float = 0.7,
        max_tokens: int | None = None,
        **kwargs: Any,
    ) -> LLMResponse:
        payload: dict[str, Any] = {
            "model": self._model,
            "messages": [m.model_dump() for m in messages],
            "temperature": temperature,
            "stream": False,
        }
        if max_tokens is not None:
            payload["max_tokens"] = max_tokens

        headers = {"Authorization": f"Bearer {self._api_key}"} if self._api_key else {}
        client = await self._get_client()
        body = await _post_json(
            client,
            f"{self._base_url}/chat/completions",
            self.name,
            json=payload,
            headers=headers,
        )

        try:
            choice = body["choices"][0]
            content = choice["message"]["content"] or ""
        except (KeyError, IndexError, TypeError) as e:
            raise LLMError(f"{self.name} response has no choices") from e

        usage = body.get("usage") or {}
        return LLMResponse(
            content=content.strip(),
            finish_reason=choice.get("finish_reason") or "stop",
            usage={k: int(v) for k, v in usage.items() if isinstance(v, int)},
            model=body.get("model") or self._model,
        )


class OllamaChatClient(HTTPClientMixin, LLMClientBase):
    """Ollama `/api/chat` client (non-streaming)."""

    kind = LLMProviderKind.OLLAMA

    def __init__(
        self,
        *,
        base_url: str = "http://localhost:11434",
        model: str = "llama2",
        context_limit: int | None = None,
        rate_limiter: RateLimiter | None = None,
        client: httpx.AsyncClient | None = None,
        timeout: float = 120.0,
    ) -> None:
        super().__init__(context_limit=context_limit, rate_limiter=rate_limiter)
        self._base_url = (base_url or "").rstrip("/")
        self._model = model
        self._init_client(client, timeout)

        logger.info(f"Initialized Ollama chat client with model: {self._model}")

    @property
    def model(self) -> str:
        return self._model

    def is_configured(self) -> bool:
        return bool(self._base_url)

    async def chat(
        self,
        messages: list[Message],
        temperature: float = 0.7,
        max_tokens: int | None = None,
        **kwargs: Any,
    ) -> LLMResponse:
        options: dict[str, Any] = {"temperature": temperature}
        if max_tokens is not None:
            options["num_predict"] = max_tokens

        client = await self._get_client()
        body = await _post_json(
            client,
            f"{self._base_url}/api/chat",
            "ollama",
            json={
                "model": self._model,
                "messages": [m.model_dump() for m in messages],
                "stream": False,
                "options": options,
            },
        )

        message = body.get("message")
        if not isinstance(message, dict) or not isinstance(message.get("content"), str):
            raise LLMError("ollama response has no message")

        prompt_tokens = int(body.get("prompt_eval_count") or 0)
        completion_tokens = int(body.get("eval_count") or 0)
        return LLMResponse(
            content=message["content"].strip(),
            finish_reason=body.get("done_reason") or "stop",
            usage={
                "prompt_tokens": prompt_tokens,
                "completion_tokens": completion_tokens,
                "total_tokens": prompt_tokens + completion_tokens,
            },
            model=body.get("model") or self._model,
        )
