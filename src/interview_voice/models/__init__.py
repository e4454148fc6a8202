"""
Models module for LLM client abstraction.

Provides a unified chat interface over OpenAI, Ollama and LM Studio.
"""

from interview_voice.models.llm_client import (
    DEFAULT_CONTEXT_LIMITS,
    LLMClientBase,
    LLMError,
    LLMProviderKind,
    LLMResponse,
    Message,
    OllamaChatClient,
    OpenAIChatClient,
)

__all__ = [
    "DEFAULT_CONTEXT_LIMITS",
    "LLMClientBase",
    "LLMError",
    "LLMProviderKind",
    "LLMResponse",
    "Message",
    "OllamaChatClient",
    "OpenAIChatClient",
]
