"""
Interview responder (the LLM stage).

Builds the outbound message list from the interview configuration, a bounded
slice of conversation history and the new transcript, and asks one chat
backend for a reply. Interview progress (`is_complete`, `next_question`) is
derived from the configuration alone, never from model output, and the
configuration is never mutated here.
"""

import logging
from collections.abc import Mapping, Sequence

import httpx

from interview_voice.config import Settings, get_settings
from interview_voice.models.llm_client import (
    LLMClientBase,
    LLMError,
    LLMProviderKind,
    Message,
    OllamaChatClient,
    OpenAIChatClient,
)
from interview_voice.orchestrator.schemas import (
    ConversationMessage,
    InterviewConfig,
    InterviewType,
    LLMResult,
    MessageRole,
)
from interview_voice.voice.rate_limiter import ProviderStatus, RateLimiter

logger = logging.getLogger(__name__)

BASE_PROMPT = (
    "You are a professional AI interviewer conducting a voice interview. "
    "Keep responses concise (2-3 sentences max) and conversational for voice interaction."
)

FREE_CONVERSATION_PROMPT = " Have a natural conversation and ask thoughtful follow-up questions."

TYPE_GUIDANCE: dict[InterviewType, str] = {
    InterviewType.TECHNICAL: "Focus on technical skills, problem-solving approaches, and implementation details.",
    InterviewType.BEHAVIORAL: "Use the STAR method and focus on past experiences, teamwork, and leadership.",
    InterviewType.MIXED: "Alternate between technical depth and behavioral insights.",
}


def build_system_prompt(config: InterviewConfig | None) -> str:
    """
    Build the system message for one turn.

    Args:
        config: Interview progress, or None for a free conversation.

    Returns:
        System prompt text.
    """
    if config is None:
        return BASE_PROMPT + FREE_CONVERSATION_PROMPT

    total = len(config.questions)
    lines = [
        BASE_PROMPT,
        "",
        f"INTERVIEW TYPE: {config.type.value}",
        TYPE_GUIDANCE[config.type],
        "",
    ]
    if config.is_complete:
        lines.append(f"PROGRESS: All {total} questions have been covered. Wrap up the interview politely.")
    else:
        lines.append(f"PROGRESS: Question {config.current_index + 1} of {total}")
        lines.append("")
        lines.append("REMAINING QUESTIONS:")
        lines.extend(
            f"{n}. {q}" for n, q in enumerate(config.remaining_questions, start=config.current_index + 1)
        )
    lines.append("")
    lines.append("Remain focused and professional while being conversational.")
    return "\n".join(lines)


def build_messages(
    transcript: str,
    context: Sequence[ConversationMessage],
    config: InterviewConfig | None,
    context_limit: int,
) -> list[Message]:
    """System prompt, then the last `context_limit` non-system messages, then the transcript."""
    history = [m for m in context if m.role is not MessageRole.SYSTEM]
    recent = history[-context_limit:] if context_limit > 0 else []

    messages = [Message(role=MessageRole.SYSTEM.value, content=build_system_prompt(config))]
    messages.extend(Message(role=m.role.value, content=m.content) for m in recent)
    messages.append(Message(role=MessageRole.USER.value, content=transcript))
    return messages


class InterviewResponder:
    """Generates the interviewer's reply with one named chat backend; no retries."""

    def __init__(
        self,
        clients: Mapping[LLMProviderKind, LLMClientBase],
        *,
        default_provider: LLMProviderKind | str = LLMProviderKind.OPENAI,
        temperature: float = 0.7,
        max_tokens: int = 300,
    ) -> None:
        self._clients = dict(clients)
        self._default_provider = LLMProviderKind(default_provider)
        self._temperature = temperature
        self._max_tokens = max_tokens

    @property
    def clients(self) -> dict[LLMProviderKind, LLMClientBase]:
        return dict(self._clients)

    def resolve(self, provider: LLMProviderKind | str | None) -> LLMClientBase | None:
        if provider is None or provider == "":
            return self._clients.get(self._default_provider)
        try:
            kind = provider if isinstance(provider, LLMProviderKind) else LLMProviderKind(provider.strip().lower())
        except ValueError:
            return None
        return self._clients.get(kind)

    async def generate_response(
        self,
        transcript: str,
        context: Sequence[ConversationMessage] = (),
        interview_config: InterviewConfig | None = None,
        *,
        provider: LLMProviderKind | str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> LLMResult:
        """
        Produce the interviewer's reply to one candidate transcript.

        Args:
            transcript: What the candidate said.
            context: Caller-owned conversation history (read only).
            interview_config: Interview progress (read only).
            provider: Backend name; defaults to the configured backend.
            temperature: Overrides the configured sampling temperature.
            max_tokens: Overrides the configured output cap.

        Returns:
            LLMResult; failures are reported, never raised.
        """
        text = (transcript or "").strip()
        if not text:
            return LLMResult(success=False, error="Transcript is empty")

        client = self.resolve(provider)
        if client is None:
            return LLMResult(success=False, error=f"Unsupported LLM provider: {provider}")
        if not client.is_configured():
            return LLMResult(success=False, error=f"{client.name} LLM is not configured", provider=client.name)
        if not client.rate_limiter.try_acquire():
            wait_s = client.rate_limiter.get_wait_time_ms() / 1000
            return LLMResult(
                success=False,
                error=f"{client.name} LLM rate limit exceeded (retry in {wait_s:.0f}s)",
                provider=client.name,
            )

        messages = build_messages(text, context, interview_config, client.context_limit)

        try:
            response = await client.chat(
                messages,
                temperature=self._temperature if temperature is None else temperature,
                max_tokens=self._max_tokens if max_tokens is None else max_tokens,
            )
        except LLMError as e:
            logger.warning(f"[VOICE][LLM] {client.name} failed: {e}")
            return LLMResult(success=False, error=str(e), provider=client.name, model=client.model)

        if not response.content:
            return LLMResult(
                success=False,
                error=f"{client.name} returned an empty response",
                provider=client.name,
                model=response.model,
            )

        is_complete = interview_config is not None and interview_config.is_complete
        next_question = interview_config.next_question if interview_config is not None else None
        logger.info(
            f"[VOICE][LLM] {client.name} reply len={len(response.content)} complete={is_complete}"
        )
        return LLMResult(
            success=True,
            response=response.content,
            next_question=next_question,
            is_complete=is_complete,
            provider=client.name,
            model=response.model,
            tokens=response.usage.get("total_tokens", 0),
        )

    def provider_status(self) -> list[ProviderStatus]:
        statuses: list[ProviderStatus] = []
        for client in self._clients.values():
            limit = client.get_rate_limit()
            statuses.append(
                ProviderStatus(
                    stage="llm",
                    name=client.name,
                    configured=client.is_configured(),
                    available=client.is_available(),
                    remaining=limit.remaining,
                    reset_time_ms=limit.reset_time_ms,
                )
            )
        return statuses

    async def close(self) -> None:
        for client in self._clients.values():
            close = getattr(client, "close", None)
            if close is not None:
                await close()

    @classmethod
    def from_settings(
        cls,
        settings: Settings | None = None,
        *,
        client: httpx.AsyncClient | None = None,
    ) -> "InterviewResponder":
        s = settings or get_settings()

        def limiter() -> RateLimiter:
            return RateLimiter(s.llm_max_requests, s.rate_limit_window_ms)

        clients: dict[LLMProviderKind, LLMClientBase] = {
            LLMProviderKind.OPENAI: OpenAIChatClient(
                api_key=s.openai_api_key,
                base_url=s.openai_base_url,
                model=s.openai_chat_model,
                context_limit=s.openai_context_messages,
                rate_limiter=limiter(),
                client=client,
                timeout=s.llm_timeout_s,
            ),
            LLMProviderKind.OLLAMA: OllamaChatClient(
                base_url=s.ollama_base_url,
                model=s.ollama_model,
                context_limit=s.ollama_context_messages,
                rate_limiter=limiter(),
                client=client,
                timeout=s.llm_timeout_s,
            ),
            LLMProviderKind.LMSTUDIO: OpenAIChatClient(
                base_url=s.lmstudio_base_url,
                model=s.lmstudio_model,
                kind=LLMProviderKind.LMSTUDIO,
                context_limit=s.lmstudio_context_messages,
                rate_limiter=limiter(),
                client=client,
                timeout=s.llm_timeout_s,
            ),
        }
        return cls(
            clients,
            default_provider=s.llm_provider,
            temperature=s.llm_temperature,
            max_tokens=s.llm_max_tokens,
        )
