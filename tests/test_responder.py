import asyncio
from typing import Any

import httpx

from interview_voice.config import Settings
from interview_voice.models.llm_client import LLMClientBase, LLMError, LLMProviderKind, LLMResponse, Message
from interview_voice.orchestrator.responder import InterviewResponder, build_messages, build_system_prompt
from interview_voice.orchestrator.schemas import ConversationMessage, InterviewConfig, InterviewType, MessageRole
from interview_voice.voice.rate_limiter import RateLimiter


class FakeLLM(LLMClientBase):
    def __init__(
        self,
        *,
        kind: LLMProviderKind = LLMProviderKind.OPENAI,
        reply: str = "That sounds like a tricky bug. How did you isolate it?",
        configured: bool = True,
        fail_with: Exception | None = None,
        context_limit: int | None = None,
        max_requests: int = 60,
    ) -> None:
        self.kind = kind
        super().__init__(context_limit=context_limit, rate_limiter=RateLimiter(max_requests, 60_000))
        self._reply = reply
        self._configured = configured
        self._fail_with = fail_with
        self.calls: list[dict[str, Any]] = []

    @property
    def model(self) -> str:
        return "fake-model"

    def is_configured(self) -> bool:
        return self._configured

    async def chat(self, messages, temperature=0.7, max_tokens=None, **kwargs) -> LLMResponse:
        self.calls.append({"messages": list(messages), "temperature": temperature, "max_tokens": max_tokens})
        if self._fail_with is not None:
            raise self._fail_with
        return LLMResponse(content=self._reply, usage={"total_tokens": 42}, model=self.model)


def _responder(**clients: FakeLLM) -> InterviewResponder:
    mapping = {LLMProviderKind(k): v for k, v in clients.items()}
    return InterviewResponder(mapping, default_provider=LLMProviderKind.OPENAI)


def test_technical_interview_reply_does_not_advance_progress():
    llm = FakeLLM()
    responder = _responder(openai=llm)
    config = InterviewConfig(type=InterviewType.TECHNICAL, questions=["Tell me about a challenging bug."], current_index=0)

    result = asyncio.run(
        responder.generate_response("I once debugged a race condition...", [], config)
    )

    assert result.success is True
    assert result.response
    assert result.is_complete is False
    assert result.next_question == "Tell me about a challenging bug."
    assert result.tokens == 42
    assert result.provider == "openai"
    # The caller's config is untouched.
    assert config.current_index == 0


def test_is_complete_iff_index_at_end():
    responder = _responder(openai=FakeLLM())
    questions = ["Q1", "Q2", "Q3"]
    for index in range(len(questions) + 1):
        config = InterviewConfig(questions=questions, current_index=index)
        result = asyncio.run(responder.generate_response("answer", [], config))
        assert result.is_complete is (index >= len(questions))
        assert config.current_index == index
    no_config = asyncio.run(responder.generate_response("hello", []))
    assert no_config.is_complete is False
    assert no_config.next_question is None


def test_prompt_contains_type_guidance_and_progress():
    config = InterviewConfig(type=InterviewType.BEHAVIORAL, questions=["A?", "B?", "C?"], current_index=1)
    prompt = build_system_prompt(config)

    assert prompt.startswith("You are a professional AI interviewer")
    assert "STAR method" in prompt
    assert "PROGRESS: Question 2 of 3" in prompt
    assert "2. B?" in prompt and "3. C?" in prompt
    assert "1. A?" not in prompt

    free = build_system_prompt(None)
    assert "natural conversation" in free
    assert "PROGRESS" not in free


def test_messages_keep_last_n_non_system_entries():
    context = [ConversationMessage(role=MessageRole.SYSTEM, content="old system")]
    for i in range(12):
        role = MessageRole.USER if i % 2 == 0 else MessageRole.ASSISTANT
        context.append(ConversationMessage(role=role, content=f"m{i}"))

    messages = build_messages("latest answer", context, None, context_limit=6)

    assert messages[0].role == "system"
    assert [m.content for m in messages[1:-1]] == [f"m{i}" for i in range(6, 12)]
    assert messages[-1] == Message(role="user", content="latest answer")
    assert all(m.content != "old system" for m in messages)


def test_each_backend_gets_its_own_context_cap():
    context = [ConversationMessage(role=MessageRole.USER, content=f"m{i}") for i in range(20)]
    backends = {
        "openai": FakeLLM(kind=LLMProviderKind.OPENAI),
        "ollama": FakeLLM(kind=LLMProviderKind.OLLAMA),
        "lmstudio": FakeLLM(kind=LLMProviderKind.LMSTUDIO),
    }
    responder = _responder(**backends)

    for name, expected in (("openai", 10), ("ollama", 8), ("lmstudio", 6)):
        asyncio.run(responder.generate_response("now", context, provider=name))
        sent = backends[name].calls[-1]["messages"]
        # system prompt + history + transcript
        assert len(sent) == expected + 2


def test_empty_transcript_fails_fast():
    llm = FakeLLM()
    result = asyncio.run(_responder(openai=llm).generate_response("   ", []))
    assert result.success is False
    assert llm.calls == []


def test_unknown_and_unconfigured_providers_fail():
    responder = _responder(openai=FakeLLM(), ollama=FakeLLM(kind=LLMProviderKind.OLLAMA, configured=False))

    unknown = asyncio.run(responder.generate_response("hi", [], provider="gemini"))
    missing = asyncio.run(responder.generate_response("hi", [], provider="lmstudio"))
    unconfigured = asyncio.run(responder.generate_response("hi", [], provider="ollama"))

    assert unknown.success is False and "Unsupported LLM provider" in unknown.error
    assert missing.success is False
    assert unconfigured.success is False and "not configured" in unconfigured.error


def test_backend_error_is_reported_not_raised_and_not_retried():
    llm = FakeLLM(fail_with=LLMError("openai API error: 500 Internal Server Error", status_code=500))
    result = asyncio.run(_responder(openai=llm).generate_response("hi", []))

    assert result.success is False
    assert "500" in result.error
    assert len(llm.calls) == 1
    assert llm.rate_limiter.request_count() == 1


def test_exhausted_rate_limit_fails_without_calling_backend():
    llm = FakeLLM(max_requests=1)
    responder = _responder(openai=llm)

    first = asyncio.run(responder.generate_response("one", []))
    second = asyncio.run(responder.generate_response("two", []))

    assert first.success is True
    assert second.success is False and "rate limit" in second.error
    assert len(llm.calls) == 1


def test_from_settings_wires_openai_over_http():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"choices": [{"message": {"content": "Great, thanks."}}]})

    async def scenario():
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            settings = Settings(_env_file=None, openai_api_key="sk-test", llm_provider="openai")
            responder = InterviewResponder.from_settings(settings, client=client)
            result = await responder.generate_response("Hello", [])
            await responder.close()
            return result, responder.provider_status()

    result, status = asyncio.run(scenario())

    assert result.success is True
    assert result.response == "Great, thanks."
    assert [s.name for s in status] == ["openai", "ollama", "lmstudio"]
    assert status[0].remaining == 59
