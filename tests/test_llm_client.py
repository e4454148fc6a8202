import json

import httpx
import pytest

from interview_voice.models.llm_client import (
    LLMError,
    LLMProviderKind,
    Message,
    OllamaChatClient,
    OpenAIChatClient,
)


def _messages() -> list[Message]:
    return [
        Message(role="system", content="You are an interviewer."),
        Message(role="user", content="Hi"),
    ]


@pytest.mark.asyncio
async def test_openai_chat_sends_model_and_parses_choice():
    seen: dict = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["auth"] = request.headers.get("authorization")
        seen["payload"] = json.loads(request.content)
        return httpx.Response(
            200,
            json={
                "model": "gpt-4o-mini",
                "choices": [{"message": {"role": "assistant", "content": " Hello! "}, "finish_reason": "stop"}],
                "usage": {"prompt_tokens": 12, "completion_tokens": 3, "total_tokens": 15},
            },
        )

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        llm = OpenAIChatClient(api_key="sk-test", client=client)
        response = await llm.chat(_messages(), temperature=0.7, max_tokens=300)

    assert response.content == "Hello!"
    assert response.usage["total_tokens"] == 15
    assert seen["url"] == "https://api.openai.com/v1/chat/completions"
    assert seen["auth"] == "Bearer sk-test"
    assert seen["payload"]["model"] == "gpt-4o-mini"
    assert seen["payload"]["max_tokens"] == 300
    assert seen["payload"]["temperature"] == 0.7
    assert seen["payload"]["messages"][0] == {"role": "system", "content": "You are an interviewer."}


@pytest.mark.asyncio
async def test_openai_chat_error_status_raises_llm_error():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(429, json={"error": "slow down"})

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        llm = OpenAIChatClient(api_key="sk-test", client=client)
        with pytest.raises(LLMError) as exc:
            await llm.chat(_messages())

    assert exc.value.status_code == 429


@pytest.mark.asyncio
async def test_openai_chat_without_choices_raises_llm_error():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"choices": []})

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        llm = OpenAIChatClient(api_key="sk-test", client=client)
        with pytest.raises(LLMError, match="no choices"):
            await llm.chat(_messages())


@pytest.mark.asyncio
async def test_transport_error_raises_llm_error():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused")

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        llm = OllamaChatClient(base_url="http://localhost:11434", client=client)
        with pytest.raises(LLMError, match="request failed"):
            await llm.chat(_messages())


@pytest.mark.asyncio
async def test_ollama_chat_uses_options_and_counts_tokens():
    seen: dict = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["payload"] = json.loads(request.content)
        return httpx.Response(
            200,
            json={
                "model": "llama2",
                "message": {"role": "assistant", "content": "Tell me more."},
                "done": True,
                "prompt_eval_count": 20,
                "eval_count": 4,
            },
        )

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        llm = OllamaChatClient(base_url="http://localhost:11434/", client=client)
        response = await llm.chat(_messages(), temperature=0.2, max_tokens=50)

    assert seen["url"] == "http://localhost:11434/api/chat"
    assert seen["payload"]["stream"] is False
    assert seen["payload"]["options"] == {"temperature": 0.2, "num_predict": 50}
    assert response.content == "Tell me more."
    assert response.usage["total_tokens"] == 24


def test_lmstudio_needs_no_key_and_has_smaller_context():
    lmstudio = OpenAIChatClient(base_url="http://localhost:1234/v1", kind=LLMProviderKind.LMSTUDIO)
    openai = OpenAIChatClient(api_key="")
    ollama = OllamaChatClient()

    assert lmstudio.name == "lmstudio"
    assert lmstudio.is_configured() is True
    assert openai.is_configured() is False
    assert (openai.context_limit, ollama.context_limit, lmstudio.context_limit) == (10, 8, 6)
