import asyncio

import pytest

from interview_voice.models.llm_client import LLMClientBase, LLMError, LLMProviderKind, LLMResponse
from interview_voice.orchestrator.pipeline import PipelineCoordinator
from interview_voice.orchestrator.responder import InterviewResponder
from interview_voice.orchestrator.schemas import (
    ConversationMessage,
    InterviewConfig,
    MessageRole,
    PipelineStage,
    ProviderPreferences,
    StageTimeouts,
)
from interview_voice.voice.http_client import ProviderError
from interview_voice.voice.rate_limiter import RateLimiter
from interview_voice.voice.stt import STTProvider, STTProviderKind, STTResult
from interview_voice.voice.stt_manager import STTManager
from interview_voice.voice.tts import TextToSpeech, TTSProvider, TTSProviderKind

AUDIO = b"\x00\x01" * 2000


class FakeSTT(STTProvider):
    kind = STTProviderKind.LOCAL

    def __init__(self, transcript: str = "I once debugged a race condition.", *, fail: bool = False, delay_s: float = 0.0):
        super().__init__(RateLimiter(100, 60_000))
        self._transcript = transcript
        self._fail = fail
        self._delay_s = delay_s
        self.calls = 0

    @property
    def name(self) -> str:
        return "fake-stt"

    def is_configured(self) -> bool:
        return True

    async def _transcribe(self, audio: bytes, format: str, language: str) -> STTResult:
        self.calls += 1
        if self._delay_s:
            await asyncio.sleep(self._delay_s)
        if self._fail:
            raise ProviderError("stt backend down")
        return STTResult(success=True, transcript=self._transcript, provider=self.name)


class FakeLLM(LLMClientBase):
    kind = LLMProviderKind.OPENAI

    def __init__(self, reply: str = "Interesting. How did you find it?", *, fail: bool = False, delay_s: float = 0.0):
        super().__init__(rate_limiter=RateLimiter(100, 60_000))
        self._reply = reply
        self._fail = fail
        self._delay_s = delay_s
        self.calls: list = []

    @property
    def model(self) -> str:
        return "fake"

    def is_configured(self) -> bool:
        return True

    async def chat(self, messages, temperature=0.7, max_tokens=None, **kwargs) -> LLMResponse:
        self.calls.append(messages)
        if self._delay_s:
            await asyncio.sleep(self._delay_s)
        if self._fail:
            raise LLMError("openai API error: 503 Service Unavailable", status_code=503)
        return LLMResponse(content=self._reply, model="fake")


class FakeTTS(TTSProvider):
    kind = TTSProviderKind.COQUI
    format = "wav"

    def __init__(self, *, fail: bool = False) -> None:
        super().__init__(rate_limiter=RateLimiter(100, 60_000))
        self._fail = fail
        self.calls: list[tuple[str, str]] = []

    def is_configured(self) -> bool:
        return True

    async def _synthesize(self, text: str, voice: str) -> bytes:
        self.calls.append((text, voice))
        if self._fail:
            raise ProviderError("Coqui TTS error: 500 Internal Server Error")
        return b"RIFF....WAVE"


def _coordinator(stt=None, llm=None, tts=None, timeouts=None) -> tuple[PipelineCoordinator, FakeSTT, FakeLLM, FakeTTS]:
    stt = stt or FakeSTT()
    llm = llm or FakeLLM()
    tts = tts or FakeTTS()
    coordinator = PipelineCoordinator(
        STTManager([stt]),
        InterviewResponder({LLMProviderKind.OPENAI: llm}),
        TextToSpeech({TTSProviderKind.COQUI: tts}, default_provider=TTSProviderKind.COQUI, default_voice="p225"),
        timeouts,
    )
    return coordinator, stt, llm, tts


def test_full_pipeline_success():
    coordinator, stt, llm, tts = _coordinator()
    config = InterviewConfig(type="technical", questions=["Tell me about a challenging bug.", "Why Python?"])

    result = asyncio.run(coordinator.run_pipeline(AUDIO, "webm", "en", [], config))

    assert result.success is True
    assert result.failed_stage is None
    assert result.transcript == "I once debugged a race condition."
    assert result.response == "Interesting. How did you find it?"
    assert result.audio == b"RIFF....WAVE"
    assert result.audio_format == "wav"
    assert result.next_question == "Tell me about a challenging bug."
    assert result.is_complete is False
    assert (result.stt_provider, result.llm_provider, result.tts_provider) == ("fake-stt", "openai", "coqui")
    assert tts.calls == [("Interesting. How did you find it?", "p225")]
    assert config.current_index == 0


def test_stt_failure_stops_before_llm():
    coordinator, _, llm, tts = _coordinator(stt=FakeSTT(fail=True))

    result = asyncio.run(coordinator.run_pipeline(AUDIO))

    assert result.success is False
    assert result.failed_stage is PipelineStage.STT
    assert "All STT providers failed" in result.error
    assert result.transcript is None
    assert llm.calls == [] and tts.calls == []


def test_blank_transcript_is_an_stt_failure():
    coordinator, _, llm, _ = _coordinator(stt=FakeSTT(transcript="   "))

    result = asyncio.run(coordinator.run_pipeline(AUDIO))

    assert result.failed_stage is PipelineStage.STT
    assert llm.calls == []


def test_llm_failure_preserves_transcript_without_audio():
    coordinator, _, _, tts = _coordinator(llm=FakeLLM(fail=True))

    result = asyncio.run(coordinator.run_pipeline(AUDIO))

    assert result.success is False
    assert result.failed_stage is PipelineStage.LLM
    assert result.transcript == "I once debugged a race condition."
    assert result.response is None
    assert result.audio is None
    assert "503" in result.error
    assert tts.calls == []


def test_tts_failure_preserves_transcript_and_response():
    coordinator, _, _, _ = _coordinator(tts=FakeTTS(fail=True))
    config = InterviewConfig(questions=["Q1"], current_index=1)

    result = asyncio.run(coordinator.run_pipeline(AUDIO, interview_config=config))

    assert result.success is False
    assert result.failed_stage is PipelineStage.TTS
    assert result.transcript == "I once debugged a race condition."
    assert result.response == "Interesting. How did you find it?"
    assert result.audio is None
    assert result.is_complete is True
    assert result.next_question is None


def test_slow_llm_times_out_as_llm_failure():
    coordinator, _, _, tts = _coordinator(
        llm=FakeLLM(delay_s=1.0),
        timeouts=StageTimeouts(stt=1.0, llm=0.05, tts=1.0),
    )

    result = asyncio.run(coordinator.run_pipeline(AUDIO))

    assert result.failed_stage is PipelineStage.LLM
    assert "timed out" in result.error
    assert result.transcript == "I once debugged a race condition."
    assert tts.calls == []


@pytest.mark.asyncio
async def test_caller_cancellation_propagates():
    coordinator, _, _, _ = _coordinator(stt=FakeSTT(delay_s=5.0))

    task = asyncio.create_task(coordinator.run_pipeline(AUDIO))
    await asyncio.sleep(0.02)
    task.cancel()

    with pytest.raises(asyncio.CancelledError):
        await task


def test_context_is_read_but_never_mutated():
    coordinator, _, llm, _ = _coordinator()
    context = [
        ConversationMessage(role=MessageRole.ASSISTANT, content="Tell me about yourself."),
        ConversationMessage(role=MessageRole.USER, content="I build backends."),
    ]
    before = [m.model_copy() for m in context]

    asyncio.run(coordinator.run_pipeline(AUDIO, context=context))

    assert context == before
    sent = [m.content for m in llm.calls[0]]
    assert sent[1:3] == ["Tell me about yourself.", "I build backends."]
    assert sent[-1] == "I once debugged a race condition."


def test_unknown_tts_preference_fails_at_tts_stage():
    coordinator, _, _, _ = _coordinator()

    result = asyncio.run(coordinator.run_pipeline(AUDIO, preferences=ProviderPreferences(tts="polly")))

    assert result.failed_stage is PipelineStage.TTS
    assert result.error == "Unsupported TTS provider: polly"
    assert result.response


def test_diagnostic_operations_and_status():
    coordinator, stt, _, _ = _coordinator()

    transcribed = asyncio.run(coordinator.transcribe(AUDIO, "wav"))
    responded = asyncio.run(coordinator.respond("Hello"))
    spoken = asyncio.run(coordinator.synthesize("Hi there"))

    assert transcribed.transcript == "I once debugged a race condition."
    assert responded.success is True
    assert spoken.format == "wav"

    status = coordinator.provider_status()
    assert [s.stage for s in status] == ["stt", "llm", "tts"]
    assert status[0].remaining == 99
