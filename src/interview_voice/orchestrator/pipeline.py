"""
Pipeline coordinator.

Runs one utterance through STT -> LLM -> TTS. Each stage gets its own timeout
and failures stop the run at that stage while keeping everything the earlier
stages produced. The coordinator owns no conversation state: context and
interview progress are passed in by the caller on every call.
"""

import asyncio
import logging
import time
from collections.abc import Awaitable, Sequence
from typing import Any, TypeVar

import httpx

from interview_voice.config import Settings, get_settings
from interview_voice.orchestrator.responder import InterviewResponder
from interview_voice.orchestrator.schemas import (
    ConversationMessage,
    InterviewConfig,
    LLMResult,
    PipelineResult,
    PipelineStage,
    ProviderPreferences,
    StageTimeouts,
)
from interview_voice.voice.rate_limiter import ProviderStatus
from interview_voice.voice.stt import STTResult
from interview_voice.voice.stt_manager import STTManager
from interview_voice.voice.tts import TextToSpeech, TTSResult

logger = logging.getLogger(__name__)

T = TypeVar("T")


class StageTimeoutError(Exception):
    """A pipeline stage did not finish within its timeout."""

    def __init__(self, stage: PipelineStage, timeout_s: float) -> None:
        super().__init__(f"{stage.value.upper()} timed out after {timeout_s:.1f}s")
        self.stage = stage
        self.timeout_s = timeout_s


class PipelineCoordinator:
    """Sequences the three stages and assembles a `PipelineResult`."""

    def __init__(
        self,
        stt: STTManager,
        responder: InterviewResponder,
        tts: TextToSpeech,
        timeouts: StageTimeouts | None = None,
    ) -> None:
        self._stt = stt
        self._responder = responder
        self._tts = tts
        self._timeouts = timeouts or StageTimeouts()

    @property
    def timeouts(self) -> StageTimeouts:
        return self._timeouts

    async def _with_timeout(self, stage: PipelineStage, coro: Awaitable[T]) -> T:
        # Caller cancellation is not caught here and propagates unchanged.
        timeout_s = self._timeouts.for_stage(stage)
        try:
            return await asyncio.wait_for(coro, timeout=timeout_s)
        except asyncio.TimeoutError as e:
            raise StageTimeoutError(stage, timeout_s or 0.0) from e

    async def transcribe(
        self,
        audio: bytes,
        format: str = "webm",
        language: str = "en",
        *,
        preferred: str | None = None,
    ) -> STTResult:
        """STT stage on its own."""
        try:
            return await self._with_timeout(
                PipelineStage.STT,
                self._stt.transcribe(audio, format, language, preferred=preferred),
            )
        except StageTimeoutError as e:
            logger.warning(f"[VOICE][PIPELINE] {e}")
            return STTResult(success=False, error=str(e))

    async def respond(
        self,
        transcript: str,
        context: Sequence[ConversationMessage] = (),
        interview_config: InterviewConfig | None = None,
        *,
        provider: str | None = None,
    ) -> LLMResult:
        """LLM stage on its own."""
        try:
            return await self._with_timeout(
                PipelineStage.LLM,
                self._responder.generate_response(transcript, context, interview_config, provider=provider),
            )
        except StageTimeoutError as e:
            logger.warning(f"[VOICE][PIPELINE] {e}")
            return LLMResult(success=False, error=str(e), provider=provider)

    async def synthesize(
        self,
        text: str,
        voice: str | None = None,
        provider: str | None = None,
    ) -> TTSResult:
        """TTS stage on its own."""
        try:
            return await self._with_timeout(
                PipelineStage.TTS,
                self._tts.synthesize(text, voice=voice, provider=provider),
            )
        except StageTimeoutError as e:
            logger.warning(f"[VOICE][PIPELINE] {e}")
            return TTSResult(success=False, error=str(e), provider=provider)

    async def run_pipeline(
        self,
        audio: bytes,
        format: str = "webm",
        language: str = "en",
        context: Sequence[ConversationMessage] = (),
        interview_config: InterviewConfig | None = None,
        preferences: ProviderPreferences | None = None,
    ) -> PipelineResult:
        """
        Process one utterance end to end.

        Args:
            audio: Encoded utterance bytes.
            format: Container of `audio` (webm, wav, ...).
            language: Spoken language hint for STT.
            context: Caller-owned conversation history (read only).
            interview_config: Caller-owned interview progress (read only).
            preferences: Backend selection for this run.

        Returns:
            PipelineResult. On failure `failed_stage` is set and all outputs of
            earlier stages are kept; audio is present only on full success.
        """
        prefs = preferences or ProviderPreferences()
        started = time.perf_counter()

        stt_result = await self.transcribe(audio, format, language, preferred=prefs.stt)
        transcript = (stt_result.transcript or "").strip()
        if not stt_result.success or not transcript:
            error = stt_result.error if not stt_result.success else "No speech detected in audio"
            logger.warning(f"[VOICE][PIPELINE] stage=stt failed: {error}")
            return PipelineResult(
                success=False,
                failed_stage=PipelineStage.STT,
                error=error,
                transcript=stt_result.transcript if stt_result.success else None,
                stt_provider=stt_result.provider,
            )

        llm_result = await self.respond(transcript, context, interview_config, provider=prefs.llm)
        response = (llm_result.response or "").strip()
        if not llm_result.success or not response:
            error = llm_result.error or "Empty response"
            logger.warning(f"[VOICE][PIPELINE] stage=llm failed: {error}")
            return PipelineResult(
                success=False,
                failed_stage=PipelineStage.LLM,
                error=error,
                transcript=transcript,
                stt_provider=stt_result.provider,
                llm_provider=llm_result.provider,
            )

        progress: dict[str, Any] = {
            "next_question": llm_result.next_question,
            "is_complete": llm_result.is_complete,
        }

        tts_result = await self.synthesize(response, voice=prefs.voice, provider=prefs.tts)
        if not tts_result.success or not tts_result.audio:
            error = tts_result.error or "No audio produced"
            logger.warning(f"[VOICE][PIPELINE] stage=tts failed: {error}")
            return PipelineResult(
                success=False,
                failed_stage=PipelineStage.TTS,
                error=error,
                transcript=transcript,
                response=response,
                stt_provider=stt_result.provider,
                llm_provider=llm_result.provider,
                tts_provider=tts_result.provider,
                **progress,
            )

        logger.info(
            f"[VOICE][PIPELINE] ok stt={stt_result.provider} llm={llm_result.provider} "
            f"tts={tts_result.provider} dur={time.perf_counter() - started:.2f}s"
        )
        return PipelineResult(
            success=True,
            transcript=transcript,
            response=response,
            audio=tts_result.audio,
            audio_format=tts_result.format,
            stt_provider=stt_result.provider,
            llm_provider=llm_result.provider,
            tts_provider=tts_result.provider,
            **progress,
        )

    def provider_status(self) -> list[ProviderStatus]:
        """Configuration and rate-limit state of every backend, STT first."""
        return [
            *self._stt.provider_status(),
            *self._responder.provider_status(),
            *self._tts.provider_status(),
        ]

    async def close(self) -> None:
        await self._stt.close()
        await self._responder.close()
        await self._tts.close()

    @classmethod
    def from_settings(
        cls,
        settings: Settings | None = None,
        *,
        client: httpx.AsyncClient | None = None,
    ) -> "PipelineCoordinator":
        s = settings or get_settings()
        return cls(
            STTManager.from_settings(s, client=client),
            InterviewResponder.from_settings(s, client=client),
            TextToSpeech.from_settings(s, client=client),
            StageTimeouts(stt=s.stt_timeout_s, llm=s.llm_timeout_s, tts=s.tts_timeout_s),
        )
