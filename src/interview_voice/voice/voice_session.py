"""Voice session loop (glue layer).

This module wires:
mic -> VAD recording controller -> pipeline coordinator -> playback

It owns the per-session conversation context and interview progress and
passes both to the coordinator on every turn. It does NOT re-implement any
pipeline stage.
"""

from __future__ import annotations

import json
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Protocol

from interview_voice.orchestrator.pipeline import PipelineCoordinator
from interview_voice.orchestrator.schemas import (
    ConversationMessage,
    InterviewConfig,
    MessageRole,
    PipelineResult,
    PipelineStage,
    ProviderPreferences,
)
from interview_voice.voice.audio_io import write_audio
from interview_voice.voice.recording import (
    CaptureChannel,
    RecordingConfig,
    RecordingController,
    RecordingState,
    Utterance,
)
from interview_voice.voice.vad import VoiceActivityDetector

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class VoiceSessionConfig:
    artifacts_dir: str = "data/interviews"
    language: str = "en"
    playback_enabled: bool = True
    save_audio: bool = True
    stop_when_complete: bool = True


class AudioDevice(CaptureChannel, Protocol):
    async def play(self, audio: bytes, audio_format: str = "wav", *, timeout_s: float = 60.0) -> bool: ...


class VoiceSession:
    def __init__(
        self,
        *,
        coordinator: PipelineCoordinator,
        audio: AudioDevice,
        vad: VoiceActivityDetector,
        interview_config: InterviewConfig | None = None,
        preferences: ProviderPreferences | None = None,
        recording_config: RecordingConfig | None = None,
        config: VoiceSessionConfig | None = None,
        session_id: str | None = None,
    ) -> None:
        self._coordinator = coordinator
        self._audio = audio
        self._preferences = preferences or ProviderPreferences()
        self._config = config or VoiceSessionConfig()
        self._interview_config = interview_config
        self._context: list[ConversationMessage] = []
        self._turn = 0

        self.session_id = session_id or uuid.uuid4().hex[:12]
        self._session_dir: Path | None = None

        self._controller = RecordingController(
            channel=audio,
            vad=vad,
            on_utterance=self.handle_utterance,
            config=recording_config,
            on_state_change=self._on_state_change,
        )

    @property
    def config(self) -> VoiceSessionConfig:
        return self._config

    @property
    def controller(self) -> RecordingController:
        return self._controller

    @property
    def context(self) -> list[ConversationMessage]:
        return list(self._context)

    @property
    def interview_config(self) -> InterviewConfig | None:
        return self._interview_config

    @property
    def is_complete(self) -> bool:
        return self._interview_config is not None and self._interview_config.is_complete

    @property
    def turn_log_path(self) -> Path:
        return self._ensure_session_dir() / "turns.jsonl"

    async def run(self) -> None:
        """Listen and respond until `stop()` is called or the interview completes."""
        self._ensure_session_dir()
        logger.info(f"[VOICE][SESSION] started id={self.session_id}")
        await self._controller.run()
        logger.info(f"[VOICE][SESSION] stopped id={self.session_id} turns={self._turn}")

    async def stop(self) -> None:
        await self._controller.stop()

    async def handle_utterance(self, utterance: Utterance) -> PipelineResult:
        """Run one captured utterance through the pipeline and fold the outcome into the session."""
        self._turn += 1
        turn = self._turn
        artifacts: list[str] = []
        if self._config.save_audio:
            artifacts.append(self._save(f"turn_{turn:03d}_candidate.{utterance.format}", utterance.audio))

        print("[Voice] Thinking...", flush=True)
        result = await self._coordinator.run_pipeline(
            utterance.audio,
            format=utterance.format,
            language=self._config.language,
            context=tuple(self._context),
            interview_config=self._interview_config,
            preferences=self._preferences,
        )

        if result.transcript:
            self._context.append(ConversationMessage(role=MessageRole.USER, content=result.transcript))
            self._log_turn(role="candidate", text=result.transcript, artifacts=artifacts)
            print(f"\n[Candidate] {result.transcript}\n")

        if result.response:
            self._context.append(ConversationMessage(role=MessageRole.ASSISTANT, content=result.response))
            # The reply carried the next question, so move past it.
            if self._interview_config is not None and result.next_question is not None:
                self._interview_config = self._interview_config.advance()

            reply_artifacts: list[str] = []
            if result.audio and self._config.save_audio:
                reply_artifacts.append(self._save(f"turn_{turn:03d}_reply.{result.audio_format}", result.audio))
            self._log_turn(role="interviewer", text=result.response, artifacts=reply_artifacts)
            print(f"\n[Interviewer] {result.response}\n")

        if not result.success:
            stage = result.failed_stage.value if result.failed_stage else "unknown"
            logger.warning(f"[VOICE][SESSION] turn={turn} failed stage={stage} error={result.error}")
            self._log_turn(role="system", text=f"{stage}: {result.error}", artifacts=[])
            if result.failed_stage is PipelineStage.STT:
                print("[Voice] I didn't catch that. Please try again.", flush=True)

        if result.audio and self._config.playback_enabled:
            await self._audio.play(result.audio, result.audio_format or "wav")

        if result.is_complete and self._config.stop_when_complete:
            logger.info("[VOICE][SESSION] interview complete")
            await self._controller.stop()

        return result

    def _on_state_change(self, old: RecordingState, new: RecordingState) -> None:
        if new is RecordingState.RECORDING:
            print("[Voice] Recording...", flush=True)
        elif new is RecordingState.LISTENING and old is RecordingState.IDLE:
            print("[Voice] Listening (speak when ready)...", flush=True)

    def _ensure_session_dir(self) -> Path:
        if self._session_dir is None:
            d = Path(self._config.artifacts_dir) / self.session_id
            d.mkdir(parents=True, exist_ok=True)
            self._session_dir = d
        return self._session_dir

    def _save(self, name: str, data: bytes) -> str:
        return write_audio(self._ensure_session_dir() / name, data).name

    def _log_turn(self, *, role: str, text: str, artifacts: list[str] | None) -> None:
        rec: dict[str, Any] = {
            "ts": datetime.now().isoformat(),
            "turn": self._turn,
            "role": role,
            "text": text,
            "artifacts": artifacts or [],
        }
        with self.turn_log_path.open("a", encoding="utf-8") as f:
            f.write(json.dumps(rec, ensure_ascii=False) + "\n")
