import asyncio
import json

import numpy as np

from interview_voice.orchestrator.schemas import (
    InterviewConfig,
    MessageRole,
    PipelineResult,
    PipelineStage,
)
from interview_voice.voice.recording import RecordingConfig, RecordingState, Utterance
from interview_voice.voice.vad import VoiceActivityDetector
from interview_voice.voice.voice_session import VoiceSession, VoiceSessionConfig

SR = 1000


class FakeAudio:
    """Capture channel + playback; speaks for `speech_windows` reads, then stays silent."""

    def __init__(self, speech_windows: int = 0) -> None:
        self.sample_rate = SR
        self._speech_windows = speech_windows
        self.played: list[tuple[bytes, str]] = []
        self.is_open = False

    async def open(self) -> None:
        self.is_open = True

    async def read_window(self, duration_s: float):
        await asyncio.sleep(0.005)
        if self._speech_windows > 0:
            self._speech_windows -= 1
            k = np.arange(100)
            return (0.3 * 32767 * np.sin(2 * np.pi * 50 * k / SR)).astype(np.int16)
        return np.zeros(100, dtype=np.int16)

    async def drain(self) -> None:
        pass

    async def close(self) -> None:
        self.is_open = False

    async def play(self, audio: bytes, audio_format: str = "wav", *, timeout_s: float = 60.0) -> bool:
        self.played.append((audio, audio_format))
        return True


class FakeCoordinator:
    def __init__(self, results: list[PipelineResult]) -> None:
        self._results = list(results)
        self.calls: list[dict] = []

    async def run_pipeline(self, audio, format="webm", language="en", context=(), interview_config=None, preferences=None):
        self.calls.append(
            {
                "format": format,
                "language": language,
                "context": list(context),
                "interview_config": interview_config,
            }
        )
        if not self._results:
            raise AssertionError("No more fake pipeline results")
        return self._results.pop(0)


def _utterance() -> Utterance:
    return Utterance(audio=b"RIFFcandidate", duration_s=1.0, sample_rate=SR)


def _session(tmp_path, coordinator, audio=None, interview_config=None) -> VoiceSession:
    return VoiceSession(
        coordinator=coordinator,
        audio=audio or FakeAudio(),
        vad=VoiceActivityDetector(),
        interview_config=interview_config,
        recording_config=RecordingConfig(poll_interval_s=0.1, silence_timeout_s=0.03, min_recording_s=0.2),
        config=VoiceSessionConfig(artifacts_dir=str(tmp_path)),
        session_id="test-session",
    )


def _turns(session: VoiceSession) -> list[dict]:
    return [json.loads(line) for line in session.turn_log_path.read_text(encoding="utf-8").splitlines()]


def test_successful_turn_updates_context_and_advances_interview(tmp_path):
    coordinator = FakeCoordinator(
        [
            PipelineResult(
                success=True,
                transcript="Hi, I'm ready.",
                response="Great. Tell me about a challenging bug.",
                audio=b"ID3reply",
                audio_format="mp3",
                next_question="Tell me about a challenging bug.",
                is_complete=False,
            )
        ]
    )
    audio = FakeAudio()
    config = InterviewConfig(type="technical", questions=["Tell me about a challenging bug."])
    session = _session(tmp_path, coordinator, audio, config)

    result = asyncio.run(session.handle_utterance(_utterance()))

    assert result.success is True
    assert [(m.role, m.content) for m in session.context] == [
        (MessageRole.USER, "Hi, I'm ready."),
        (MessageRole.ASSISTANT, "Great. Tell me about a challenging bug."),
    ]
    assert session.interview_config.current_index == 1
    assert session.is_complete is True
    # The caller's config object is not mutated.
    assert config.current_index == 0
    assert audio.played == [(b"ID3reply", "mp3")]

    turns = _turns(session)
    assert [t["role"] for t in turns] == ["candidate", "interviewer"]
    assert turns[0]["artifacts"] == ["turn_001_candidate.wav"]
    assert turns[1]["artifacts"] == ["turn_001_reply.mp3"]
    assert (tmp_path / "test-session" / "turn_001_reply.mp3").read_bytes() == b"ID3reply"


def test_context_is_passed_to_the_next_turn(tmp_path):
    coordinator = FakeCoordinator(
        [
            PipelineResult(success=True, transcript="one", response="reply one", audio=b"x", audio_format="wav"),
            PipelineResult(success=True, transcript="two", response="reply two", audio=b"y", audio_format="wav"),
        ]
    )
    session = _session(tmp_path, coordinator)

    asyncio.run(session.handle_utterance(_utterance()))
    asyncio.run(session.handle_utterance(_utterance()))

    assert coordinator.calls[0]["context"] == []
    assert [m.content for m in coordinator.calls[1]["context"]] == ["one", "reply one"]
    assert coordinator.calls[1]["format"] == "wav"


def test_llm_failure_keeps_transcript_only(tmp_path):
    coordinator = FakeCoordinator(
        [
            PipelineResult(
                success=False,
                failed_stage=PipelineStage.LLM,
                error="openai API error: 503",
                transcript="I like Python.",
            )
        ]
    )
    audio = FakeAudio()
    config = InterviewConfig(questions=["Q1", "Q2"])
    session = _session(tmp_path, coordinator, audio, config)

    asyncio.run(session.handle_utterance(_utterance()))

    assert [m.content for m in session.context] == ["I like Python."]
    assert session.interview_config.current_index == 0
    assert audio.played == []
    assert [t["role"] for t in _turns(session)] == ["candidate", "system"]


def test_run_stops_when_interview_completes(tmp_path):
    coordinator = FakeCoordinator(
        [
            PipelineResult(
                success=True,
                transcript="That's all from me.",
                response="Thanks for your time today.",
                audio=b"RIFFbye",
                audio_format="wav",
                is_complete=True,
            )
        ]
    )
    audio = FakeAudio(speech_windows=5)
    config = InterviewConfig(questions=["Q1"], current_index=1)
    session = _session(tmp_path, coordinator, audio, config)

    asyncio.run(asyncio.wait_for(session.run(), timeout=3.0))

    assert len(coordinator.calls) == 1
    assert coordinator.calls[0]["interview_config"].is_complete is True
    assert audio.played == [(b"RIFFbye", "wav")]
    assert audio.is_open is False
    assert session.controller.state is RecordingState.IDLE
