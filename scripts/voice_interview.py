#!/usr/bin/env python

import argparse
import asyncio
import os
import sys
from pathlib import Path

from interview_voice.config import get_settings
from interview_voice.main import setup_logging
from interview_voice.orchestrator.pipeline import PipelineCoordinator
from interview_voice.orchestrator.schemas import InterviewConfig, InterviewType, ProviderPreferences
from interview_voice.voice.audio_io import AudioIO, AudioIOConfig
from interview_voice.voice.recording import RecordingConfig
from interview_voice.voice.vad import VADConfig, VoiceActivityDetector
from interview_voice.voice.voice_session import VoiceSession, VoiceSessionConfig


def _load_questions(args) -> list[str]:
    questions = list(args.question or [])

    if args.questions_file:
        text = Path(args.questions_file).read_text(encoding="utf-8")
        questions.extend(line.strip() for line in text.splitlines() if line.strip())

    if args.stdin_questions:
        if sys.stdin.isatty():
            raise RuntimeError(
                "--stdin-questions was set, but stdin is a TTY (nothing is being piped). "
                "Pipe one question per line into stdin or use --question / --questions-file instead."
            )
        questions.extend(line.strip() for line in sys.stdin.read().splitlines() if line.strip())

    return questions


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(description="Run a live voice interview from the microphone")

    p.add_argument(
        "--interview-type",
        default=os.getenv("VOICE_INTERVIEW_TYPE", "mixed"),
        choices=[t.value for t in InterviewType],
        help="Interview style (default: VOICE_INTERVIEW_TYPE or 'mixed')",
    )
    p.add_argument("--question", action="append", help="Interview question (repeatable)")
    g = p.add_mutually_exclusive_group()
    g.add_argument("--questions-file", help="File with one question per line")
    g.add_argument("--stdin-questions", action="store_true", help="Read questions from stdin, one per line")

    p.add_argument("--artifacts-dir", default="data/interviews", help="Where to store interview artifacts")
    p.add_argument("--language", default=os.getenv("VOICE_LANGUAGE", "en"))
    p.add_argument("--sample-rate", type=int, default=int(os.getenv("VOICE_SAMPLE_RATE", "16000") or "16000"))

    # Providers
    p.add_argument(
        "--stt-provider",
        default=os.getenv("VOICE_STT_PROVIDER") or None,
        help="STT provider to try first (default: VOICE_STT_PROVIDER, else the configured order)",
    )
    p.add_argument(
        "--llm-provider",
        default=os.getenv("VOICE_LLM_PROVIDER") or None,
        choices=["openai", "ollama", "lmstudio"],
        help="LLM backend (default: VOICE_LLM_PROVIDER, else LLM_PROVIDER)",
    )
    p.add_argument(
        "--tts-provider",
        default=os.getenv("VOICE_TTS_PROVIDER") or None,
        choices=["openai", "elevenlabs", "coqui", "piper"],
        help="TTS backend (default: VOICE_TTS_PROVIDER, else TTS_PROVIDER)",
    )
    p.add_argument(
        "--voice",
        default=os.getenv("VOICE_TTS_VOICE") or None,
        help="TTS voice (default: VOICE_TTS_VOICE, else TTS_VOICE)",
    )

    # Recording
    p.add_argument(
        "--silence-timeout",
        type=float,
        default=float(os.getenv("VOICE_SILENCE_TIMEOUT_S", "2.0") or "2.0"),
        help="Seconds of silence that end an utterance (default: VOICE_SILENCE_TIMEOUT_S or 2.0)",
    )
    p.add_argument(
        "--max-recording",
        type=float,
        default=float(os.getenv("VOICE_MAX_RECORDING_S", "30") or "30"),
        help="Hard cap on one utterance in seconds (default: VOICE_MAX_RECORDING_S or 30)",
    )
    p.add_argument(
        "--rms-threshold",
        type=float,
        default=float(os.getenv("VOICE_RMS_THRESHOLD", "0.01") or "0.01"),
        help="VAD energy threshold (default: VOICE_RMS_THRESHOLD or 0.01)",
    )

    # Playback
    p.add_argument(
        "--playback",
        default=os.getenv("VOICE_PLAYBACK", "true"),
        help="Play synthesized replies (default: VOICE_PLAYBACK or true)",
    )

    return p


async def main(argv: list[str] | None = None) -> None:
    args = build_parser().parse_args(argv)

    def _flag(v: str) -> bool:
        return (v or "").strip().lower() in {"1", "true", "yes", "y", "on"}

    settings = get_settings()
    setup_logging()

    questions = _load_questions(args)
    interview_config = None
    if questions:
        interview_config = InterviewConfig(type=InterviewType(args.interview_type), questions=questions)

    coordinator = PipelineCoordinator.from_settings(settings)
    audio = AudioIO(AudioIOConfig(sample_rate=args.sample_rate))
    vad = VoiceActivityDetector(
        VADConfig(
            rms_threshold=args.rms_threshold,
            zcr_min=settings.vad_zcr_min,
            zcr_max=settings.vad_zcr_max,
        )
    )

    session = VoiceSession(
        coordinator=coordinator,
        audio=audio,
        vad=vad,
        interview_config=interview_config,
        preferences=ProviderPreferences(
            stt=args.stt_provider,
            llm=args.llm_provider,
            tts=args.tts_provider,
            voice=args.voice,
        ),
        recording_config=RecordingConfig(
            poll_interval_s=settings.vad_poll_interval_s,
            silence_timeout_s=args.silence_timeout,
            max_recording_time_s=args.max_recording,
            min_recording_s=settings.min_recording_s,
        ),
        config=VoiceSessionConfig(
            artifacts_dir=args.artifacts_dir,
            language=args.language,
            playback_enabled=_flag(args.playback),
        ),
    )

    try:
        await session.run()
    finally:
        await session.stop()
        await coordinator.close()


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        raise SystemExit(0)
