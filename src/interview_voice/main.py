"""
Main entry point for the interview voice pipeline.

Each subcommand drives one operation of the pipeline coordinator against the
backends configured in the environment, which makes it easy to check a
deployment one stage at a time.
"""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any

from interview_voice.config import get_settings
from interview_voice.orchestrator.pipeline import PipelineCoordinator
from interview_voice.orchestrator.schemas import InterviewConfig, InterviewType, ProviderPreferences

logger = logging.getLogger(__name__)


def setup_logging() -> None:
    """Configure application logging."""
    settings = get_settings()
    logging.basicConfig(
        level=getattr(logging, settings.log_level),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="interview-voice", description="Interview voice pipeline tools")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("status", help="Print configuration and rate-limit state of every backend")

    stt = sub.add_parser("stt", help="Transcribe an audio file with STT failover")
    stt.add_argument("file", type=Path)
    stt.add_argument("--format", default=None, help="Audio container (default: file extension)")
    stt.add_argument("--language", default="en")
    stt.add_argument("--provider", default=None, help="STT provider to try first")

    llm = sub.add_parser("llm", help="Generate an interviewer reply to a transcript")
    llm.add_argument("text")
    llm.add_argument("--provider", default=None, choices=["openai", "ollama", "lmstudio"])
    _add_interview_args(llm)

    tts = sub.add_parser("tts", help="Synthesize speech for a piece of text")
    tts.add_argument("text")
    tts.add_argument("--provider", default=None, choices=["openai", "elevenlabs", "coqui", "piper"])
    tts.add_argument("--voice", default=None)
    tts.add_argument("--out", type=Path, default=None, help="Output file (default: reply.<format>)")

    pipe = sub.add_parser("pipeline", help="Run STT -> LLM -> TTS on an audio file")
    pipe.add_argument("file", type=Path)
    pipe.add_argument("--format", default=None)
    pipe.add_argument("--language", default="en")
    pipe.add_argument("--stt-provider", default=None)
    pipe.add_argument("--llm-provider", default=None, choices=["openai", "ollama", "lmstudio"])
    pipe.add_argument("--tts-provider", default=None, choices=["openai", "elevenlabs", "coqui", "piper"])
    pipe.add_argument("--voice", default=None)
    pipe.add_argument("--out", type=Path, default=None)
    _add_interview_args(pipe)

    return parser


def _add_interview_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--interview-type",
        default=None,
        choices=[t.value for t in InterviewType],
        help="Run as an interview of this type (omit for free conversation)",
    )
    parser.add_argument("--question", action="append", default=[], help="Interview question (repeatable)")
    parser.add_argument("--current-index", type=int, default=0)


def _interview_config(args: argparse.Namespace) -> InterviewConfig | None:
    if args.interview_type is None and not args.question:
        return None
    return InterviewConfig(
        type=InterviewType(args.interview_type or InterviewType.MIXED.value),
        questions=list(args.question),
        current_index=args.current_index,
    )


def _audio_format(path: Path, explicit: str | None) -> str:
    return explicit or path.suffix.lstrip(".").lower() or "wav"


def _print_json(data: Any) -> None:
    print(json.dumps(data, indent=2, default=str))


async def run_command(args: argparse.Namespace) -> int:
    """Execute one subcommand and return the process exit code."""
    coordinator = PipelineCoordinator.from_settings(get_settings())
    try:
        if args.command == "status":
            _print_json([s.to_dict() for s in coordinator.provider_status()])
            return 0

        if args.command == "stt":
            result = await coordinator.transcribe(
                args.file.read_bytes(),
                _audio_format(args.file, args.format),
                args.language,
                preferred=args.provider,
            )
            _print_json(
                {
                    "success": result.success,
                    "transcript": result.transcript,
                    "confidence": result.confidence,
                    "provider": result.provider,
                    "error": result.error,
                }
            )
            return 0 if result.success else 1

        if args.command == "llm":
            result = await coordinator.respond(args.text, (), _interview_config(args), provider=args.provider)
            _print_json(result.model_dump())
            return 0 if result.success else 1

        if args.command == "tts":
            result = await coordinator.synthesize(args.text, voice=args.voice, provider=args.provider)
            if result.success and result.audio:
                out = args.out or Path(f"reply.{result.format}")
                out.write_bytes(result.audio)
                logger.info(f"Wrote {len(result.audio)} bytes to {out}")
            _print_json(
                {
                    "success": result.success,
                    "provider": result.provider,
                    "format": result.format,
                    "error": result.error,
                }
            )
            return 0 if result.success else 1

        if args.command == "pipeline":
            result = await coordinator.run_pipeline(
                args.file.read_bytes(),
                format=_audio_format(args.file, args.format),
                language=args.language,
                interview_config=_interview_config(args),
                preferences=ProviderPreferences(
                    stt=args.stt_provider,
                    llm=args.llm_provider,
                    tts=args.tts_provider,
                    voice=args.voice,
                ),
            )
            if result.audio:
                out = args.out or Path(f"reply.{result.audio_format}")
                out.write_bytes(result.audio)
                logger.info(f"Wrote {len(result.audio)} bytes to {out}")
            _print_json(result.model_dump(exclude={"audio"}))
            return 0 if result.success else 1

        raise ValueError(f"Unknown command: {args.command}")
    finally:
        await coordinator.close()


def main(argv: list[str] | None = None) -> None:
    """Main entry point for the application."""
    args = build_parser().parse_args(sys.argv[1:] if argv is None else argv)
    setup_logging()

    try:
        code = asyncio.run(run_command(args))
    except KeyboardInterrupt:
        print("\nInterrupted by user.")
        sys.exit(0)
    except Exception as e:
        logging.error(f"Application error: {e}", exc_info=True)
        sys.exit(1)
    sys.exit(code)


if __name__ == "__main__":
    main()
