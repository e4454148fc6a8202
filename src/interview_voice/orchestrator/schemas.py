"""
Pydantic schemas for the orchestrator module.

Defines the conversation, interview-progress and per-stage result models
exchanged between the caller's session and the voice pipeline.
"""

from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, Field, model_validator


def _now_utc() -> datetime:
    """Get current UTC datetime (timezone-aware)."""
    return datetime.now(timezone.utc)


class MessageRole(str, Enum):
    """Role of the speaker in a conversation message."""

    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


class InterviewType(str, Enum):
    """Kinds of interview the responder can run."""

    TECHNICAL = "technical"
    BEHAVIORAL = "behavioral"
    MIXED = "mixed"


class PipelineStage(str, Enum):
    """Stages of one pipeline run, in execution order."""

    STT = "stt"
    LLM = "llm"
    TTS = "tts"


class ConversationMessage(BaseModel):
    """
    One entry of the caller-owned conversation history.

    Insertion order is chronological order. The pipeline only reads a bounded
    suffix of the history and never mutates it.
    """

    role: MessageRole = Field(..., description="Who produced the message")
    content: str = Field(..., description="Message text")
    timestamp: datetime = Field(default_factory=_now_utc, description="When the message was produced")


class InterviewConfig(BaseModel):
    """
    Interview progress as seen by the responder.

    `current_index == len(questions)` marks a completed interview. Instances
    are treated as immutable by the pipeline; callers move forward with
    `advance()`.
    """

    type: InterviewType = Field(default=InterviewType.MIXED, description="Interview style")
    questions: list[str] = Field(default_factory=list, description="Ordered interview questions")
    current_index: int = Field(default=0, ge=0, description="Index of the next question to ask")

    @model_validator(mode="after")
    def _check_index(self) -> "InterviewConfig":
        if self.current_index > len(self.questions):
            raise ValueError(
                f"current_index {self.current_index} is past the end of {len(self.questions)} questions"
            )
        return self

    @property
    def is_complete(self) -> bool:
        return self.current_index >= len(self.questions)

    @property
    def next_question(self) -> str | None:
        if self.is_complete:
            return None
        return self.questions[self.current_index]

    @property
    def remaining_questions(self) -> list[str]:
        return list(self.questions[self.current_index :])

    def advance(self) -> "InterviewConfig":
        """Return a copy moved past the current question (no-op when complete)."""
        if self.is_complete:
            return self
        return self.model_copy(update={"current_index": self.current_index + 1})


class LLMResult(BaseModel):
    """Outcome of one responder call."""

    success: bool
    response: str | None = None
    next_question: str | None = None
    is_complete: bool = False
    error: str | None = None
    provider: str | None = None
    model: str | None = None
    tokens: int = 0


class ProviderPreferences(BaseModel):
    """Caller-selected backends for one pipeline run."""

    stt: str | None = Field(default=None, description="STT provider to try first")
    llm: str | None = Field(default=None, description="LLM backend name")
    tts: str | None = Field(default=None, description="TTS backend name")
    voice: str | None = Field(default=None, description="Voice identifier for TTS")


class StageTimeouts(BaseModel):
    """Per-stage timeouts in seconds; None waits indefinitely."""

    stt: float | None = Field(default=30.0, gt=0)
    llm: float | None = Field(default=60.0, gt=0)
    tts: float | None = Field(default=60.0, gt=0)

    def for_stage(self, stage: PipelineStage) -> float | None:
        return getattr(self, stage.value)


class PipelineResult(BaseModel):
    """
    Outcome of one utterance through STT -> LLM -> TTS.

    On failure `failed_stage` names the stage that failed and every output
    produced by earlier stages is still present.
    """

    success: bool
    failed_stage: PipelineStage | None = None
    error: str | None = None
    transcript: str | None = None
    response: str | None = None
    audio: bytes | None = None
    audio_format: str | None = None
    next_question: str | None = None
    is_complete: bool | None = None
    stt_provider: str | None = None
    llm_provider: str | None = None
    tts_provider: str | None = None
