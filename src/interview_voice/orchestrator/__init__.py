"""
Orchestrator module for sequencing the voice pipeline stages.
"""

from interview_voice.orchestrator.pipeline import PipelineCoordinator, StageTimeoutError
from interview_voice.orchestrator.responder import InterviewResponder
from interview_voice.orchestrator.schemas import (
    ConversationMessage,
    InterviewConfig,
    InterviewType,
    LLMResult,
    MessageRole,
    PipelineResult,
    PipelineStage,
    ProviderPreferences,
    StageTimeouts,
)

__all__ = [
    "PipelineCoordinator",
    "StageTimeoutError",
    "InterviewResponder",
    "ConversationMessage",
    "InterviewConfig",
    "InterviewType",
    "LLMResult",
    "MessageRole",
    "PipelineResult",
    "PipelineStage",
    "ProviderPreferences",
    "StageTimeouts",
]
