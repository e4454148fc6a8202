"""
Application configuration using pydantic-settings.

Loads configuration from environment variables and .env files.
"""

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # Credentials / endpoints
    openai_api_key: str = Field(default="", description="OpenAI API key (Whisper, chat, TTS)")
    openai_base_url: str = Field(
        default="https://api.openai.com/v1",
        description="Base URL of the OpenAI API",
    )
    deepgram_api_key: str = Field(default="", description="Deepgram API key")
    deepgram_url: str = Field(
        default="https://api.deepgram.com/v1/listen",
        description="Deepgram pre-recorded transcription endpoint",
    )
    elevenlabs_api_key: str = Field(default="", description="ElevenLabs API key")
    elevenlabs_base_url: str = Field(
        default="https://api.elevenlabs.io",
        description="Base URL of the ElevenLabs API",
    )
    coqui_tts_url: str = Field(default="", description="Base URL of a Coqui TTS server")
    ollama_base_url: str = Field(default="", description="Base URL of an Ollama server")
    lmstudio_base_url: str = Field(default="", description="Base URL of an LM Studio server (OpenAI-compatible)")
    piper_bin: str = Field(default="piper", description="Path/name of the Piper TTS binary")
    piper_model: str = Field(default="", description="Path to a Piper *.onnx voice model")
    local_whisper_model: str = Field(
        default="",
        description="faster-whisper model size for local STT (empty disables it)",
    )
    local_whisper_device: Literal["cpu", "cuda", "auto"] = Field(default="cpu")

    # Rate limits
    rate_limit_window_ms: int = Field(default=60_000, description="Sliding window for all provider limiters")
    openai_stt_max_requests: int = Field(default=50, description="Whisper requests per window")
    deepgram_max_requests: int = Field(default=1000, description="Deepgram requests per window")
    local_stt_max_requests: int = Field(default=1000, description="Local whisper requests per window")
    llm_max_requests: int = Field(default=60, description="Chat requests per window and backend")
    tts_max_requests: int = Field(default=60, description="Synthesis requests per window and backend")

    # STT
    stt_provider_order: list[str] = Field(
        default_factory=lambda: ["openai", "deepgram", "local"],
        description="STT failover order",
    )
    stt_min_audio_bytes: int = Field(
        default=1000,
        description="Audio payloads smaller than this are rejected before any provider call",
    )
    stt_timeout_s: float = Field(default=30.0, description="STT stage timeout in seconds")

    # LLM
    llm_provider: Literal["openai", "ollama", "lmstudio"] = Field(default="openai")
    openai_chat_model: str = Field(default="gpt-4o-mini")
    ollama_model: str = Field(default="llama2")
    lmstudio_model: str = Field(default="local-model")
    llm_temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    llm_max_tokens: int = Field(default=300, gt=0)
    openai_context_messages: int = Field(default=10, ge=0)
    ollama_context_messages: int = Field(default=8, ge=0)
    lmstudio_context_messages: int = Field(default=6, ge=0)
    llm_timeout_s: float = Field(default=60.0, description="LLM stage timeout in seconds")

    # TTS
    tts_provider: Literal["openai", "elevenlabs", "coqui", "piper"] = Field(default="openai")
    tts_voice: str = Field(default="nova", description="Default voice identifier")
    openai_tts_max_chars: int = Field(default=4000, gt=3)
    elevenlabs_max_chars: int = Field(default=4000, gt=3)
    coqui_max_chars: int = Field(default=4000, gt=3)
    piper_max_chars: int = Field(default=4000, gt=3)
    tts_timeout_s: float = Field(default=60.0, description="TTS stage timeout in seconds")

    # VAD / recording
    vad_rms_threshold: float = Field(default=0.01, ge=0.0)
    vad_zcr_min: float = Field(default=0.01, ge=0.0, le=1.0)
    vad_zcr_max: float = Field(default=0.5, ge=0.0, le=1.0)
    vad_poll_interval_s: float = Field(default=0.1, gt=0.0)
    silence_timeout_s: float = Field(default=2.0, gt=0.0)
    max_recording_time_s: float = Field(default=30.0, gt=0.0)
    min_recording_s: float = Field(default=0.3, ge=0.0)
    sample_rate: int = Field(default=16000, gt=0)

    # Application
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Logging level",
    )
    debug: bool = Field(
        default=False,
        description="Enable debug mode",
    )


@lru_cache
def get_settings() -> Settings:
    """
    Get cached application settings.

    Returns:
        Settings: Application settings instance.
    """
    return Settings()
