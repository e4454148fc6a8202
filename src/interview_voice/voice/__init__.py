"""Voice subsystem.

mic -> VAD -> recording controller -> STT -> LLM -> TTS -> speaker

Provider modules convert every backend failure into a typed result; the
orchestrator's pipeline coordinator sequences them.
"""

from interview_voice.voice.audio_io import AudioDeviceBusyError, AudioIO, AudioIOConfig
from interview_voice.voice.rate_limiter import ProviderStatus, RateLimit, RateLimiter
from interview_voice.voice.recording import RecordingConfig, RecordingController, RecordingState, Utterance
from interview_voice.voice.stt import STTProvider, STTProviderKind, STTResult
from interview_voice.voice.stt_manager import STTManager
from interview_voice.voice.tts import TextToSpeech, TTSProvider, TTSProviderKind, TTSResult
from interview_voice.voice.vad import VADConfig, VoiceActivityDetector

__all__ = [
    "AudioDeviceBusyError",
    "AudioIO",
    "AudioIOConfig",
    "ProviderStatus",
    "RateLimit",
    "RateLimiter",
    "RecordingConfig",
    "RecordingController",
    "RecordingState",
    "Utterance",
    "STTManager",
    "STTProvider",
    "STTProviderKind",
    "STTResult",
    "TextToSpeech",
    "TTSProvider",
    "TTSProviderKind",
    "TTSResult",
    "VADConfig",
    "VoiceActivityDetector",
]
