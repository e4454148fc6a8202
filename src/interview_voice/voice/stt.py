"""Speech-to-text providers.

Each provider owns its rate limiter and converts every failure into a failed
`STTResult`; the `STTManager` decides which provider to try.

Backends:
- OpenAI Whisper (hosted, multipart upload)
- Deepgram (hosted, raw audio body)
- local faster-whisper, if installed
"""

from __future__ import annotations

import asyncio
import importlib.util
import io
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any

import httpx

from interview_voice.voice.http_client import HTTPClientMixin, ProviderError, raise_for_status
from interview_voice.voice.rate_limiter import RateLimit, RateLimiter

logger = logging.getLogger(__name__)


class STTProviderKind(str, Enum):
    OPENAI = "openai"
    DEEPGRAM = "deepgram"
    LOCAL = "local"


@dataclass(frozen=True)
class STTResult:
    success: bool
    transcript: str | None = None
    confidence: float | None = None
    duration_s: float | None = None
    language: str | None = None
    error: str | None = None
    provider: str | None = None

    @property
    def has_transcript(self) -> bool:
        return self.success and bool((self.transcript or "").strip())


class STTProvider(ABC):
    """Base class for transcription backends.

    Subclasses implement `_transcribe`; `transcribe` adds rate accounting and
    converts exceptions into failed results. There are no retries here.
    """

    kind: STTProviderKind

    def __init__(self, rate_limiter: RateLimiter | None = None) -> None:
        self._rate_limiter = rate_limiter or RateLimiter()

    @property
    @abstractmethod
    def name(self) -> str:
        """Provider name for logging and result attribution."""
        ...

    @property
    def rate_limiter(self) -> RateLimiter:
        return self._rate_limiter

    @abstractmethod
    def is_configured(self) -> bool:
        """True when credentials/endpoint (or the local model) are set up."""
        ...

    def is_available(self) -> bool:
        return self.is_configured() and self._rate_limiter.can_make_request()

    def get_rate_limit(self) -> RateLimit:
        return self._rate_limiter.snapshot()

    @abstractmethod
    async def _transcribe(self, audio: bytes, format: str, language: str) -> STTResult: ...

    async def transcribe(self, audio: bytes, format: str = "webm", language: str = "en") -> STTResult:
        if not self.is_configured():
            return STTResult(success=False, error="Not configured", provider=self.name)

        if not self._rate_limiter.try_acquire():
            return STTResult(success=False, error="Rate limit exceeded", provider=self.name)
        try:
            result = await self._transcribe(audio, format, language)
        except (ProviderError, httpx.HTTPError) as e:
            logger.warning(f"[VOICE][STT] {self.name} failed: {e}")
            return STTResult(success=False, error=str(e) or type(e).__name__, provider=self.name)
        except Exception as e:
            logger.warning(f"[VOICE][STT] {self.name} unexpected error: {e!r}")
            return STTResult(success=False, error=f"{type(e).__name__}: {e}", provider=self.name)
        return result


class OpenAIWhisperSTT(HTTPClientMixin, STTProvider):
    kind = STTProviderKind.OPENAI

    def __init__(
        self,
        api_key: str,
        *,
        base_url: str = "https://api.openai.com/v1",
        model: str = "whisper-1",
        rate_limiter: RateLimiter | None = None,
        client: httpx.AsyncClient | None = None,
        timeout: float = 30.0,
    ) -> None:
        super().__init__(rate_limiter or RateLimiter(50, 60_000))
        self._api_key = api_key
        self._base_url = base_url.rstrip("/")
        self._model = model
        self._init_client(client, timeout)

    @property
    def name(self) -> str:
        return "openai-whisper"

    def is_configured(self) -> bool:
        return bool(self._api_key)

    async def _transcribe(self, audio: bytes, format: str, language: str) -> STTResult:
        client = await self._get_client()
        response = await client.post(
            f"{self._base_url}/audio/transcriptions",
            headers={"Authorization": f"Bearer {self._api_key}"},
            files={"file": (f"audio.{format}", audio, f"audio/{format}")},
            data={
                "model": self._model,
                "language": language,
                "response_format": "json",
                "temperature": "0.2",
            },
        )
        raise_for_status(response, "OpenAI Whisper")

        try:
            body = response.json()
        except ValueError as e:
            raise ProviderError("OpenAI Whisper returned a malformed response") from e

        text = body.get("text")
        if not isinstance(text, str):
            raise ProviderError("OpenAI Whisper response has no text")

        return STTResult(
            success=True,
            transcript=text,
            confidence=body.get("confidence", 1.0),
            duration_s=body.get("duration"),
            language=body.get("language") or language,
            provider=self.name,
        )


class DeepgramSTT(HTTPClientMixin, STTProvider):
    kind = STTProviderKind.DEEPGRAM

    def __init__(
        self,
        api_key: str,
        *,
        url: str = "https://api.deepgram.com/v1/listen",
        model: str = "nova-2",
        rate_limiter: RateLimiter | None = None,
        client: httpx.AsyncClient | None = None,
        timeout: float = 30.0,
    ) -> None:
        super().__init__(rate_limiter or RateLimiter(1000, 60_000))
        self._api_key = api_key
        self._url = url
        self._model = model
        self._init_client(client, timeout)

    @property
    def name(self) -> str:
        return "deepgram"

    def is_configured(self) -> bool:
        return bool(self._api_key)

    async def _transcribe(self, audio: bytes, format: str, language: str) -> STTResult:
        client = await self._get_client()
        response = await client.post(
            self._url,
            params={"model": self._model, "language": language, "punctuate": "true"},
            headers={
                "Authorization": f"Token {self._api_key}",
                "Content-Type": f"audio/{format}",
            },
            content=audio,
        )
        raise_for_status(response, "Deepgram")

        try:
            body = response.json()
            channel = body["results"]["channels"][0]
            alternative = channel["alternatives"][0]
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise ProviderError("Deepgram returned a malformed response") from e

        duration = (body.get("metadata") or {}).get("duration")
        return STTResult(
            success=True,
            transcript=alternative.get("transcript") or "",
            confidence=alternative.get("confidence") or 0.0,
            duration_s=duration,
            language=channel.get("detected_language") or language,
            provider=self.name,
        )


class LocalWhisperSTT(STTProvider):
    """faster-whisper wrapper; runs the model in a worker thread."""

    kind = STTProviderKind.LOCAL

    def __init__(
        self,
        model_size: str,
        *,
        device: str = "cpu",
        compute_type: str | None = None,
        vad_filter: bool = True,
        rate_limiter: RateLimiter | None = None,
    ) -> None:
        super().__init__(rate_limiter or RateLimiter(1000, 60_000))
        self._model_size = model_size
        # Default to CPU to avoid hard crashes when CUDA/cuDNN aren't present.
        self._device = "cpu" if device == "auto" else device
        self._compute_type = compute_type
        self._vad_filter = vad_filter
        self._model: Any = None

    @property
    def name(self) -> str:
        return "local-whisper"

    def is_configured(self) -> bool:
        return bool(self._model_size) and importlib.util.find_spec("faster_whisper") is not None

    def _load_model(self) -> Any:
        if self._model is not None:
            return self._model

        from faster_whisper import WhisperModel  # type: ignore

        kwargs = {}
        if self._compute_type:
            kwargs["compute_type"] = self._compute_type
        self._model = WhisperModel(self._model_size, device=self._device, **kwargs)
        return self._model

    async def _transcribe(self, audio: bytes, format: str, language: str) -> STTResult:
        def _run() -> STTResult:
            model = self._load_model()
            segments, info = model.transcribe(
                io.BytesIO(audio),
                language=language or None,
                vad_filter=self._vad_filter,
            )
            text = " ".join(s.text.strip() for s in segments if s.text and s.text.strip()).strip()
            return STTResult(
                success=True,
                transcript=text,
                confidence=getattr(info, "language_probability", None),
                duration_s=getattr(info, "duration", None),
                language=getattr(info, "language", None) or language,
                provider=self.name,
            )

        return await asyncio.to_thread(_run)
