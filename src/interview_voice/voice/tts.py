"""Text-to-speech providers.

Unlike STT there is no failover: the caller names a provider and gets either
audio bytes with a declared container format, or a failed result. Nothing
here transcodes audio.
"""

from __future__ import annotations

import asyncio
import logging
import shutil
import subprocess
import tempfile
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

import httpx

from interview_voice.config import Settings, get_settings
from interview_voice.voice.http_client import HTTPClientMixin, ProviderError, raise_for_status
from interview_voice.voice.rate_limiter import ProviderStatus, RateLimit, RateLimiter

logger = logging.getLogger(__name__)

TRUNCATION_MARKER = "..."


class TTSProviderKind(str, Enum):
    OPENAI = "openai"
    ELEVENLABS = "elevenlabs"
    COQUI = "coqui"
    PIPER = "piper"


@dataclass(frozen=True)
class TTSResult:
    success: bool
    audio: bytes | None = None
    format: str | None = None
    error: str | None = None
    provider: str | None = None


def truncate_text(text: str, max_chars: int, marker: str = TRUNCATION_MARKER) -> str:
    """Trim `text` at the end so the result, marker included, fits in `max_chars`."""
    if len(text) <= max_chars:
        return text
    keep = max(0, max_chars - len(marker))
    return text[:keep].rstrip() + marker


class TTSProvider(ABC):
    kind: TTSProviderKind
    format: str

    def __init__(self, *, max_chars: int = 4000, rate_limiter: RateLimiter | None = None) -> None:
        self._max_chars = max_chars
        self._rate_limiter = rate_limiter or RateLimiter(60, 60_000)

    @property
    def name(self) -> str:
        return self.kind.value

    @property
    def max_chars(self) -> int:
        return self._max_chars

    @property
    def rate_limiter(self) -> RateLimiter:
        return self._rate_limiter

    @abstractmethod
    def is_configured(self) -> bool: ...

    def is_available(self) -> bool:
        return self.is_configured() and self._rate_limiter.can_make_request()

    def get_rate_limit(self) -> RateLimit:
        return self._rate_limiter.snapshot()

    @abstractmethod
    async def _synthesize(self, text: str, voice: str) -> bytes: ...

    async def synthesize(self, text: str, voice: str) -> TTSResult:
        if not self.is_configured():
            return TTSResult(success=False, error=f"{self.name} TTS is not configured", provider=self.name)
        if not self._rate_limiter.try_acquire():
            wait_ms = self._rate_limiter.get_wait_time_ms()
            return TTSResult(
                success=False,
                error=f"{self.name} TTS rate limit exceeded (retry in {wait_ms / 1000:.0f}s)",
                provider=self.name,
            )

        payload = truncate_text(text, self._max_chars)
        if len(payload) < len(text):
            logger.info(f"[VOICE][TTS] truncated {len(text)} -> {len(payload)} chars for {self.name}")

        try:
            audio = await self._synthesize(payload, voice)
        except (ProviderError, httpx.HTTPError) as e:
            logger.warning(f"[VOICE][TTS] {self.name} failed: {e}")
            return TTSResult(success=False, error=str(e) or type(e).__name__, provider=self.name)
        except Exception as e:
            logger.warning(f"[VOICE][TTS] {self.name} unexpected error: {e!r}")
            return TTSResult(success=False, error=f"{type(e).__name__}: {e}", provider=self.name)

        if not audio:
            return TTSResult(success=False, error=f"{self.name} returned no audio", provider=self.name)
        return TTSResult(success=True, audio=audio, format=self.format, provider=self.name)


class OpenAITTS(HTTPClientMixin, TTSProvider):
    kind = TTSProviderKind.OPENAI
    format = "mp3"

    def __init__(
        self,
        api_key: str,
        *,
        base_url: str = "https://api.openai.com/v1",
        model: str = "tts-1",
        speed: float = 1.0,
        max_chars: int = 4000,
        rate_limiter: RateLimiter | None = None,
        client: httpx.AsyncClient | None = None,
        timeout: float = 60.0,
    ) -> None:
        super().__init__(max_chars=max_chars, rate_limiter=rate_limiter)
        self._api_key = api_key
        self._base_url = base_url.rstrip("/")
        self._model = model
        self._speed = speed
        self._init_client(client, timeout)

    def is_configured(self) -> bool:
        return bool(self._api_key)

    async def _synthesize(self, text: str, voice: str) -> bytes:
        client = await self._get_client()
        response = await client.post(
            f"{self._base_url}/audio/speech",
            headers={"Authorization": f"Bearer {self._api_key}"},
            json={
                "model": self._model,
                "input": text,
                "voice": voice,
                "response_format": self.format,
                "speed": self._speed,
            },
        )
        raise_for_status(response, "OpenAI TTS")
        return response.content


class ElevenLabsTTS(HTTPClientMixin, TTSProvider):
    kind = TTSProviderKind.ELEVENLABS
    format = "mp3"

    def __init__(
        self,
        api_key: str,
        *,
        base_url: str = "https://api.elevenlabs.io",
        model_id: str = "eleven_monolingual_v1",
        max_chars: int = 4000,
        rate_limiter: RateLimiter | None = None,
        client: httpx.AsyncClient | None = None,
        timeout: float = 60.0,
    ) -> None:
        super().__init__(max_chars=max_chars, rate_limiter=rate_limiter)
        self._api_key = api_key
        self._base_url = base_url.rstrip("/")
        self._model_id = model_id
        self._init_client(client, timeout)

    def is_configured(self) -> bool:
        return bool(self._api_key)

    async def _synthesize(self, text: str, voice: str) -> bytes:
        client = await self._get_client()
        response = await client.post(
            f"{self._base_url}/v1/text-to-speech/{voice}",
            headers={"Accept": "audio/mpeg", "xi-api-key": self._api_key},
            json={
                "text": text,
                "model_id": self._model_id,
                "voice_settings": {"stability": 0.6, "similarity_boost": 0.85},
            },
        )
        raise_for_status(response, "ElevenLabs")
        return response.content


class CoquiTTS(HTTPClientMixin, TTSProvider):
    kind = TTSProviderKind.COQUI
    format = "wav"

    def __init__(
        self,
        base_url: str,
        *,
        language: str = "en",
        max_chars: int = 4000,
        rate_limiter: RateLimiter | None = None,
        client: httpx.AsyncClient | None = None,
        timeout: float = 60.0,
    ) -> None:
        super().__init__(max_chars=max_chars, rate_limiter=rate_limiter)
        self._base_url = base_url.rstrip("/")
        self._language = language
        self._init_client(client, timeout)

    def is_configured(self) -> bool:
        return bool(self._base_url)

    async def _synthesize(self, text: str, voice: str) -> bytes:
        client = await self._get_client()
        response = await client.post(
            f"{self._base_url}/api/tts",
            json={"text": text, "speaker_id": voice, "style_wav": "", "language_id": self._language},
        )
        raise_for_status(response, "Coqui TTS")
        return response.content


class PiperTTS(TTSProvider):
    """Local Piper CLI; writes one WAV per request into a scratch directory."""

    kind = TTSProviderKind.PIPER
    format = "wav"

    def __init__(
        self,
        *,
        piper_bin: str = "piper",
        model_path: str | None = None,
        max_chars: int = 4000,
        timeout_s: float = 60.0,
        rate_limiter: RateLimiter | None = None,
    ) -> None:
        super().__init__(max_chars=max_chars, rate_limiter=rate_limiter)
        self._piper_bin = piper_bin
        self._model_path = model_path
        self._timeout_s = timeout_s

    def is_configured(self) -> bool:
        return bool(self._model_path) and shutil.which(self._piper_bin) is not None

    async def _synthesize(self, text: str, voice: str) -> bytes:
        piper_path = shutil.which(self._piper_bin)
        if not piper_path:
            raise ProviderError("piper CLI not found on PATH")

        def _call() -> bytes:
            with tempfile.TemporaryDirectory(prefix="piper_") as tmp:
                wav_path = Path(tmp) / "reply.wav"
                cmd = [piper_path, "--model", str(self._model_path), "--output_file", str(wav_path)]
                # Numeric voices select a speaker in multi-speaker models.
                if voice and voice.isdigit():
                    cmd += ["--speaker", voice]
                try:
                    subprocess.run(
                        cmd,
                        input=text,
                        text=True,
                        check=True,
                        stdout=subprocess.DEVNULL,
                        stderr=subprocess.PIPE,
                        timeout=self._timeout_s,
                    )
                except subprocess.TimeoutExpired as e:
                    raise ProviderError(f"piper timed out after {self._timeout_s:.1f}s") from e
                except subprocess.CalledProcessError as e:
                    stderr = (e.stderr or "").strip()
                    raise ProviderError(f"piper failed (exit={e.returncode}). stderr={stderr or '<empty>'}") from e
                return wav_path.read_bytes()

        return await asyncio.to_thread(_call)


class TextToSpeech:
    """Dispatches synthesis to the explicitly requested provider."""

    def __init__(
        self,
        providers: dict[TTSProviderKind, TTSProvider],
        *,
        default_provider: TTSProviderKind | str = TTSProviderKind.OPENAI,
        default_voice: str = "nova",
    ) -> None:
        self._providers = dict(providers)
        self._default_provider = TTSProviderKind(default_provider)
        self._default_voice = default_voice

    @property
    def providers(self) -> dict[TTSProviderKind, TTSProvider]:
        return dict(self._providers)

    def resolve(self, provider: TTSProviderKind | str | None) -> TTSProvider | None:
        if provider is None or provider == "":
            kind = self._default_provider
        else:
            try:
                kind = provider if isinstance(provider, TTSProviderKind) else TTSProviderKind(provider.strip().lower())
            except ValueError:
                return None
        return self._providers.get(kind)

    async def synthesize(
        self,
        text: str,
        voice: str | None = None,
        provider: TTSProviderKind | str | None = None,
    ) -> TTSResult:
        if not (text or "").strip():
            return TTSResult(success=False, error="Text is required")

        backend = self.resolve(provider)
        if backend is None:
            return TTSResult(success=False, error=f"Unsupported TTS provider: {provider}")

        result = await backend.synthesize(text.strip(), voice or self._default_voice)
        if result.success:
            logger.info(f"[VOICE][TTS] {backend.name} ok bytes={len(result.audio or b'')} format={result.format}")
        return result

    def provider_status(self) -> list[ProviderStatus]:
        statuses: list[ProviderStatus] = []
        for p in self._providers.values():
            limit = p.get_rate_limit()
            statuses.append(
                ProviderStatus(
                    stage="tts",
                    name=p.name,
                    configured=p.is_configured(),
                    available=p.is_available(),
                    remaining=limit.remaining,
                    reset_time_ms=limit.reset_time_ms,
                )
            )
        return statuses

    async def close(self) -> None:
        for p in self._providers.values():
            close = getattr(p, "close", None)
            if close is not None:
                await close()

    @classmethod
    def from_settings(
        cls,
        settings: Settings | None = None,
        *,
        client: httpx.AsyncClient | None = None,
    ) -> "TextToSpeech":
        s = settings or get_settings()
        window = s.rate_limit_window_ms

        def limiter() -> RateLimiter:
            return RateLimiter(s.tts_max_requests, window)

        providers: dict[TTSProviderKind, TTSProvider] = {
            TTSProviderKind.OPENAI: OpenAITTS(
                s.openai_api_key,
                base_url=s.openai_base_url,
                max_chars=s.openai_tts_max_chars,
                rate_limiter=limiter(),
                client=client,
                timeout=s.tts_timeout_s,
            ),
            TTSProviderKind.ELEVENLABS: ElevenLabsTTS(
                s.elevenlabs_api_key,
                base_url=s.elevenlabs_base_url,
                max_chars=s.elevenlabs_max_chars,
                rate_limiter=limiter(),
                client=client,
                timeout=s.tts_timeout_s,
            ),
            TTSProviderKind.COQUI: CoquiTTS(
                s.coqui_tts_url,
                max_chars=s.coqui_max_chars,
                rate_limiter=limiter(),
                client=client,
                timeout=s.tts_timeout_s,
            ),
            TTSProviderKind.PIPER: PiperTTS(
                piper_bin=s.piper_bin,
                model_path=s.piper_model or None,
                max_chars=s.piper_max_chars,
                timeout_s=s.tts_timeout_s,
                rate_limiter=limiter(),
            ),
        }
        return cls(providers, default_provider=s.tts_provider, default_voice=s.tts_voice)
