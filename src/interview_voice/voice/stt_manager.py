"""STT provider failover.

Providers are tried in a fixed priority order. Unavailable providers (no
credentials, or rate limit exhausted) are skipped without touching their
limiter; the first successful transcription wins; per-provider errors are
collected so a total failure says exactly what was tried.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence

import httpx

from interview_voice.config import Settings, get_settings
from interview_voice.voice.rate_limiter import ProviderStatus, RateLimiter
from interview_voice.voice.stt import (
    DeepgramSTT,
    LocalWhisperSTT,
    OpenAIWhisperSTT,
    STTProvider,
    STTProviderKind,
    STTResult,
)

logger = logging.getLogger(__name__)


class STTManager:
    def __init__(self, providers: Sequence[STTProvider], *, min_audio_bytes: int = 1000) -> None:
        self._providers = list(providers)
        self._min_audio_bytes = min_audio_bytes

    @property
    def providers(self) -> list[STTProvider]:
        return list(self._providers)

    def _ordered(self, preferred: str | None) -> list[STTProvider]:
        if not preferred:
            return list(self._providers)
        key = preferred.strip().lower()
        first = [p for p in self._providers if p.name == key or p.kind.value == key]
        return first + [p for p in self._providers if p not in first]

    async def transcribe(
        self,
        audio: bytes,
        format: str = "webm",
        language: str = "en",
        *,
        preferred: str | None = None,
    ) -> STTResult:
        if not audio:
            return STTResult(success=False, error="No audio provided")
        if len(audio) < self._min_audio_bytes:
            return STTResult(
                success=False,
                error=f"Audio too short ({len(audio)} bytes < {self._min_audio_bytes})",
            )

        errors: list[str] = []
        for provider in self._ordered(preferred):
            if not provider.is_available():
                errors.append(f"{provider.name}: Not available")
                logger.info(f"[VOICE][STT] skipping {provider.name}: not available")
                continue

            logger.debug(f"[VOICE][STT] trying {provider.name}")
            result = await provider.transcribe(audio, format, language)
            if result.success:
                logger.info(f"[VOICE][STT] success with {provider.name}")
                return result

            errors.append(f"{provider.name}: {result.error}")
            logger.warning(f"[VOICE][STT] {provider.name} failed: {result.error}")

        if not errors:
            errors.append("no providers configured")
        return STTResult(success=False, error=f"All STT providers failed: {', '.join(errors)}")

    def best_provider(self) -> STTProvider | None:
        return next((p for p in self._providers if p.is_available()), None)

    def provider_status(self) -> list[ProviderStatus]:
        statuses: list[ProviderStatus] = []
        for p in self._providers:
            limit = p.get_rate_limit()
            statuses.append(
                ProviderStatus(
                    stage="stt",
                    name=p.name,
                    configured=p.is_configured(),
                    available=p.is_available(),
                    remaining=limit.remaining,
                    reset_time_ms=limit.reset_time_ms,
                )
            )
        return statuses

    async def close(self) -> None:
        for p in self._providers:
            close = getattr(p, "close", None)
            if close is not None:
                await close()

    @classmethod
    def from_settings(
        cls,
        settings: Settings | None = None,
        *,
        client: httpx.AsyncClient | None = None,
    ) -> "STTManager":
        s = settings or get_settings()
        window = s.rate_limit_window_ms

        builders = {
            STTProviderKind.OPENAI: lambda: OpenAIWhisperSTT(
                s.openai_api_key,
                base_url=s.openai_base_url,
                rate_limiter=RateLimiter(s.openai_stt_max_requests, window),
                client=client,
                timeout=s.stt_timeout_s,
            ),
            STTProviderKind.DEEPGRAM: lambda: DeepgramSTT(
                s.deepgram_api_key,
                url=s.deepgram_url,
                rate_limiter=RateLimiter(s.deepgram_max_requests, window),
                client=client,
                timeout=s.stt_timeout_s,
            ),
            STTProviderKind.LOCAL: lambda: LocalWhisperSTT(
                s.local_whisper_model,
                device=s.local_whisper_device,
                rate_limiter=RateLimiter(s.local_stt_max_requests, window),
            ),
        }

        providers: list[STTProvider] = []
        for name in s.stt_provider_order:
            try:
                kind = STTProviderKind(name.strip().lower())
            except ValueError:
                logger.warning(f"[VOICE][STT] ignoring unknown provider in order: {name!r}")
                continue
            providers.append(builders[kind]())

        return cls(providers, min_audio_bytes=s.stt_min_audio_bytes)
