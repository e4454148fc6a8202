"""VAD-gated recording state machine.

    IDLE -> LISTENING -> RECORDING -> FINALIZING -> LISTENING | IDLE

The controller owns the capture channel while it runs and hands each
finished utterance (as WAV bytes) to an async handler, normally the
pipeline coordinator. Silence and max-duration limits are cancellable
asyncio tasks; a fired timer requests finalization, which the capture loop
performs after the window it is currently processing.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any, Protocol

import numpy as np

from interview_voice.voice.audio_io import encode_wav
from interview_voice.voice.vad import VoiceActivityDetector

logger = logging.getLogger(__name__)


class RecordingState(str, Enum):
    IDLE = "idle"
    LISTENING = "listening"
    RECORDING = "recording"
    FINALIZING = "finalizing"


@dataclass(frozen=True)
class RecordingConfig:
    poll_interval_s: float = 0.1
    silence_timeout_s: float = 2.0
    max_recording_time_s: float = 30.0
    # Captures with less voiced audio than this are treated as "no speech detected"
    # and never sent to STT. Trailing silence before the timer fires does not count.
    min_recording_s: float = 0.3


@dataclass(frozen=True)
class Utterance:
    audio: bytes
    duration_s: float
    sample_rate: int
    format: str = "wav"


class CaptureChannel(Protocol):
    @property
    def sample_rate(self) -> int: ...

    async def open(self) -> None: ...

    async def read_window(self, duration_s: float) -> Any: ...

    async def drain(self) -> None: ...

    async def close(self) -> None: ...


UtteranceHandler = Callable[[Utterance], Awaitable[Any]]
StateListener = Callable[[RecordingState, RecordingState], None]


class RecordingController:
    def __init__(
        self,
        *,
        channel: CaptureChannel,
        vad: VoiceActivityDetector,
        on_utterance: UtteranceHandler,
        config: RecordingConfig | None = None,
        on_state_change: StateListener | None = None,
    ) -> None:
        self._channel = channel
        self._vad = vad
        self._on_utterance = on_utterance
        self._config = config or RecordingConfig()
        self._on_state_change = on_state_change

        self._state = RecordingState.IDLE
        self._active = False
        self._stop_requested = False
        self._run_task: asyncio.Task | None = None
        self._buffer: list[np.ndarray] = []
        self._speech_samples = 0
        self._silence_timer: asyncio.Task | None = None
        self._max_timer: asyncio.Task | None = None
        self._finalize_reason: str | None = None

        self.utterances_forwarded = 0
        self.utterances_dropped = 0

    @property
    def config(self) -> RecordingConfig:
        return self._config

    @property
    def state(self) -> RecordingState:
        return self._state

    @property
    def is_active(self) -> bool:
        return self._active

    def _set_state(self, new: RecordingState) -> None:
        old = self._state
        if old is new:
            return
        self._state = new
        logger.debug(f"[VOICE][REC] {old.value} -> {new.value}")
        if self._on_state_change is not None:
            self._on_state_change(old, new)

    @contextlib.asynccontextmanager
    async def _microphone(self) -> AsyncIterator[None]:
        await self._channel.open()
        try:
            yield
        finally:
            self._cancel_timers()
            self._buffer = []
            self._speech_samples = 0
            self._finalize_reason = None
            try:
                await self._channel.close()
            finally:
                self._set_state(RecordingState.IDLE)

    async def run(self) -> None:
        """Capture until `stop()` is called. The channel is released on every exit path."""
        if self._active:
            raise RuntimeError("RecordingController is already running")

        self._active = True
        self._stop_requested = False
        self._run_task = asyncio.current_task()
        try:
            async with self._microphone():
                self._set_state(RecordingState.LISTENING)
                while self._active:
                    window = await self._channel.read_window(self._config.poll_interval_s)
                    if not self._active:
                        break
                    await self.process_window(window)
        except asyncio.CancelledError:
            if not self._stop_requested:
                raise
        finally:
            self._active = False
            self._run_task = None

    async def process_window(self, window: Any) -> None:
        samples = np.asarray(window)
        speech = self._vad.is_speech(samples, self._channel.sample_rate)

        if self._state is RecordingState.LISTENING:
            if speech:
                self._buffer = [samples]
                self._speech_samples = samples.shape[0]
                self._finalize_reason = None
                self._set_state(RecordingState.RECORDING)
                self._max_timer = self._arm(self._config.max_recording_time_s, "max_duration")
                logger.info("[VOICE][REC] speech detected, recording")
            return

        if self._state is not RecordingState.RECORDING:
            return

        self._buffer.append(samples)
        if speech:
            self._speech_samples += samples.shape[0]
            if self._silence_timer is not None:
                self._silence_timer.cancel()
                self._silence_timer = None
        elif self._silence_timer is None:
            self._silence_timer = self._arm(self._config.silence_timeout_s, "silence")

        if self._finalize_reason is not None:
            await self.finalize()

    def _arm(self, delay_s: float, reason: str) -> asyncio.Task:
        return asyncio.create_task(self._fire_after(delay_s, reason))

    async def _fire_after(self, delay_s: float, reason: str) -> None:
        await asyncio.sleep(delay_s)
        if self._state is RecordingState.RECORDING and self._finalize_reason is None:
            self._finalize_reason = reason
            logger.debug(f"[VOICE][REC] timer fired reason={reason}")

    def _cancel_timers(self) -> None:
        for timer in (self._silence_timer, self._max_timer):
            if timer is not None and not timer.done():
                timer.cancel()
        self._silence_timer = None
        self._max_timer = None

    async def finalize(self) -> Utterance | None:
        """Close the current capture and forward it, or drop it when too short."""
        if self._state is not RecordingState.RECORDING:
            return None

        reason = self._finalize_reason or "manual"
        self._set_state(RecordingState.FINALIZING)
        self._cancel_timers()
        frames, self._buffer = self._buffer, []
        speech_samples, self._speech_samples = self._speech_samples, 0
        self._finalize_reason = None

        try:
            audio = np.concatenate(frames, axis=0) if frames else np.zeros(0, dtype=np.int16)
            sample_rate = self._channel.sample_rate
            duration_s = audio.shape[0] / float(sample_rate) if audio.size else 0.0
            speech_s = speech_samples / float(sample_rate)

            if audio.size == 0 or speech_s < self._config.min_recording_s:
                self.utterances_dropped += 1
                logger.info(
                    f"[VOICE][REC] no speech detected (speech={speech_s:.2f}s duration={duration_s:.2f}s "
                    f"reason={reason}); not forwarded"
                )
                return None

            channels = audio.shape[1] if audio.ndim > 1 else 1
            utterance = Utterance(
                audio=encode_wav(audio, sample_rate, channels),
                duration_s=duration_s,
                sample_rate=sample_rate,
            )
            self.utterances_forwarded += 1
            logger.info(f"[VOICE][REC] utterance ready duration={duration_s:.2f}s reason={reason}")
            await self._on_utterance(utterance)
            if self._active:
                # Audio buffered while the handler ran (including the spoken reply) is stale.
                await self._channel.drain()
            return utterance
        finally:
            self._set_state(RecordingState.LISTENING if self._active else RecordingState.IDLE)

    async def stop(self) -> None:
        """Stop capturing. A capture in progress is discarded without reaching STT."""
        self._stop_requested = True
        self._active = False
        self._cancel_timers()
        self._buffer = []
        self._speech_samples = 0
        self._finalize_reason = None

        task = self._run_task
        if task is not None and task is not asyncio.current_task() and not task.done():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        elif task is None:
            self._set_state(RecordingState.IDLE)
