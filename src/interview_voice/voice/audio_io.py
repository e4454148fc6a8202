"""Audio capture + playback (pipeline-agnostic).

This module is intentionally "dumb hardware I/O": it knows nothing about the
interview, providers, or the recording state machine.

It provides:
- windowed microphone capture with exclusive device ownership
- WAV encode/decode helpers (the recording controller ships WAV bytes to STT)
- speaker playback of WAV payloads
"""

from __future__ import annotations

import asyncio
import io
import logging
import threading
import wave
from dataclasses import dataclass
from pathlib import Path

import numpy as np

logger = logging.getLogger(__name__)

# Input devices currently held by a capture session in this process, keyed by AudioIOConfig.device.
_owned_devices: set[int | str | None] = set()
_owned_devices_lock = threading.Lock()


class AudioDeviceBusyError(RuntimeError):
    """Raised when a second capture session tries to open an owned input device."""


@dataclass(frozen=True)
class AudioIOConfig:
    sample_rate: int = 16000
    channels: int = 1
    dtype: str = "int16"  # sounddevice dtype and WAV sample width
    device: int | str | None = None


def encode_wav(samples: np.ndarray, sample_rate: int, channels: int = 1) -> bytes:
    """Encode samples as 16-bit PCM WAV bytes.

    Float input is treated as normalized [-1, 1] audio.
    """
    audio = np.asarray(samples)
    if audio.dtype.kind == "f":
        audio = np.clip(audio, -1.0, 1.0) * 32767.0
    audio_i16 = audio.astype(np.int16, copy=False)

    buf = io.BytesIO()
    with wave.open(buf, "wb") as wf:
        wf.setnchannels(channels)
        wf.setsampwidth(2)  # int16
        wf.setframerate(sample_rate)
        wf.writeframes(audio_i16.tobytes())
    return buf.getvalue()


def decode_wav(data: bytes) -> tuple[np.ndarray, int]:
    """Decode 16-bit PCM WAV bytes into an int16 array [samples, channels]."""
    with wave.open(io.BytesIO(data), "rb") as wf:
        sr = wf.getframerate()
        n_channels = wf.getnchannels()
        sampwidth = wf.getsampwidth()
        if sampwidth != 2:
            raise ValueError(f"Only 16-bit WAV supported, got sampwidth={sampwidth}")
        frames = wf.readframes(wf.getnframes())

    audio = np.frombuffer(frames, dtype=np.int16)
    return audio.reshape(-1, n_channels), sr


def write_audio(path: str | Path, data: bytes) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(data)
    return path


class AudioIO:
    """Microphone + speaker adapter over `sounddevice`.

    Implements the recording controller's capture channel: ``open``,
    ``read_window``, ``drain`` and ``close``. Only one capture session in the
    process may own a given input device at a time.
    """

    def __init__(self, config: AudioIOConfig | None = None) -> None:
        self._config = config or AudioIOConfig()
        self._stream = None

    @property
    def config(self) -> AudioIOConfig:
        return self._config

    @property
    def sample_rate(self) -> int:
        return self._config.sample_rate

    @property
    def is_open(self) -> bool:
        return self._stream is not None

    def _require_sounddevice(self):
        try:
            import sounddevice as sd  # type: ignore

            return sd
        except Exception as e:  # pragma: no cover
            raise RuntimeError(
                "sounddevice is required for microphone capture. Install with: pip install -e '.[voice]'. "
                "If you see 'PortAudio library not found', install PortAudio (Debian/Ubuntu: sudo apt-get install portaudio19-dev)."
            ) from e

    def _claim_device(self) -> None:
        device = self._config.device
        with _owned_devices_lock:
            if self._stream is not None or device in _owned_devices:
                raise AudioDeviceBusyError(
                    f"Input device {device if device is not None else 'default'} is already owned by another capture session"
                )
            _owned_devices.add(device)

    def _release_device(self) -> None:
        with _owned_devices_lock:
            _owned_devices.discard(self._config.device)

    async def open(self) -> None:
        self._claim_device()
        stream = None
        try:
            sd = self._require_sounddevice()
            stream = sd.InputStream(
                samplerate=self._config.sample_rate,
                channels=self._config.channels,
                dtype=self._config.dtype,
                device=self._config.device,
            )
            await asyncio.to_thread(stream.start)
        except BaseException:
            if stream is not None:
                await asyncio.to_thread(stream.close)
            self._release_device()
            raise
        self._stream = stream
        logger.info(f"[VOICE][AUDIO] capture opened sr={self._config.sample_rate} ch={self._config.channels}")

    async def read_window(self, duration_s: float) -> np.ndarray:
        """Block (in a worker thread) until one window of samples is available."""
        stream = self._stream
        if stream is None:
            raise RuntimeError("Capture is not open")

        frames = max(1, int(round(duration_s * self._config.sample_rate)))
        data, overflowed = await asyncio.to_thread(stream.read, frames)
        if overflowed:
            logger.debug("[VOICE][AUDIO] input overflow")
        return data.copy()

    async def drain(self) -> None:
        """Discard samples the stream buffered while nobody was reading."""
        stream = self._stream
        if stream is None:
            return
        pending = stream.read_available
        if pending > 0:
            await asyncio.to_thread(stream.read, pending)
            logger.debug(f"[VOICE][AUDIO] drained {pending} stale frames")

    async def close(self) -> None:
        stream = self._stream
        if stream is None:
            return
        self._stream = None
        try:
            await asyncio.to_thread(stream.stop)
        finally:
            try:
                await asyncio.to_thread(stream.close)
            finally:
                self._release_device()
        logger.info("[VOICE][AUDIO] capture released")

    async def play(self, audio: bytes, audio_format: str = "wav", *, timeout_s: float = 60.0) -> bool:
        """Play a synthesized reply. Returns False when the container can't be played directly."""
        if audio_format.lower() != "wav":
            logger.info(f"[VOICE][AUDIO] playback skipped format={audio_format} (no transcoding)")
            return False

        sd = self._require_sounddevice()
        samples, sr = decode_wav(audio)
        audio_f32 = samples.astype(np.float32) / 32768.0

        sd.play(audio_f32, samplerate=sr, blocking=False)
        try:
            await asyncio.wait_for(asyncio.to_thread(sd.wait), timeout=timeout_s)
        except asyncio.TimeoutError:
            sd.stop()
        return True
