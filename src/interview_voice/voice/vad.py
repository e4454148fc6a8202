"""Energy + zero-crossing voice activity detection.

Pure functions over one short window of samples; cheap enough to call on
every ~100ms capture window.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

import numpy as np


@dataclass(frozen=True)
class VADConfig:
    # Normalized amplitude; microphone gain varies, so keep it configurable.
    rms_threshold: float = 0.01
    zcr_min: float = 0.01
    zcr_max: float = 0.5


@dataclass(frozen=True)
class VADFrame:
    rms: float
    zcr: float
    is_speech: bool


def normalize(window: Sequence[float] | np.ndarray) -> np.ndarray:
    """Return a mono float64 array in [-1, 1].

    Integer input is interpreted as 16-bit PCM (the capture format); float input
    is assumed to be normalized already. [samples, channels] input is mixed down.
    """
    arr = np.asarray(window)
    if arr.dtype.kind in ("i", "u"):
        out = arr.astype(np.float64) / 32768.0
    else:
        out = arr.astype(np.float64)
    if out.ndim > 1:
        out = out.mean(axis=1)
    return out.ravel()


def rms(window: Sequence[float] | np.ndarray) -> float:
    samples = normalize(window)
    if samples.size == 0:
        return 0.0
    return float(np.sqrt(np.mean(np.square(samples))))


def zero_crossing_rate(window: Sequence[float] | np.ndarray) -> float:
    """Fraction of adjacent sample pairs whose sign differs."""
    samples = normalize(window)
    if samples.size < 2:
        return 0.0
    signs = np.signbit(samples)
    return float(np.count_nonzero(signs[1:] != signs[:-1])) / float(samples.size - 1)


class VoiceActivityDetector:
    def __init__(self, config: VADConfig | None = None) -> None:
        self._config = config or VADConfig()

    @property
    def config(self) -> VADConfig:
        return self._config

    def analyze(self, window: Sequence[float] | np.ndarray, sample_rate: int = 16000) -> VADFrame:
        samples = normalize(window)
        if samples.size < 2:
            return VADFrame(rms=rms(samples), zcr=0.0, is_speech=False)

        energy = rms(samples)
        zcr = zero_crossing_rate(samples)
        cfg = self._config
        speech = energy > cfg.rms_threshold and cfg.zcr_min <= zcr <= cfg.zcr_max
        return VADFrame(rms=energy, zcr=zcr, is_speech=speech)

    def is_speech(self, window: Sequence[float] | np.ndarray, sample_rate: int = 16000) -> bool:
        # sample_rate is part of the contract; both heuristics are per-sample ratios.
        return self.analyze(window, sample_rate).is_speech
