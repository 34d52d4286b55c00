"""Live input level and scrolling waveform analysis.

:class:`LevelAnalyzer` is the analysis tap: it keeps the most recent
``fft_size`` samples of the live signal and, when asked, reduces their
spectrum to a single level in ``[0, 1]``.  The spectrum is mapped onto a
byte scale between ``MIN_DECIBELS`` and ``MAX_DECIBELS`` with time smoothing,
then averaged across bins and normalised by ``LEVEL_CEILING``.

The analyzer does not schedule itself; the owner calls it once per display
refresh while recording and simply stops calling when capture pauses.
"""

import threading
from collections import deque
from typing import List

import numpy as np

MIN_DECIBELS = -100.0
MAX_DECIBELS = -30.0
SMOOTHING = 0.8
LEVEL_CEILING = 128.0


class LevelAnalyzer:
    """Frequency-domain level meter over the latest captured samples."""

    def __init__(self, fft_size: int = 256, smoothing: float = SMOOTHING) -> None:
        if fft_size < 32 or fft_size & (fft_size - 1):
            raise ValueError(f"fft_size must be a power of two >= 32, got {fft_size}")
        self.fft_size = fft_size
        self.smoothing = smoothing
        self._window = np.blackman(fft_size).astype(np.float32)
        self._samples = np.zeros(fft_size, dtype=np.float32)
        self._smoothed = np.zeros(fft_size // 2, dtype=np.float64)
        self._lock = threading.Lock()

    @property
    def bin_count(self) -> int:
        return self.fft_size // 2

    def push(self, samples: np.ndarray) -> None:
        """Feed captured audio; multi-channel input is down-mixed to mono."""
        block = np.asarray(samples, dtype=np.float32)
        if block.ndim == 2:
            block = block.mean(axis=1)
        if block.size == 0:
            return
        with self._lock:
            if block.size >= self.fft_size:
                self._samples = block[-self.fft_size:].copy()
            else:
                self._samples = np.concatenate((self._samples[block.size:], block))

    def byte_frequency_data(self) -> np.ndarray:
        """Smoothed magnitude spectrum on a 0-255 scale, one value per bin."""
        with self._lock:
            frame = self._samples * self._window
        spectrum = np.abs(np.fft.rfft(frame))[: self.bin_count] / self.fft_size
        with self._lock:
            self._smoothed = self.smoothing * self._smoothed + (1.0 - self.smoothing) * spectrum
            smoothed = self._smoothed
        with np.errstate(divide='ignore'):
            decibels = 20.0 * np.log10(smoothed)
        scaled = 255.0 * (decibels - MIN_DECIBELS) / (MAX_DECIBELS - MIN_DECIBELS)
        return np.clip(np.nan_to_num(scaled, neginf=0.0), 0.0, 255.0).astype(np.uint8)

    def level(self) -> float:
        """Average bin magnitude normalised by the reference ceiling, in [0, 1]."""
        data = self.byte_frequency_data()
        average = float(data.mean()) if data.size else 0.0
        return min(max(average / LEVEL_CEILING, 0.0), 1.0)

    def reset(self) -> None:
        with self._lock:
            self._samples.fill(0.0)
            self._smoothed.fill(0.0)


class LiveWaveform:
    """Bounded history of levels rendered as a scrolling waveform."""

    def __init__(self, capacity: int = 120) -> None:
        self._levels = deque(maxlen=capacity)

    @property
    def capacity(self) -> int:
        return self._levels.maxlen

    def push(self, level: float) -> None:
        self._levels.append(min(max(float(level), 0.0), 1.0))

    def values(self) -> List[float]:
        return list(self._levels)

    def clear(self) -> None:
        self._levels.clear()

    def __len__(self) -> int:
        return len(self._levels)
