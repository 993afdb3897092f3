from __future__ import annotations

import math
from collections import deque
from dataclasses import dataclass
from enum import Enum

import numpy as np

from .settings import settings


class BoardSensitivity(float, Enum):
    """Multiplier applied to raw RMS for different set-ups."""

    CRUISER = 0.85
    DOWNHILL = 0.70
    STREET = 1.00


@dataclass(frozen=True)
class SmoothnessReading:
    roughness_rms: float
    stability: float
    at: float
    sample_count: int


def roughness_quality(roughness_rms: float, *, rms_ceiling: float) -> float:
    """Map an RMS value onto [0, 1], where 1 is glass-smooth."""
    ceiling = max(float(rms_ceiling), 1e-9)
    return min(1.0, max(0.0, 1.0 - (max(0.0, float(roughness_rms)) / ceiling)))


class SmoothnessAggregator:
    """Rolling RMS of motion magnitudes, low-pass filtered and rate limited.

    `add_sample` is called once per sensor tick and returns a reading only
    when the throttle interval has elapsed since the previous emission.
    Not thread-safe: it belongs to the single ingestion context.
    """

    def __init__(
        self,
        *,
        window_size: int | None = None,
        smoothing_alpha: float | None = None,
        max_rate_hz: float | None = None,
        rms_ceiling: float | None = None,
        spike_sigma: float | None = None,
        sensitivity: BoardSensitivity | float = BoardSensitivity.STREET,
    ) -> None:
        window = int(window_size if window_size is not None else settings.smoothness_window_size)
        alpha = float(smoothing_alpha if smoothing_alpha is not None else settings.smoothness_alpha)
        rate = float(max_rate_hz if max_rate_hz is not None else settings.smoothness_max_rate_hz)
        if window < 1:
            raise ValueError("window_size must be >= 1")
        if not 0.0 < alpha <= 1.0:
            raise ValueError("smoothing_alpha must be in (0, 1]")
        if rate <= 0.0:
            raise ValueError("max_rate_hz must be > 0")

        self._window: deque[float] = deque(maxlen=window)
        self._alpha = alpha
        self._min_interval_s = 1.0 / rate
        self._rms_ceiling = float(rms_ceiling if rms_ceiling is not None else settings.smoothness_rms_ceiling)
        self._spike_sigma = float(spike_sigma if spike_sigma is not None else settings.smoothness_spike_sigma)
        self._sensitivity = float(sensitivity)

        self._ema: float | None = None
        self._last_emit_at: float | None = None
        self._latest: SmoothnessReading | None = None
        # Welford running statistics for spike rejection
        self._count = 0
        self._mean = 0.0
        self._m2 = 0.0

    @property
    def sensitivity(self) -> float:
        return self._sensitivity

    def set_sensitivity(self, sensitivity: BoardSensitivity | float) -> None:
        self._sensitivity = float(sensitivity)

    def _update_running_stats(self, value: float) -> None:
        self._count += 1
        delta = value - self._mean
        self._mean += delta / self._count
        self._m2 += delta * (value - self._mean)

    def _is_spike(self, value: float) -> bool:
        if self._spike_sigma <= 0.0 or self._count < 2:
            return False
        stddev = math.sqrt(self._m2 / (self._count - 1))
        if stddev == 0.0:
            return False
        return abs(value - self._mean) > (self._spike_sigma * stddev)

    def add_sample(self, magnitude: float, at: float) -> SmoothnessReading | None:
        value = float(magnitude)
        if not math.isfinite(value):
            return None
        value = abs(value)

        self._update_running_stats(value)
        if self._is_spike(value):
            return None
        self._window.append(value)

        if self._last_emit_at is not None and (at - self._last_emit_at) < self._min_interval_s:
            return None
        return self._emit(at)

    def _emit(self, at: float) -> SmoothnessReading:
        window = np.fromiter(self._window, dtype=np.float64, count=len(self._window))
        instant_rms = float(np.sqrt(np.mean(np.square(window)))) * self._sensitivity
        if self._ema is None:
            self._ema = instant_rms
        else:
            self._ema += self._alpha * (instant_rms - self._ema)

        smoothed = max(0.0, self._ema)
        reading = SmoothnessReading(
            roughness_rms=smoothed,
            stability=roughness_quality(smoothed, rms_ceiling=self._rms_ceiling),
            at=at,
            sample_count=len(self._window),
        )
        self._last_emit_at = at
        self._latest = reading
        return reading

    def current(self) -> SmoothnessReading | None:
        return self._latest

    def reset(self) -> None:
        self._window.clear()
        self._ema = None
        self._last_emit_at = None
        self._latest = None
        self._count = 0
        self._mean = 0.0
        self._m2 = 0.0
