"""Adaptive frame-processing interval based on observed source latency."""

from __future__ import annotations

from collections import deque
from typing import Deque


class AdaptiveIntervalCalculator:
    """Recommends a processing interval from a rolling window of latencies."""

    def __init__(
        self,
        *,
        max_samples: int = 10,
        multiplier: float = 1.5,
        min_interval_ms: float = 150.0,
        max_interval_ms: float = 2000.0,
        change_threshold: float = 0.2,
        min_samples: int = 3,
    ) -> None:
        if min_interval_ms <= 0 or max_interval_ms < min_interval_ms:
            raise ValueError("interval bounds must satisfy 0 < min <= max")
        self.multiplier = float(multiplier)
        self.min_interval_ms = float(min_interval_ms)
        self.max_interval_ms = float(max_interval_ms)
        self.change_threshold = max(0.0, float(change_threshold))
        self.min_samples = max(1, int(min_samples))
        self._samples: Deque[float] = deque(maxlen=max(1, int(max_samples)))

    def add_sample(self, latency_ms: float) -> None:
        value = max(0.0, float(latency_ms))
        self._samples.append(value)

    def recommend(self, current_interval_ms: float) -> float:
        """Return the interval to use next (may equal the current one)."""

        current = self.clamp(current_interval_ms)
        if len(self._samples) < self.min_samples:
            return current
        target = self.clamp(self.average_latency_ms * self.multiplier)
        change = abs(target - current) / current
        if change < self.change_threshold:
            return current
        return target

    def clamp(self, interval_ms: float) -> float:
        return min(self.max_interval_ms, max(self.min_interval_ms, float(interval_ms)))

    @property
    def average_latency_ms(self) -> float:
        if not self._samples:
            return 0.0
        return sum(self._samples) / len(self._samples)


__all__ = ["AdaptiveIntervalCalculator"]
