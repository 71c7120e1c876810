"""Bounded per-session price history and the statistics derived from it."""

from __future__ import annotations

import threading
from collections import deque
from typing import NamedTuple, Sequence


class Snapshot(NamedTuple):
    """Independent copy of a history taken under its lock."""
    samples: tuple[float, ...]
    last: float  # 0.0 until the first sample arrives


class PriceHistory:
    """
    Thread-safe bounded window of recent price samples.

    Keeps the last `capacity` samples in arrival order; the oldest sample is
    evicted once the window is full. One lock guards the samples and the last
    value together, so a snapshot never sees one without the other.
    """

    def __init__(self, capacity: int = 1800):
        if capacity < 1:
            raise ValueError(f"capacity must be positive, got {capacity}")
        self.capacity = capacity
        self._lock = threading.Lock()
        self._samples: deque[float] = deque(maxlen=capacity)
        self._last = 0.0

    def __len__(self) -> int:
        with self._lock:
            return len(self._samples)

    def append(self, value: float) -> None:
        with self._lock:
            self._samples.append(value)
            self._last = value

    def snapshot(self) -> Snapshot:
        with self._lock:
            return Snapshot(tuple(self._samples), self._last)


def stats(samples: Sequence[float]) -> tuple[float, float]:
    """Return (min, max) of the samples, or (0.0, 0.0) when empty."""
    if not samples:
        return 0.0, 0.0
    return min(samples), max(samples)


def delta(samples: Sequence[float]) -> float:
    """Spread between the highest and lowest sample."""
    low, high = stats(samples)
    return high - low


def percent_change(samples: Sequence[float]) -> float:
    """Percent change from the first to the last sample (0.0 if first is zero)."""
    if not samples or samples[0] == 0:
        return 0.0
    first, last = samples[0], samples[-1]
    return (last - first) / first * 100
