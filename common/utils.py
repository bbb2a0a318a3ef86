from __future__ import annotations

from typing import Deque
from dataclasses import dataclass, field
from collections import deque
import time
import numpy as np


@dataclass(slots=True)
class RateTimer:
    """
    Simple rate tracker for loop diagnostics.

    Usage:
        rt = RateTimer(window=50)
        while running:
            # tick...
            hz = rt.tick()
    """
    window: int = 50
    _times: Deque[float] = field(default_factory=deque)

    def __post_init__(self) -> None:
        self._times = deque(maxlen=self.window)

    def tick(self) -> float:
        t = time.perf_counter()
        self._times.append(t)
        return self.rate()

    def rate(self) -> float:
        if len(self._times) < 2:
            return 0.0
        dt = (self._times[-1] - self._times[0]) / (len(self._times) - 1)
        return 0.0 if dt <= 0 else 1.0 / dt


@dataclass(slots=True)
class RunningStats:
    """
    Online mean/std using Welford's algorithm.
    """
    n: int = 0
    mean: float = 0.0
    m2: float = 0.0
    max: float = 0.0

    def add(self, x: float) -> None:
        self.n += 1
        d = x - self.mean
        self.mean += d / self.n
        d2 = x - self.mean
        self.m2 += d * d2
        if self.n == 1 or x > self.max:
            self.max = x

    @property
    def variance(self) -> float:
        return self.m2 / (self.n - 1) if self.n > 1 else 0.0

    @property
    def std(self) -> float:
        return self.variance ** 0.5


def to_numpy_3x3(x) -> np.ndarray:
    """Ensure input is a 3x3 float64 numpy array (copy if necessary)."""
    a = np.asarray(x, dtype=float)
    if a.shape != (3, 3):
        raise ValueError("Expected 3x3")
    return a.copy()


def elapsed_ms(t0: float) -> float:
    """Milliseconds since a time.perf_counter() reading."""
    return (time.perf_counter() - t0) * 1e3
