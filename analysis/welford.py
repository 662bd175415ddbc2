"""
Welford's online variance algorithm: single-pass mean/variance with O(1) memory.

Used for per-field ranges over a record sequence. Absent (None), non-finite
and sentinel readings are skipped so they never leak into min/max/mean.
"""

import math
from dataclasses import dataclass
from typing import Optional

from core.utils import is_valid_reading


@dataclass
class WelfordAccumulator:
    """Single-pass mean/variance computation with O(1) memory."""
    count: int = 0
    mean: float = 0.0
    m2: float = 0.0
    min_val: float = float('inf')
    max_val: float = float('-inf')

    def update(self, value: Optional[float]):
        if not is_valid_reading(value):
            return
        value = float(value)
        self.count += 1
        delta = value - self.mean
        self.mean += delta / self.count
        self.m2 += delta * (value - self.mean)
        self.min_val = min(self.min_val, value)
        self.max_val = max(self.max_val, value)

    @property
    def std(self) -> float:
        if self.count < 2:
            return 0.0
        return math.sqrt(self.m2 / (self.count - 1))

    def to_dict(self) -> dict:
        if self.count == 0:
            return {"mean": None, "std": None, "min": None, "max": None, "count": 0}
        return {
            "mean": round(self.mean, 6),
            "std": round(self.std, 6),
            "min": round(self.min_val, 6),
            "max": round(self.max_val, 6),
            "count": self.count,
        }
