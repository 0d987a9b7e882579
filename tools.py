import math
from typing import Iterable, Tuple


class MathTools:
    """Provides essential mathematical utilities for workout calculations."""

    WEIGHT_INCREMENT: float = 0.5
    MIN_INCREASE: float = 2.5
    ADJUST_FRACTION: float = 0.05
    HIGH_REP_THRESHOLD: int = 12
    LOW_REP_THRESHOLD: int = 6

    @staticmethod
    def round_to_increment(value: float, increment: float = 0.5) -> float:
        """Round ``value`` half up to the nearest multiple of ``increment``."""
        if increment <= 0:
            raise ValueError("increment must be positive")
        return math.floor(value / increment + 0.5) * increment

    @classmethod
    def suggest_next_weight(cls, weight: float, reps: int) -> float:
        """Return the progressive-overload target for the next session.

        High rep sets move the weight up by at least 2.5, low rep sets drop
        it by 5%; the adjusted value is then snapped to 0.5.
        """
        if weight < 0:
            raise ValueError("weight must be non-negative")
        if reps >= cls.HIGH_REP_THRESHOLD:
            target = weight + max(cls.MIN_INCREASE, weight * cls.ADJUST_FRACTION)
        elif reps < cls.LOW_REP_THRESHOLD:
            target = max(0.0, weight - weight * cls.ADJUST_FRACTION)
        else:
            return float(weight)
        return cls.round_to_increment(target, cls.WEIGHT_INCREMENT)

    @staticmethod
    def volume(sets: Iterable[Tuple[float, int]]) -> float:
        """Compute training volume as the sum of weight times reps."""
        vol = 0.0
        for weight, reps in sets:
            vol += weight * reps
        return vol

    @staticmethod
    def mean(values: list[float]) -> float:
        return sum(values) / len(values) if values else 0.0
