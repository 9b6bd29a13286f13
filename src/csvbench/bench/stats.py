"""Timing statistics for benchmark samples.

Standard deviation is the population form (divide by ``n``), and
``reliability = 1 / (1 + std_dev / mean)``. Infinite samples mark failed
trials: they propagate into ``avg``/``max`` and give ``std_dev = inf`` and
``reliability = 0.0`` so a failed dataset never looks stable.
"""

from __future__ import annotations

import math
import statistics
from dataclasses import dataclass
from typing import Sequence

INFINITY = float("inf")


@dataclass(frozen=True)
class TimingSummary:
    avg: float
    min: float
    max: float
    std_dev: float
    reliability: float

    def as_dict(self) -> dict[str, float]:
        return {
            "avg": self.avg,
            "min": self.min,
            "max": self.max,
            "std_dev": self.std_dev,
            "reliability": self.reliability,
        }


def _all_finite(values: Sequence[float]) -> bool:
    return all(math.isfinite(value) for value in values)


def mean(values: Sequence[float]) -> float:
    if not values:
        raise ValueError("mean() requires at least one value")
    if not _all_finite(values):
        return sum(values) / len(values)
    return statistics.fmean(values)


def population_std_dev(values: Sequence[float]) -> float:
    if not values:
        raise ValueError("population_std_dev() requires at least one value")
    if not _all_finite(values):
        return INFINITY
    return statistics.pstdev(values)


def reliability(values: Sequence[float]) -> float:
    if not values:
        return 0.0
    if not _all_finite(values):
        return 0.0
    center = mean(values)
    if center == 0:
        raise ValueError("reliability is undefined for a zero mean timing")
    coefficient_of_variation = population_std_dev(values) / center
    return 1.0 / (1.0 + coefficient_of_variation)


def summarize(values: Sequence[float]) -> TimingSummary:
    values = [float(value) for value in values]
    if not values:
        raise ValueError("summarize() requires at least one timing sample")
    return TimingSummary(
        avg=mean(values),
        min=min(values),
        max=max(values),
        std_dev=population_std_dev(values),
        reliability=reliability(values),
    )
