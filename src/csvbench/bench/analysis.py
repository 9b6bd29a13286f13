from __future__ import annotations

import math
from typing import Any, Mapping, Sequence

from csvbench.bench.matrix import ImplementationResult


def _as_mapping(results) -> dict[str, ImplementationResult]:
    if isinstance(results, Mapping):
        return dict(results)
    return {name: result for name, result in results}


def slowest_finite_average(results, size: str) -> float | None:
    averages = [
        result.datasets[size].avg_time
        for result in _as_mapping(results).values()
        if size in result.datasets and math.isfinite(result.datasets[size].avg_time)
    ]
    return max(averages) if averages else None


def analyze_results(results, dataset_sizes: Sequence[str]) -> dict[str, dict[str, dict[str, Any]]]:
    """Per-implementation comparison across dataset sizes.

    ``improvement_ratio`` is how many times faster an implementation is than
    the slowest one with a finite average on the same dataset; it is ``None``
    when the implementation's own average is infinite.
    """
    by_name = _as_mapping(results)
    slowest = {size: slowest_finite_average(by_name, size) for size in dataset_sizes}
    analysis: dict[str, dict[str, dict[str, Any]]] = {}
    for name, result in by_name.items():
        entry: dict[str, dict[str, Any]] = {
            "average_performance": {},
            "reliability": {},
            "memory_usage": {},
            "improvement_ratio": {},
        }
        for size in dataset_sizes:
            summary = result.datasets.get(size)
            if summary is None:
                continue
            entry["average_performance"][size] = summary.avg_time
            entry["reliability"][size] = summary.reliability
            entry["memory_usage"][size] = summary.memory_used
            ratio = None
            if math.isfinite(summary.avg_time) and summary.avg_time > 0 and slowest[size] is not None:
                ratio = slowest[size] / summary.avg_time
            entry["improvement_ratio"][size] = ratio
        analysis[name] = entry
    return analysis
