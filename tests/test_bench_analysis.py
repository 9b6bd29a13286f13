import math

import pytest

from csvbench.bench.analysis import analyze_results
from csvbench.bench.matrix import DatasetSummary, ImplementationResult
from csvbench.bench.trial import TrialSample


def _result(name, per_size, *, error=None):
    datasets = {
        size: DatasetSummary.from_samples(name, [TrialSample(value, 1) for value in times], 10.0)
        for size, times in per_size.items()
    }
    return ImplementationResult(name, datasets, error)


def test_improvement_ratio_is_relative_to_slowest_finite_average():
    results = [
        ("fast", _result("fast", {"small": [0.5, 0.5]})),
        ("slow", _result("slow", {"small": [2.0, 2.0]})),
        ("stuck", _result("stuck", {"small": [math.inf]})),
    ]

    analysis = analyze_results(results, ["small"])

    assert analysis["fast"]["improvement_ratio"]["small"] == pytest.approx(4.0)
    assert analysis["slow"]["improvement_ratio"]["small"] == pytest.approx(1.0)
    assert analysis["stuck"]["improvement_ratio"]["small"] is None
    assert analysis["stuck"]["average_performance"]["small"] == math.inf
    assert analysis["fast"]["reliability"]["small"] == 1.0
    assert analysis["fast"]["memory_usage"]["small"] == 10.0


def test_failed_implementation_only_lists_completed_sizes():
    results = {
        "partial": _result("partial", {"small": [1.0]}, error="boom"),
    }

    analysis = analyze_results(results, ["small", "medium"])

    assert set(analysis["partial"]["average_performance"]) == {"small"}
