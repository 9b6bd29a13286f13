import json
import math

import pytest

from csvbench.bench import matrix as matrix_mod
from csvbench.bench.matrix import DatasetSummary, ImplementationResult, run_matrix
from csvbench.bench.report import build_json_report, sanitize_for_json
from csvbench.bench.trial import TrialProcess, TrialSample
from csvbench.config.options import BenchmarkOptions
from csvbench.datasets import DatasetDefinition
from csvbench.registry.implementations import ImplementationHandle

CSV_SCAN = ImplementationHandle("csv_scan", "csvbench.engine.csv_scan:query")
ALWAYS_FAILS = ImplementationHandle("always_fails", "tests.implementations:always_fails")
SLEEPY = ImplementationHandle("sleepy", "tests.implementations:sleepy")
FAILS_ON_BROKEN = ImplementationHandle("fails_on_broken", "tests.implementations:fails_on_broken_file")


@pytest.fixture
def fixed_memory(monkeypatch):
    monkeypatch.setattr(TrialProcess, "memory_mb", lambda self: 12.5)


def test_single_dataset_run_records_counts_and_reliability(people_csv, fixed_memory):
    datasets = [DatasetDefinition("very_small", people_csv)]

    result = run_matrix(CSV_SCAN, datasets, [{"Name": "Alice"}], 3)

    assert result.ok
    summary = result.datasets["very_small"]
    assert summary.implementation == "csv_scan"
    assert summary.avg_time > 0
    assert summary.row_counts == (1, 1, 1)
    assert len(summary.times) == 3
    assert summary.memory_used == 12.5
    assert 0.0 < summary.reliability <= 1.0
    expected = 1.0 / (1.0 + summary.std_dev / summary.avg_time)
    assert summary.reliability == pytest.approx(expected)


def test_always_timing_out_gives_infinite_summary(people_csv, fixed_memory):
    datasets = [DatasetDefinition("very_small", people_csv)]

    result = run_matrix(SLEEPY, datasets, [{"Name": "Alice"}], 2, max_retries=1, timeout_seconds=0.05)

    assert result.ok
    summary = result.datasets["very_small"]
    assert summary.avg_time == math.inf
    assert summary.max_time == math.inf
    assert summary.failed_trials == 2

    report = build_json_report([("sleepy", result)], {}, BenchmarkOptions(test_sizes=("very_small",)))
    decoded = json.loads(json.dumps(report))
    assert decoded["results"]["sleepy"]["datasets"]["very_small"]["avg_time"] == "Infinity"
    assert decoded["results"]["sleepy"]["datasets"]["very_small"]["max_time"] == "Infinity"


def test_always_raising_implementation_is_marked_with_error(people_csv, fixed_memory):
    datasets = [DatasetDefinition("very_small", people_csv), DatasetDefinition("small", people_csv)]

    result = run_matrix(ALWAYS_FAILS, datasets, [{"Name": "Alice"}], 2, max_retries=1)

    assert not result.ok
    assert "boom" in result.error
    assert result.datasets == {}


def test_failure_keeps_completed_datasets_and_abandons_the_rest(people_csv, tmp_path, fixed_memory):
    broken = tmp_path / "broken.csv"
    datasets = [
        DatasetDefinition("very_small", people_csv),
        DatasetDefinition("small", broken),
        DatasetDefinition("medium", people_csv),
    ]
    seen = []

    result = run_matrix(
        FAILS_ON_BROKEN,
        datasets,
        [{}],
        1,
        max_retries=1,
        progress=lambda current, total: seen.append(current),
    )

    assert list(result.datasets) == ["very_small"]
    assert "small" in result.error
    assert "disk gone" in result.error
    assert seen == [1, 2]


def test_load_failure_is_an_implementation_failure(people_csv):
    handle = ImplementationHandle("ghost", "tests.implementations:does_not_exist")

    result = run_matrix(handle, [DatasetDefinition("very_small", people_csv)], [{}], 1)

    assert result.error is not None
    assert "does_not_exist" in result.error


def test_size_filter_and_gc_per_dataset(people_csv, fixed_memory, monkeypatch):
    collected = []
    monkeypatch.setattr(matrix_mod.gc, "collect", lambda: collected.append(True) or 0)
    datasets = [
        DatasetDefinition("very_small", people_csv),
        DatasetDefinition("small", people_csv),
        DatasetDefinition("medium", people_csv),
    ]

    result = run_matrix(CSV_SCAN, datasets, [{"Name": "John"}, {"Age": "25"}], 2, test_sizes=["small", "medium"])

    assert list(result.datasets) == ["small", "medium"]
    assert len(collected) == 2
    assert result.datasets["small"].row_counts == (2, 2, 2, 2)


def test_progress_is_reported_after_every_trial(people_csv, fixed_memory):
    seen = []

    run_matrix(
        CSV_SCAN,
        [DatasetDefinition("very_small", people_csv)],
        [{"Name": "John"}],
        3,
        progress=lambda current, total: seen.append((current, total)),
    )

    assert seen == [(1, 3), (2, 3), (3, 3)]


def test_summary_derived_fields_follow_samples():
    samples = [TrialSample(0.5, 1), TrialSample(1.5, 1)]

    summary = DatasetSummary.from_samples("impl", samples, 3.0)

    assert summary.times == (0.5, 1.5)
    assert summary.avg_time == 1.0
    assert summary.min_time == 0.5
    assert summary.max_time == 1.5
    assert summary.std_dev == 0.5


def test_result_dict_round_trip_accepts_sanitized_infinity():
    summary = DatasetSummary.from_samples("impl", [TrialSample(math.inf, 0), TrialSample(0.25, 2)], 1.0)
    result = ImplementationResult("impl", {"small": summary})

    restored = ImplementationResult.from_dict("impl", sanitize_for_json(result.to_dict()))

    assert restored == result
    assert "error" not in result.to_dict()
    assert ImplementationResult("impl", error="boom").to_dict() == {"datasets": {}, "error": "boom"}


def test_memory_is_read_from_the_hosting_process(people_csv, monkeypatch):
    monkeypatch.setattr(matrix_mod, "current_rss_mb", lambda: -1.0)

    result = run_matrix(CSV_SCAN, [DatasetDefinition("very_small", people_csv)], [{"Name": "John"}], 1)

    assert result.datasets["very_small"].memory_used > 0


def test_memory_falls_back_to_this_process_after_a_trailing_timeout(people_csv, monkeypatch):
    monkeypatch.setattr(matrix_mod, "current_rss_mb", lambda: 7.0)

    result = run_matrix(
        SLEEPY, [DatasetDefinition("very_small", people_csv)], [{}], 1, max_retries=1, timeout_seconds=0.05
    )

    assert result.datasets["very_small"].memory_used == 7.0
