import os
import subprocess
import sys
from concurrent.futures import Future

import pytest

from csvbench.bench import orchestrator
from csvbench.bench.matrix import ImplementationResult
from csvbench.bench.orchestrator import run_all, run_worker, worker_command, worker_env
from csvbench.config.options import BenchmarkOptions
from csvbench.datasets import DatasetDefinition
from csvbench.registry.implementations import ImplementationHandle

CSV_SCAN = ImplementationHandle("csv_scan", "csvbench.engine.csv_scan:query")
ALWAYS_FAILS = ImplementationHandle("always_fails", "tests.implementations:always_fails")
FIXED_ROWS = ImplementationHandle("fixed_rows", "tests.implementations:fixed_rows")


def _options(**changes):
    base = {"iterations": 1, "test_sizes": ("very_small",), "max_retries": 1, "verbose": False}
    base.update(changes)
    return BenchmarkOptions(**base)


def test_sequential_run_keeps_discovery_order_and_isolates_failures(people_csv):
    datasets = [DatasetDefinition("very_small", people_csv)]

    results = run_all(
        [ALWAYS_FAILS, CSV_SCAN, FIXED_ROWS],
        datasets,
        [{"Name": "Alice"}],
        _options(parallel=False),
    )

    assert [name for name, _ in results] == ["always_fails", "csv_scan", "fixed_rows"]
    by_name = dict(results)
    assert by_name["always_fails"].error is not None
    assert by_name["csv_scan"].ok
    assert by_name["csv_scan"].datasets["very_small"].row_counts == (1,)
    assert by_name["fixed_rows"].datasets["very_small"].row_counts == (2,)


def test_sequential_progress_names_the_implementation(people_csv):
    seen = []

    run_all(
        [CSV_SCAN],
        [DatasetDefinition("very_small", people_csv)],
        [{"Name": "Alice"}],
        _options(parallel=False, iterations=2),
        progress=lambda name, current, total: seen.append((name, current, total)),
    )

    assert seen == [("csv_scan", 1, 2), ("csv_scan", 2, 2)]


class _InlineExecutor:
    created = []

    def __init__(self, max_workers, thread_name_prefix=""):
        self.max_workers = max_workers
        _InlineExecutor.created.append(self)

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        return False

    def submit(self, fn, *args):
        future = Future()
        future.set_result(fn(*args))
        return future


def test_parallel_run_bounds_workers_and_merges_by_index(monkeypatch):
    _InlineExecutor.created = []
    monkeypatch.setattr(orchestrator, "ThreadPoolExecutor", _InlineExecutor)
    monkeypatch.setattr(
        orchestrator,
        "run_worker",
        lambda handle, datasets, queries, options: ImplementationResult(handle.name),
    )
    handles = [ImplementationHandle(f"impl_{index}", "pkg.mod:query") for index in range(5)]

    results = run_all(handles, [], [{}], _options(parallel=True, max_processes=3))

    assert [name for name, _ in results] == [handle.name for handle in handles]
    assert _InlineExecutor.created[0].max_workers == 3


def test_parallel_worker_count_never_exceeds_implementation_count(monkeypatch):
    _InlineExecutor.created = []
    monkeypatch.setattr(orchestrator, "ThreadPoolExecutor", _InlineExecutor)
    monkeypatch.setattr(
        orchestrator,
        "run_worker",
        lambda handle, datasets, queries, options: ImplementationResult(handle.name),
    )

    run_all([CSV_SCAN], [], [{}], _options(parallel=True, max_processes=8))

    assert _InlineExecutor.created[0].max_workers == 1


def test_run_all_without_implementations_is_empty():
    assert run_all([], [], [{}], _options()) == []


def test_parallel_run_in_worker_processes(people_csv):
    datasets = [DatasetDefinition("very_small", people_csv)]

    results = run_all(
        [CSV_SCAN, ALWAYS_FAILS],
        datasets,
        [{"Name": "Alice"}, {"Name": "John"}],
        _options(parallel=True, max_processes=2, iterations=2),
    )

    assert [name for name, _ in results] == ["csv_scan", "always_fails"]
    by_name = dict(results)
    assert by_name["csv_scan"].ok
    assert by_name["csv_scan"].datasets["very_small"].row_counts == (1, 1, 2, 2)
    assert "boom" in by_name["always_fails"].error


@pytest.mark.parametrize(
    ("returncode", "stdout", "expected"),
    [
        (1, "", "rc=1"),
        (0, "", "empty stdout"),
        (0, "not json\n", "invalid JSON"),
        (0, '{"name": "csv_scan"}\n', "without a result"),
    ],
)
def test_worker_protocol_failures_become_error_markers(monkeypatch, returncode, stdout, expected):
    def fake_run(cmd, **kwargs):
        return subprocess.CompletedProcess(cmd, returncode, stdout=stdout, stderr="trace\n")

    monkeypatch.setattr(orchestrator.subprocess, "run", fake_run)

    result = run_worker(CSV_SCAN, [], [{}], _options())

    assert result.name == "csv_scan"
    assert expected in result.error


def test_worker_start_failure_becomes_error_marker(monkeypatch):
    def fake_run(cmd, **kwargs):
        raise FileNotFoundError("no python")

    monkeypatch.setattr(orchestrator.subprocess, "run", fake_run)

    result = run_worker(CSV_SCAN, [], [{}], _options())

    assert "failed to start" in result.error


def test_worker_command_and_env():
    assert worker_command() == [sys.executable, "-m", "csvbench.bench.worker"]
    entries = worker_env()["PYTHONPATH"].split(os.pathsep)
    assert entries[0] == str(orchestrator.SOURCE_ROOT)
    assert (orchestrator.SOURCE_ROOT / "csvbench").is_dir()
