import io
import json
import math

from csvbench.bench import worker
from csvbench.bench.matrix import ImplementationResult
from csvbench.datasets import DatasetDefinition
from csvbench.registry.implementations import ImplementationHandle

SLEEPY = ImplementationHandle("sleepy", "tests.implementations:sleepy")


def _job(handle, dataset_path, **overrides):
    job = worker.build_job(
        handle,
        [DatasetDefinition("tiny", dataset_path)],
        [{"Name": "Alice"}],
        iterations=1,
        test_sizes=["tiny"],
        max_retries=1,
        timeout_seconds=0.05,
        verbose=False,
    )
    job.update(overrides)
    return job


def test_main_prints_one_result_line_with_infinity(people_csv, monkeypatch, capsys):
    monkeypatch.setattr(worker.sys, "stdin", io.StringIO(json.dumps(_job(SLEEPY, people_csv))))

    code = worker.main([])

    assert code == worker.SUCCESS_EXIT_CODE
    lines = capsys.readouterr().out.strip().splitlines()
    payload = json.loads(lines[-1])
    assert payload["name"] == "sleepy"
    assert "Infinity" in lines[-1]
    result = ImplementationResult.from_dict(payload["name"], payload["result"])
    assert result.datasets["tiny"].avg_time == math.inf


def test_run_job_with_csv_scan(people_csv):
    handle = ImplementationHandle("csv_scan", "csvbench.engine.csv_scan:query")

    payload = worker.run_job(_job(handle, people_csv, timeout_seconds=30.0))

    assert payload["result"]["datasets"]["tiny"]["row_counts"] == [1]


def test_main_rejects_invalid_payload(monkeypatch, capsys):
    monkeypatch.setattr(worker.sys, "stdin", io.StringIO("not json"))

    assert worker.main([]) == worker.FAIL_EXIT_CODE
    assert "invalid job payload" in capsys.readouterr().err
