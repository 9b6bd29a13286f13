"""Child process entry point for parallel runs.

Reads one job as JSON on stdin, runs the matrix for a single implementation
and prints one JSON line ``{"name": ..., "result": ...}`` on stdout. The
stdlib ``json`` module is used on purpose: it writes and reads ``Infinity``,
which the result of a timed-out dataset contains.
"""

from __future__ import annotations

import json
import logging
import sys
from pathlib import Path
from typing import Any, Mapping

from csvbench.bench.matrix import run_matrix
from csvbench.datasets import DatasetDefinition
from csvbench.registry.implementations import ImplementationHandle

SUCCESS_EXIT_CODE = 0
FAIL_EXIT_CODE = 1


def build_job(
    handle: ImplementationHandle,
    datasets,
    queries,
    *,
    iterations: int,
    test_sizes,
    max_retries: int,
    timeout_seconds: float,
    verbose: bool,
) -> dict[str, Any]:
    return {
        "implementation": handle.to_dict(),
        "datasets": [
            {"size": definition.size, "path": str(definition.path), "rows": definition.rows}
            for definition in datasets
        ],
        "queries": [dict(criteria) for criteria in queries],
        "iterations": int(iterations),
        "test_sizes": None if test_sizes is None else list(test_sizes),
        "max_retries": int(max_retries),
        "timeout_seconds": float(timeout_seconds),
        "verbose": bool(verbose),
    }


def run_job(job: Mapping[str, Any]) -> dict[str, Any]:
    handle = ImplementationHandle.from_dict(job["implementation"])
    datasets = [
        DatasetDefinition(size=str(entry["size"]), path=Path(entry["path"]), rows=entry.get("rows"))
        for entry in job.get("datasets", ())
    ]
    result = run_matrix(
        handle,
        datasets,
        list(job.get("queries", ())),
        int(job["iterations"]),
        test_sizes=job.get("test_sizes"),
        max_retries=int(job["max_retries"]),
        timeout_seconds=float(job["timeout_seconds"]),
    )
    return {"name": result.name, "result": result.to_dict()}


def main(argv=None) -> int:
    _ = argv
    try:
        job = json.loads(sys.stdin.read())
    except ValueError as exc:
        print(f"invalid job payload: {exc}", file=sys.stderr)
        return FAIL_EXIT_CODE
    if not isinstance(job, dict):
        print("invalid job payload: expected a JSON object", file=sys.stderr)
        return FAIL_EXIT_CODE
    logging.basicConfig(
        level=logging.INFO if job.get("verbose") else logging.WARNING,
        stream=sys.stderr,
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
    )
    payload = run_job(job)
    sys.stdout.write(json.dumps(payload) + "\n")
    sys.stdout.flush()
    return SUCCESS_EXIT_CODE


if __name__ == "__main__":
    raise SystemExit(main())
