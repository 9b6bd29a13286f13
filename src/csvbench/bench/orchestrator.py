from __future__ import annotations

import json
import logging
import math
import os
import subprocess
import sys
from concurrent.futures import ThreadPoolExecutor, as_completed
from pathlib import Path
from typing import Callable, Mapping, Sequence

from csvbench.bench.matrix import ImplementationResult, run_matrix
from csvbench.bench.worker import build_job
from csvbench.config.options import BenchmarkOptions
from csvbench.datasets import DatasetDefinition
from csvbench.registry.implementations import ImplementationHandle
from csvbench.util.logging import log_structured_event

WORKER_MODULE = "csvbench.bench.worker"
WORKER_STARTUP_GRACE_SECONDS = 60.0
SOURCE_ROOT = Path(__file__).resolve().parents[2]

LOG = logging.getLogger("csvbench.bench.orchestrator")

RunProgress = Callable[[str, int, int], None]


def worker_command(python_executable: str | None = None) -> list[str]:
    return [str(python_executable or sys.executable), "-m", WORKER_MODULE]


def worker_env(*, source_root: Path | str = SOURCE_ROOT) -> dict[str, str]:
    """Environment for a worker child.

    The child sees the package source root and the parent's ``sys.path`` so
    implementations importable here are importable there too.
    """
    env = os.environ.copy()
    entries = [str(source_root)]
    existing = env.get("PYTHONPATH", "")
    if existing:
        entries.append(existing)
    entries.extend(entry for entry in sys.path if entry and entry not in entries)
    env["PYTHONPATH"] = os.pathsep.join(entries)
    return env


def worker_timeout_seconds(
    datasets: Sequence[DatasetDefinition],
    queries: Sequence[Mapping[str, str]],
    options: BenchmarkOptions,
) -> float:
    wanted = set(options.test_sizes)
    trials = sum(1 for definition in datasets if definition.size in wanted) * len(queries) * options.iterations
    budget = trials * options.max_retries * options.trial_timeout_seconds
    return budget + WORKER_STARTUP_GRACE_SECONDS


def _failed(handle: ImplementationHandle, message: str) -> ImplementationResult:
    log_structured_event(LOG, logging.ERROR, "worker_failed", implementation=handle.name, error=message)
    return ImplementationResult(name=handle.name, error=message)


def run_worker(
    handle: ImplementationHandle,
    datasets: Sequence[DatasetDefinition],
    queries: Sequence[Mapping[str, str]],
    options: BenchmarkOptions,
) -> ImplementationResult:
    """Run one implementation's matrix in an isolated child process."""
    job = build_job(
        handle,
        datasets,
        queries,
        iterations=options.iterations,
        test_sizes=options.test_sizes,
        max_retries=options.max_retries,
        timeout_seconds=options.trial_timeout_seconds,
        verbose=options.verbose,
    )
    timeout_seconds = worker_timeout_seconds(datasets, queries, options)
    try:
        proc = subprocess.run(
            worker_command(),
            input=json.dumps(job),
            env=worker_env(),
            capture_output=True,
            text=True,
            check=False,
            timeout=timeout_seconds if math.isfinite(timeout_seconds) else None,
        )
    except subprocess.TimeoutExpired:
        return _failed(handle, f"worker timed out after {timeout_seconds:.1f}s")
    except OSError as exc:
        return _failed(handle, f"worker failed to start: {type(exc).__name__}: {exc}")

    stderr = str(proc.stderr or "")
    if options.verbose and stderr:
        sys.stderr.write(stderr if stderr.endswith("\n") else stderr + "\n")
    if proc.returncode != 0:
        tail = stderr.strip().splitlines()[-1:] or [""]
        return _failed(handle, f"worker failed with rc={proc.returncode}: {tail[0]}")

    stdout = str(proc.stdout or "").strip()
    if not stdout:
        return _failed(handle, "worker emitted empty stdout")
    line = stdout.splitlines()[-1]
    try:
        payload = json.loads(line)
    except ValueError:
        return _failed(handle, f"worker emitted invalid JSON line: {line[:200]}")
    if not isinstance(payload, dict) or not isinstance(payload.get("result"), dict):
        return _failed(handle, "worker emitted a payload without a result object")
    return ImplementationResult.from_dict(handle.name, payload["result"])


def _run_parallel(
    handles: Sequence[ImplementationHandle],
    datasets: Sequence[DatasetDefinition],
    queries: Sequence[Mapping[str, str]],
    options: BenchmarkOptions,
) -> list[ImplementationResult]:
    max_workers = min(len(handles), int(options.max_processes))
    results: list[ImplementationResult | None] = [None] * len(handles)
    log_structured_event(
        LOG,
        logging.INFO,
        "parallel_run_started",
        implementations=[handle.name for handle in handles],
        max_workers=max_workers,
    )
    with ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="csvbench-worker") as executor:
        future_to_index = {
            executor.submit(run_worker, handle, datasets, queries, options): index
            for index, handle in enumerate(handles)
        }
        for future in as_completed(future_to_index):
            index = future_to_index[future]
            try:
                results[index] = future.result()
            except Exception as exc:
                results[index] = _failed(handles[index], f"{type(exc).__name__}: {exc}")
            log_structured_event(
                LOG,
                logging.INFO,
                "implementation_completed",
                implementation=handles[index].name,
                ok=results[index].ok,
            )
    return [result for result in results if result is not None]


def run_all(
    implementations: Sequence[ImplementationHandle],
    datasets: Sequence[DatasetDefinition],
    queries: Sequence[Mapping[str, str]],
    options: BenchmarkOptions,
    *,
    progress: RunProgress | None = None,
) -> list[tuple[str, ImplementationResult]]:
    """Benchmark every implementation and return ``(name, result)`` pairs.

    The output follows the order of ``implementations`` in both modes. With
    ``options.parallel`` each implementation runs in its own child process,
    at most ``options.max_processes`` at a time; ``progress`` is only called
    in sequential mode.
    """
    handles = list(implementations)
    if not handles:
        return []
    if options.parallel:
        results = _run_parallel(handles, datasets, queries, options)
    else:
        results = []
        for handle in handles:
            callback = None
            if progress is not None:
                callback = lambda current, total, name=handle.name: progress(name, current, total)
            results.append(
                run_matrix(
                    handle,
                    datasets,
                    queries,
                    options.iterations,
                    test_sizes=options.test_sizes,
                    max_retries=options.max_retries,
                    timeout_seconds=options.trial_timeout_seconds,
                    progress=callback,
                )
            )
    return [(result.name, result) for result in results]
