from __future__ import annotations

import gc
import logging
import math
from dataclasses import dataclass, field
from typing import Any, Callable, Mapping, Sequence

from csvbench.bench.memory import current_rss_mb
from csvbench.bench.stats import summarize
from csvbench.bench.trial import DEFAULT_MAX_RETRIES, TRIAL_TIMEOUT_SECONDS, TrialProcess, TrialSample, run_trial
from csvbench.datasets import DatasetDefinition
from csvbench.errors import CsvBenchError, ImplementationFailure
from csvbench.registry.implementations import ImplementationHandle
from csvbench.util.logging import log_structured_event

INFINITY_SENTINEL = "Infinity"

LOG = logging.getLogger("csvbench.bench.matrix")

ProgressCallback = Callable[[int, int], None]


def _restore_float(value: Any) -> float:
    if value == INFINITY_SENTINEL:
        return math.inf
    if value == "-" + INFINITY_SENTINEL:
        return -math.inf
    return float(value)


@dataclass(frozen=True)
class DatasetSummary:
    """Timings of one implementation on one dataset.

    Derived fields always match ``times``; build instances with
    ``from_samples`` or ``from_times``.
    """

    implementation: str
    times: tuple[float, ...]
    row_counts: tuple[int, ...]
    avg_time: float
    min_time: float
    max_time: float
    std_dev: float
    reliability: float
    memory_used: float

    @classmethod
    def from_times(
        cls,
        implementation: str,
        times: Sequence[float],
        row_counts: Sequence[int],
        memory_used: float,
    ) -> "DatasetSummary":
        summary = summarize(times)
        return cls(
            implementation=str(implementation),
            times=tuple(float(value) for value in times),
            row_counts=tuple(int(value) for value in row_counts),
            avg_time=summary.avg,
            min_time=summary.min,
            max_time=summary.max,
            std_dev=summary.std_dev,
            reliability=summary.reliability,
            memory_used=float(memory_used),
        )

    @classmethod
    def from_samples(
        cls,
        implementation: str,
        samples: Sequence[TrialSample],
        memory_used: float,
    ) -> "DatasetSummary":
        return cls.from_times(
            implementation,
            [sample.elapsed_time for sample in samples],
            [sample.result_count for sample in samples],
            memory_used,
        )

    @property
    def failed_trials(self) -> int:
        return sum(1 for value in self.times if not math.isfinite(value))

    def to_dict(self) -> dict[str, Any]:
        return {
            "implementation": self.implementation,
            "times": list(self.times),
            "row_counts": list(self.row_counts),
            "avg_time": self.avg_time,
            "min_time": self.min_time,
            "max_time": self.max_time,
            "std_dev": self.std_dev,
            "reliability": self.reliability,
            "memory_used": self.memory_used,
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "DatasetSummary":
        # Derived fields are recomputed from the stored times.
        return cls.from_times(
            payload.get("implementation", ""),
            [_restore_float(value) for value in payload.get("times", ())],
            payload.get("row_counts", ()),
            _restore_float(payload.get("memory_used", 0.0)),
        )


@dataclass(frozen=True)
class ImplementationResult:
    name: str
    datasets: dict[str, DatasetSummary] = field(default_factory=dict)
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "datasets": {size: summary.to_dict() for size, summary in self.datasets.items()},
        }
        if self.error is not None:
            payload["error"] = self.error
        return payload

    @classmethod
    def from_dict(cls, name: str, payload: Mapping[str, Any]) -> "ImplementationResult":
        datasets = payload.get("datasets") or {}
        error = payload.get("error")
        return cls(
            name=str(name),
            datasets={str(size): DatasetSummary.from_dict(entry) for size, entry in datasets.items()},
            error=None if error is None else str(error),
        )


def _all_trials_raised(samples: Sequence[TrialSample]) -> bool:
    return bool(samples) and all(sample.failed and sample.error is not None for sample in samples)


def _memory_used(process: TrialProcess) -> float:
    # the hosting process is gone after a trailing timeout
    memory = process.memory_mb()
    return current_rss_mb() if memory is None else memory


def run_matrix(
    handle: ImplementationHandle,
    datasets: Sequence[DatasetDefinition],
    queries: Sequence[Mapping[str, str]],
    iterations: int,
    *,
    test_sizes: Sequence[str] | None = None,
    max_retries: int = DEFAULT_MAX_RETRIES,
    timeout_seconds: float = TRIAL_TIMEOUT_SECONDS,
    progress: ProgressCallback | None = None,
) -> ImplementationResult:
    """Benchmark one implementation over every selected dataset and query.

    Each dataset gets ``len(queries) * iterations`` trials. A failure outside
    the trial retry envelope stops the run; the summaries completed so far
    are kept and ``error`` is set on the result.
    """
    if int(iterations) < 1:
        raise ValueError("iterations must be at least 1")
    selected = [
        definition
        for definition in datasets
        if test_sizes is None or definition.size in set(test_sizes)
    ]
    total = len(selected) * len(queries) * int(iterations)
    completed = 0
    summaries: dict[str, DatasetSummary] = {}

    try:
        handle.load()
        with TrialProcess(handle, name=handle.name) as process:
            for definition in selected:
                gc.collect()
                samples: list[TrialSample] = []
                for criteria in queries:
                    for _ in range(int(iterations)):
                        samples.append(
                            run_trial(
                                process,
                                definition.path,
                                criteria,
                                max_retries,
                                timeout_seconds=timeout_seconds,
                                name=handle.name,
                            )
                        )
                        completed += 1
                        if progress is not None:
                            progress(completed, total)
                if _all_trials_raised(samples):
                    raise ImplementationFailure(
                        f"every trial on dataset {definition.size!r} raised; last error: {samples[-1].error}"
                    )
                summaries[definition.size] = DatasetSummary.from_samples(
                    handle.name, samples, _memory_used(process)
                )
                log_structured_event(
                    LOG,
                    logging.INFO,
                    "dataset_completed",
                    implementation=handle.name,
                    dataset=definition.size,
                    avg_time=summaries[definition.size].avg_time,
                    failed_trials=summaries[definition.size].failed_trials,
                )
    except Exception as exc:
        error = str(exc) if isinstance(exc, CsvBenchError) else f"{type(exc).__name__}: {exc}"
        log_structured_event(
            LOG,
            logging.ERROR,
            "implementation_failed",
            implementation=handle.name,
            completed_datasets=list(summaries),
            error=error,
        )
        return ImplementationResult(name=handle.name, datasets=summaries, error=error)

    return ImplementationResult(name=handle.name, datasets=summaries)
