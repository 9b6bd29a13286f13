from __future__ import annotations

import math
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Mapping, Sequence

from rich import box
from rich.console import Console
from rich.table import Table

from csvbench.bench.matrix import INFINITY_SENTINEL, ImplementationResult
from csvbench.util.json import json_dumps

TABLE_COLUMNS = (
    "Implementation",
    "Avg Time (s)",
    "Min Time (s)",
    "Max Time (s)",
    "Std Dev",
    "Memory (MB)",
    "Reliability",
)
FORMAT_TABLE = "table"
FORMAT_JSON = "json"
FORMAT_BOTH = "both"


def sanitize_for_json(obj: Any) -> Any:
    """Replace infinite floats with ``"Infinity"`` anywhere in ``obj``.

    Mappings, lists and tuples are rebuilt; everything else passes through,
    so sanitizing twice gives the same structure.
    """
    if isinstance(obj, float) and math.isinf(obj):
        return INFINITY_SENTINEL
    if isinstance(obj, Mapping):
        return {key: sanitize_for_json(value) for key, value in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [sanitize_for_json(value) for value in obj]
    return obj


def now_utc_iso() -> str:
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat()


def _results_mapping(results) -> dict[str, ImplementationResult]:
    if isinstance(results, Mapping):
        return dict(results)
    return {name: result for name, result in results}


def _fmt(value: float, digits: int) -> str:
    if math.isinf(value):
        return "inf" if value > 0 else "-inf"
    return f"{value:.{digits}f}"


def table_rows(size: str, results, analysis: Mapping[str, Any] | None = None) -> list[tuple[str, ...]]:
    """Rows for one dataset size, fastest first.

    Implementations with an error or without data for ``size`` are left out.
    """
    candidates = [
        (name, result.datasets[size])
        for name, result in _results_mapping(results).items()
        if result.ok and size in result.datasets
    ]
    candidates.sort(key=lambda item: item[1].avg_time)
    rows = []
    for name, summary in candidates:
        reliability = summary.reliability
        if analysis is not None:
            reliability = analysis.get(name, {}).get("reliability", {}).get(size, reliability)
        rows.append(
            (
                name,
                _fmt(summary.avg_time, 5),
                _fmt(summary.min_time, 5),
                _fmt(summary.max_time, 5),
                _fmt(summary.std_dev, 5),
                _fmt(summary.memory_used, 2),
                _fmt(reliability, 3),
            )
        )
    return rows


def build_dataset_table(
    size: str,
    dataset_path: str | Path | None,
    results,
    analysis: Mapping[str, Any] | None = None,
) -> Table:
    table = Table(title=f"Benchmark Results - {str(size).upper()} Dataset", box=box.SIMPLE_HEAVY)
    table.add_column(TABLE_COLUMNS[0], style="bold")
    for heading in TABLE_COLUMNS[1:]:
        table.add_column(heading, justify="right")
    for row in table_rows(size, results, analysis):
        table.add_row(*row)
    table.add_section()
    table.add_row(f"Dataset: {dataset_path}", *([""] * (len(TABLE_COLUMNS) - 1)), style="dim")
    return table


def build_json_report(results, analysis: Mapping[str, Any], options) -> dict[str, Any]:
    by_name = _results_mapping(results)
    return {
        "results": sanitize_for_json({name: result.to_dict() for name, result in by_name.items()}),
        "analysis": sanitize_for_json(analysis),
        "timestamp": now_utc_iso(),
        "test_parameters": {
            "iterations": options.iterations,
            "parallel": options.parallel,
            "test_sizes": list(options.test_sizes),
        },
    }


def _dataset_paths(datasets) -> dict[str, str]:
    if isinstance(datasets, Mapping):
        return {str(size): str(path) for size, path in datasets.items()}
    return {definition.size: str(definition.path) for definition in datasets}


def render(
    results,
    analysis: Mapping[str, Any],
    options,
    datasets: Mapping[str, Any] | Sequence[Any],
    *,
    console: Console | None = None,
    stream=None,
) -> dict[str, Any] | None:
    """Write the report in ``options.output_format``.

    Returns the JSON document when one was produced.
    """
    output_format = options.output_format
    if output_format not in (FORMAT_TABLE, FORMAT_JSON, FORMAT_BOTH):
        raise ValueError(f"unknown output format: {output_format!r}")
    out = sys.stdout if stream is None else stream
    if output_format in (FORMAT_TABLE, FORMAT_BOTH):
        console = console or Console(file=out, highlight=False)
        paths = _dataset_paths(datasets)
        for size in options.test_sizes:
            console.print(build_dataset_table(size, paths.get(size), results, analysis))
    if output_format in (FORMAT_JSON, FORMAT_BOTH):
        document = build_json_report(results, analysis, options)
        out.write(json_dumps(document, pretty=True) + "\n")
        return document
    return None
