from __future__ import annotations

import csv
from pathlib import Path
from typing import Mapping

from csvbench.engine.base import Row, dataset_is_readable, normalize_criteria, query_failed

ENGINE_NAME = "csv_scan"


def _matches(row: Mapping[str, str | None], criteria: Mapping[str, str]) -> bool:
    for field, expected in criteria.items():
        if row.get(field) != expected:
            return False
    return True


def query(file_path: str | Path, criteria: Mapping[str, str]) -> list[Row]:
    """Linear scan with ``csv.DictReader``; the reference semantics."""
    if not dataset_is_readable(file_path, engine=ENGINE_NAME):
        return []
    wanted = normalize_criteria(criteria)
    try:
        with Path(file_path).open("r", encoding="utf-8", newline="") as handle:
            reader = csv.DictReader(handle)
            return [dict(row) for row in reader if _matches(row, wanted)]
    except (OSError, csv.Error, UnicodeDecodeError) as exc:
        return query_failed(ENGINE_NAME, file_path, exc)
