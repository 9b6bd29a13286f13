from __future__ import annotations

from pathlib import Path
from typing import Mapping

from csvbench.engine.base import Row, dataset_is_readable, has_columns, normalize_criteria, query_failed
from csvbench.util.deps import require_polars

ENGINE_NAME = "polars_scan"


def query(file_path: str | Path, criteria: Mapping[str, str]) -> list[Row]:
    """Lazy ``scan_csv`` with every column read as a string (empty fields as ``""``), filtered by equality."""
    if not dataset_is_readable(file_path, engine=ENGINE_NAME):
        return []
    pl = require_polars("polars_scan.query()")
    wanted = normalize_criteria(criteria)
    try:
        frame = pl.scan_csv(str(file_path), infer_schema_length=0, missing_utf8_is_empty_string=True)
        if not has_columns(frame.collect_schema().names(), wanted):
            return []
        if wanted:
            frame = frame.filter(*[pl.col(field) == value for field, value in wanted.items()])
        return frame.collect().to_dicts()
    except Exception as exc:
        return query_failed(ENGINE_NAME, file_path, exc)
