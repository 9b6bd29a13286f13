"""Shared pieces of the query contract.

Every engine exposes ``query(file_path, criteria) -> list[dict[str, str]]``.
A row matches when each criteria field equals the row's value exactly; an
empty criteria mapping matches every row. Engines never raise on missing or
malformed input: they log a diagnostic and return an empty list.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Callable, Mapping, Sequence

from csvbench.util.logging import log_structured_event

Row = dict[str, str]
QueryFunction = Callable[[str, Mapping[str, str]], Sequence[Mapping[str, str]]]

LOG = logging.getLogger("csvbench.engine")


def normalize_criteria(criteria: Mapping[str, object] | None) -> dict[str, str]:
    if not criteria:
        return {}
    return {str(key): str(value) for key, value in criteria.items()}


def dataset_is_readable(file_path: str | Path, *, engine: str) -> bool:
    path = Path(file_path)
    if path.is_file():
        return True
    log_structured_event(LOG, logging.WARNING, "dataset_missing", engine=engine, path=str(path))
    return False


def query_failed(engine: str, file_path: str | Path, exc: BaseException) -> list[Row]:
    log_structured_event(
        LOG,
        logging.WARNING,
        "query_failed",
        engine=engine,
        path=str(file_path),
        error_type=type(exc).__name__,
        error=str(exc),
    )
    return []


def has_columns(columns: Sequence[str], criteria: Mapping[str, str]) -> bool:
    known = set(columns)
    return all(field in known for field in criteria)
