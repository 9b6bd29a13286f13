from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Iterable, Mapping, Sequence

from csvbench.bench.matrix import ImplementationResult
from csvbench.bench.report import sanitize_for_json
from csvbench.registry.implementations import ImplementationHandle
from csvbench.util.json import json_dumps, json_loads
from csvbench.util.logging import log_structured_event

LOG = logging.getLogger("csvbench.bench.cache")


def load_cache(path: str | Path) -> dict[str, Any]:
    """Read the cache file; a missing or unusable file is an empty cache."""
    target = Path(path)
    if not target.exists():
        return {}
    try:
        payload = json_loads(target.read_bytes())
    except (OSError, ValueError) as exc:
        log_structured_event(
            LOG,
            logging.WARNING,
            "cache_load_failed",
            path=str(target),
            error_type=type(exc).__name__,
            error=str(exc),
        )
        return {}
    if not isinstance(payload, dict):
        log_structured_event(
            LOG,
            logging.WARNING,
            "cache_load_failed",
            path=str(target),
            error_type="invalid_shape",
        )
        return {}
    return payload


def _as_pairs(results) -> Iterable[tuple[str, Any]]:
    if isinstance(results, Mapping):
        return results.items()
    return results


def save_cache(path: str | Path, results) -> Path:
    """Overwrite the cache file with ``results``.

    ``results`` is a mapping or a sequence of ``(name, result)`` pairs where
    each result is an ``ImplementationResult`` or its ``to_dict()`` form.
    """
    document: dict[str, Any] = {}
    for name, result in _as_pairs(results):
        document[str(name)] = result.to_dict() if isinstance(result, ImplementationResult) else result
    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(json_dumps(sanitize_for_json(document), pretty=True) + "\n", encoding="utf-8")
    log_structured_event(LOG, logging.INFO, "cache_saved", path=str(target), implementations=len(document))
    return target


def reusable_results(
    cache: Mapping[str, Any],
    handles: Sequence[ImplementationHandle],
    test_sizes: Sequence[str],
) -> dict[str, ImplementationResult]:
    """Cached, error-free results that cover every requested dataset size."""
    reusable: dict[str, ImplementationResult] = {}
    for handle in handles:
        entry = cache.get(handle.name)
        if not isinstance(entry, Mapping) or entry.get("error") is not None:
            continue
        datasets = entry.get("datasets")
        if not isinstance(datasets, Mapping) or not all(size in datasets for size in test_sizes):
            continue
        try:
            result = ImplementationResult.from_dict(handle.name, entry)
        except (KeyError, TypeError, ValueError) as exc:
            log_structured_event(
                LOG,
                logging.WARNING,
                "cache_entry_ignored",
                implementation=handle.name,
                error=f"{type(exc).__name__}: {exc}",
            )
            continue
        reusable[handle.name] = result
    return reusable
