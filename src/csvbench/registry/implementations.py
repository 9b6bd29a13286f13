from __future__ import annotations

import logging
from dataclasses import dataclass
from importlib import import_module
from importlib.metadata import entry_points
from typing import Iterable, Sequence

from csvbench.engine.base import QueryFunction
from csvbench.errors import ImplementationLoadError
from csvbench.util.deps import module_available
from csvbench.util.logging import log_structured_event

ENTRY_POINT_GROUP = "csvbench.implementations"
SOURCE_BUILTIN = "builtin"
SOURCE_CONFIG = "config"
SOURCE_CLI = "cli"
SOURCE_ENTRY_POINT = "entry_point"

LOG = logging.getLogger("csvbench.registry")


@dataclass(frozen=True)
class ImplementationHandle:
    """One benchmark candidate: a name plus a ``module:attribute`` target.

    Handles only carry strings so they can be shipped to worker processes.
    """

    name: str
    target: str
    requires: tuple[str, ...] = ()
    source: str = SOURCE_BUILTIN

    def load(self) -> QueryFunction:
        module_name, sep, attribute = self.target.partition(":")
        if not sep or not module_name or not attribute:
            raise ImplementationLoadError(f"{self.name}: target must look like 'module:attribute', got {self.target!r}")
        try:
            module = import_module(module_name)
        except ImportError as exc:
            raise ImplementationLoadError(f"{self.name}: cannot import {module_name!r}: {exc}") from exc
        value = module
        for part in attribute.split("."):
            try:
                value = getattr(value, part)
            except AttributeError as exc:
                raise ImplementationLoadError(f"{self.name}: {module_name!r} has no attribute {attribute!r}") from exc
        if not callable(value):
            raise ImplementationLoadError(f"{self.name}: {self.target!r} is not callable")
        return value

    def available(self) -> bool:
        return all(module_available(module_name) for module_name in self.requires)

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "target": self.target,
            "requires": list(self.requires),
            "source": self.source,
        }

    @classmethod
    def from_dict(cls, payload) -> "ImplementationHandle":
        return cls(
            name=str(payload["name"]),
            target=str(payload["target"]),
            requires=tuple(str(item) for item in payload.get("requires", ())),
            source=str(payload.get("source", SOURCE_BUILTIN)),
        )


BUILTIN_IMPLEMENTATIONS = (
    ImplementationHandle("csv_scan", "csvbench.engine.csv_scan:query"),
    ImplementationHandle("polars_scan", "csvbench.engine.polars_scan:query", requires=("polars",)),
    ImplementationHandle("duckdb_scan", "csvbench.engine.duckdb_scan:query", requires=("duckdb",)),
)


def parse_implementation_spec(spec: str, *, source: str = SOURCE_CLI) -> ImplementationHandle:
    name, sep, target = str(spec).partition("=")
    name = name.strip()
    target = target.strip()
    if not sep or not name:
        raise ValueError(f"implementation must look like NAME=module:attribute, got {spec!r}")
    module_name, colon, attribute = target.partition(":")
    if not colon or not module_name.strip() or not attribute.strip():
        raise ValueError(f"implementation target must look like module:attribute, got {target!r}")
    return ImplementationHandle(name=name, target=target, source=source)


def _entry_point_handles() -> list[ImplementationHandle]:
    handles = []
    for entry_point in sorted(entry_points(group=ENTRY_POINT_GROUP), key=lambda item: item.name):
        handles.append(ImplementationHandle(entry_point.name, entry_point.value, source=SOURCE_ENTRY_POINT))
    return handles


def _ordered_unique(candidates: Iterable[ImplementationHandle]) -> list[ImplementationHandle]:
    selected: dict[str, ImplementationHandle] = {}
    for handle in candidates:
        existing = selected.get(handle.name)
        if existing is not None:
            log_structured_event(
                LOG,
                logging.WARNING,
                "implementation_shadowed",
                name=handle.name,
                kept_source=existing.source,
                ignored_source=handle.source,
            )
            continue
        selected[handle.name] = handle
    return list(selected.values())


def discover_implementations(
    *,
    configured: Sequence[tuple[str, str]] = (),
    extra: Sequence[ImplementationHandle] | None = None,
    only: Sequence[str] | None = None,
    include_unavailable: bool = False,
    use_entry_points: bool = True,
) -> tuple[ImplementationHandle, ...]:
    """Return benchmark candidates in discovery order.

    Built-ins come first, then ``configured`` ``(name, target)`` pairs from the
    configuration file, then ``extra`` handles from the command line, then
    installed entry points. The first handle seen for a name wins.
    """
    candidates: list[ImplementationHandle] = list(BUILTIN_IMPLEMENTATIONS)
    candidates.extend(ImplementationHandle(name, target, source=SOURCE_CONFIG) for name, target in configured)
    candidates.extend(extra or ())
    if use_entry_points:
        candidates.extend(_entry_point_handles())
    handles = _ordered_unique(candidates)

    if only is not None:
        wanted = {str(name).strip() for name in only if str(name).strip()}
        unknown = sorted(wanted - {handle.name for handle in handles})
        if unknown:
            log_structured_event(LOG, logging.WARNING, "implementation_unknown", names=unknown)
        handles = [handle for handle in handles if handle.name in wanted]

    if include_unavailable:
        return tuple(handles)
    result = []
    for handle in handles:
        if handle.available():
            result.append(handle)
            continue
        log_structured_event(
            LOG,
            logging.INFO,
            "implementation_unavailable",
            name=handle.name,
            requires=list(handle.requires),
        )
    return tuple(result)
