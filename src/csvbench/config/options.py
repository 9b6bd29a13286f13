from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from pathlib import Path
from types import MappingProxyType
from typing import Any, Mapping

from csvbench.config.loader import SOURCE_OVERRIDE, SOURCE_PACKAGED, load_override, packaged_defaults
from csvbench.datasets import DatasetDefinition
from csvbench.errors import ConfigurationError
from csvbench.util.logging import log_structured_event

_MAX_CONFIG_STRING_LENGTH = 256
_MAX_CONFIG_INT = 10_000_000
_MAX_CONFIG_LIST_ITEMS = 64
VALID_OUTPUT_FORMATS = ("table", "json", "both")
CONFIG_SCHEMA_VERSION = 1
DEFAULT_TEST_SIZES = ("very_small", "small", "medium", "large")
_CONFIG_LOG = logging.getLogger("csvbench.config")


@dataclass(frozen=True)
class BenchmarkOptions:
    parallel: bool = True
    max_processes: int = 3
    iterations: int = 5
    cache_results: bool = True
    verbose: bool = True
    output_format: str = "table"
    test_sizes: tuple[str, ...] = DEFAULT_TEST_SIZES
    cache_file: str = "benchmark_cache.json"
    max_retries: int = 3
    trial_timeout_seconds: float = 300.0
    reuse_cache: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "parallel": self.parallel,
            "max_processes": self.max_processes,
            "iterations": self.iterations,
            "cache_results": self.cache_results,
            "verbose": self.verbose,
            "output_format": self.output_format,
            "test_sizes": list(self.test_sizes),
            "cache_file": self.cache_file,
            "max_retries": self.max_retries,
            "trial_timeout_seconds": self.trial_timeout_seconds,
            "reuse_cache": self.reuse_cache,
        }


@dataclass(frozen=True)
class BenchmarkConfig:
    """Everything a run needs, built once at startup and passed explicitly."""

    options: BenchmarkOptions = field(default_factory=BenchmarkOptions)
    datasets: tuple[DatasetDefinition, ...] = ()
    queries: tuple[Mapping[str, str], ...] = ()
    implementations: tuple[tuple[str, str], ...] = ()
    source: str = "builtin"

    def dataset_paths(self) -> dict[str, Path]:
        return {definition.size: definition.path for definition in self.datasets}

    def selected_datasets(self) -> tuple[DatasetDefinition, ...]:
        wanted = set(self.options.test_sizes)
        return tuple(definition for definition in self.datasets if definition.size in wanted)

    def with_options(self, **changes) -> "BenchmarkConfig":
        return replace(self, options=validate_options(replace(self.options, **changes)))


_BUILTIN_OPTIONS = BenchmarkOptions()


def _to_mapping(value: Any) -> Mapping[str, Any]:
    if isinstance(value, Mapping):
        return value
    return {}


def _parse_positive_int(raw: Any, default: int) -> int:
    if isinstance(raw, bool):
        return int(default)
    try:
        parsed = int(raw)
    except Exception:
        return int(default)
    if parsed <= 0:
        return int(default)
    return min(parsed, _MAX_CONFIG_INT)


def _parse_positive_float(raw: Any, default: float) -> float:
    if isinstance(raw, bool):
        return float(default)
    try:
        parsed = float(raw)
    except Exception:
        return float(default)
    if not parsed > 0 or parsed == float("inf"):
        return float(default)
    return parsed


def _parse_bool(raw: Any, default: bool) -> bool:
    if isinstance(raw, bool):
        return raw
    if isinstance(raw, str):
        value = raw.strip().lower()
        if len(value) > _MAX_CONFIG_STRING_LENGTH:
            return bool(default)
        if value in {"1", "true", "yes", "on"}:
            return True
        if value in {"0", "false", "no", "off"}:
            return False
    return bool(default)


def _parse_choice(raw: Any, default: str, valid_values) -> str:
    if raw is None:
        return str(default)
    value = str(raw).strip().lower()
    if len(value) > _MAX_CONFIG_STRING_LENGTH:
        return str(default)
    return value if value in valid_values else str(default)


def _parse_small_string(raw: Any, default: str) -> str:
    if raw is None:
        return str(default)
    value = str(raw).strip()
    if not value:
        return str(default)
    if len(value) > _MAX_CONFIG_STRING_LENGTH:
        return str(default)
    return value


def _parse_small_string_list(raw: Any, default: tuple[str, ...]) -> tuple[str, ...]:
    if isinstance(raw, str):
        raw = raw.split(",")
    if not isinstance(raw, (list, tuple)):
        return tuple(default)
    result: list[str] = []
    seen: set[str] = set()
    for value in raw:
        if len(result) >= _MAX_CONFIG_LIST_ITEMS:
            break
        item = str(value).strip()
        if not item:
            continue
        if len(item) > _MAX_CONFIG_STRING_LENGTH:
            continue
        if item in seen:
            continue
        seen.add(item)
        result.append(item)
    if not result:
        return tuple(default)
    return tuple(result)


def parse_options(payload: Mapping[str, Any] | None, *, base: BenchmarkOptions | None = None) -> BenchmarkOptions:
    """Leniently parse the ``[options]`` table; invalid values keep the base value."""
    raw = _to_mapping(payload)
    builtin = _BUILTIN_OPTIONS if base is None else base
    return BenchmarkOptions(
        parallel=_parse_bool(raw.get("parallel"), builtin.parallel),
        max_processes=_parse_positive_int(raw.get("max_processes"), builtin.max_processes),
        iterations=_parse_positive_int(raw.get("iterations"), builtin.iterations),
        cache_results=_parse_bool(raw.get("cache_results"), builtin.cache_results),
        verbose=_parse_bool(raw.get("verbose"), builtin.verbose),
        output_format=_parse_choice(raw.get("output_format"), builtin.output_format, VALID_OUTPUT_FORMATS),
        test_sizes=_parse_small_string_list(raw.get("test_sizes"), builtin.test_sizes),
        cache_file=_parse_small_string(raw.get("cache_file"), builtin.cache_file),
        max_retries=_parse_positive_int(raw.get("max_retries"), builtin.max_retries),
        trial_timeout_seconds=_parse_positive_float(
            raw.get("trial_timeout_seconds"),
            builtin.trial_timeout_seconds,
        ),
        reuse_cache=_parse_bool(raw.get("reuse_cache"), builtin.reuse_cache),
    )


def parse_datasets(
    payload: Mapping[str, Any] | None,
    *,
    base: tuple[DatasetDefinition, ...] = (),
    root: Path | None = None,
) -> tuple[DatasetDefinition, ...]:
    """Parse ``[datasets.<size>]`` tables.

    An override replaces definitions with the same size in place and appends
    new sizes, so the configured order stays stable.
    """
    raw = _to_mapping(payload)
    merged: dict[str, DatasetDefinition] = {definition.size: definition for definition in base}
    for size, entry in raw.items():
        size_name = str(size).strip()
        if not size_name:
            continue
        if isinstance(entry, str):
            entry = {"path": entry}
        entry = _to_mapping(entry)
        path_text = entry.get("path")
        if path_text is None or not str(path_text).strip():
            log_structured_event(_CONFIG_LOG, logging.WARNING, "dataset_without_path", size=size_name)
            continue
        path = Path(str(path_text)).expanduser()
        if root is not None and not path.is_absolute():
            path = root / path
        rows_raw = entry.get("rows")
        rows = None if rows_raw is None else _parse_positive_int(rows_raw, 0) or None
        merged[size_name] = DatasetDefinition(size=size_name, path=path, rows=rows)
    return tuple(merged.values())


def parse_queries(payload: Any, *, base: tuple[Mapping[str, str], ...] = ()) -> tuple[Mapping[str, str], ...]:
    if not isinstance(payload, (list, tuple)):
        return tuple(base)
    queries: list[Mapping[str, str]] = []
    for entry in payload:
        if not isinstance(entry, Mapping) or not entry:
            log_structured_event(_CONFIG_LOG, logging.WARNING, "query_ignored", reason="not_a_table")
            continue
        queries.append(MappingProxyType({str(key): str(value) for key, value in entry.items()}))
    if not queries:
        return tuple(base)
    return tuple(queries)


def parse_implementations(payload: Any, *, base: tuple[tuple[str, str], ...] = ()) -> tuple[tuple[str, str], ...]:
    raw = _to_mapping(payload)
    merged = dict(base)
    for name, target in raw.items():
        name_text = str(name).strip()
        target_text = str(target).strip() if isinstance(target, str) else ""
        if not name_text or ":" not in target_text:
            log_structured_event(_CONFIG_LOG, logging.WARNING, "implementation_ignored", name=name_text)
            continue
        merged[name_text] = target_text
    return tuple(merged.items())


def parse_benchmark_config(
    payload: Mapping[str, Any] | None,
    *,
    base: BenchmarkConfig | None = None,
    root: Path | None = None,
    source: str = "builtin",
) -> BenchmarkConfig:
    root_payload = _to_mapping(payload)
    runtime_base = BenchmarkConfig() if base is None else base
    return BenchmarkConfig(
        options=parse_options(root_payload.get("options"), base=runtime_base.options),
        datasets=parse_datasets(root_payload.get("datasets"), base=runtime_base.datasets, root=root),
        queries=parse_queries(root_payload.get("queries"), base=runtime_base.queries),
        implementations=parse_implementations(
            root_payload.get("implementations"),
            base=runtime_base.implementations,
        ),
        source=source,
    )


def _schema_version(payload: Mapping[str, Any]) -> int | None:
    meta = _to_mapping(payload.get("meta"))
    raw = meta.get("schema_version")
    if raw is None:
        return None
    try:
        return int(raw)
    except Exception:
        return None


def _schema_status(payload: Mapping[str, Any], *, require_schema: bool) -> tuple[bool, str]:
    version = _schema_version(payload)
    if version is None:
        if require_schema:
            return False, "missing"
        return True, "absent"
    if version != int(CONFIG_SCHEMA_VERSION):
        return False, "mismatch"
    return True, "ok"


def load_benchmark_config(config_path: str | Path | None = None) -> BenchmarkConfig:
    """Build the run configuration from packaged defaults plus an optional override.

    An explicit ``config_path`` that cannot be loaded is a configuration
    failure; the ``CSVBENCH_CONFIG_PATH`` override and the packaged file only
    degrade to the previous layer.
    """
    packaged = packaged_defaults()
    config = BenchmarkConfig()
    schema_state = "missing"
    if packaged.ok:
        ok, schema_state = _schema_status(packaged.payload, require_schema=True)
        if ok:
            config = parse_benchmark_config(packaged.payload, source=SOURCE_PACKAGED)
    if config.source == "builtin":
        log_structured_event(
            _CONFIG_LOG,
            logging.WARNING,
            "config_source",
            source="builtin",
            error_kind=packaged.error_kind,
            schema_status=schema_state,
        )

    override = load_override(config_path)
    if override is not None:
        if not override.ok:
            if config_path is not None:
                raise ConfigurationError(
                    f"cannot load configuration file {override.path}: {override.error_kind}"
                )
            log_structured_event(
                _CONFIG_LOG,
                logging.WARNING,
                "config_override_ignored",
                path=override.path,
                error_kind=override.error_kind,
            )
        else:
            ok, schema_state = _schema_status(override.payload, require_schema=False)
            if not ok:
                raise ConfigurationError(
                    f"configuration file {override.path} has schema_version "
                    f"{_schema_version(override.payload)}, expected {CONFIG_SCHEMA_VERSION}"
                )
            config = parse_benchmark_config(override.payload, base=config, source=SOURCE_OVERRIDE)

    log_structured_event(
        _CONFIG_LOG,
        logging.DEBUG,
        "config_source",
        source=config.source,
        schema_status=schema_state,
        datasets=len(config.datasets),
        queries=len(config.queries),
    )
    return config


def validate_options(options: BenchmarkOptions) -> BenchmarkOptions:
    """Strict validation for values coming from the command line."""
    for name in ("max_processes", "iterations", "max_retries"):
        value = getattr(options, name)
        if not isinstance(value, int) or isinstance(value, bool) or value <= 0:
            raise ConfigurationError(f"{name} must be a positive integer")
    timeout = options.trial_timeout_seconds
    if isinstance(timeout, bool) or not isinstance(timeout, (int, float)) or not 0 < timeout < float("inf"):
        raise ConfigurationError("trial_timeout_seconds must be a positive number")
    if options.output_format not in VALID_OUTPUT_FORMATS:
        choices = ", ".join(VALID_OUTPUT_FORMATS)
        raise ConfigurationError(f"output_format must be one of: {choices}")
    if not options.test_sizes:
        raise ConfigurationError("test_sizes must name at least one dataset size")
    if not str(options.cache_file).strip():
        raise ConfigurationError("cache_file must not be empty")
    return options


def validate_config(config: BenchmarkConfig) -> BenchmarkConfig:
    validate_options(config.options)
    known = [definition.size for definition in config.datasets]
    unknown = [size for size in config.options.test_sizes if size not in known]
    if unknown:
        raise ConfigurationError(
            "unknown dataset size(s): " + ", ".join(unknown) + "; configured: " + ", ".join(known)
        )
    if not config.queries:
        raise ConfigurationError("at least one query must be configured")
    return config
