from csvbench.config.loader import (
    CONFIG_PATH_ENV_VAR,
    ConfigDocument,
    load_override,
    packaged_defaults,
    read_config_file,
    resolve_override_path,
)
from csvbench.config.options import (
    CONFIG_SCHEMA_VERSION,
    VALID_OUTPUT_FORMATS,
    BenchmarkConfig,
    BenchmarkOptions,
    load_benchmark_config,
    parse_benchmark_config,
    parse_options,
    validate_config,
    validate_options,
)

__all__ = [
    "CONFIG_PATH_ENV_VAR",
    "CONFIG_SCHEMA_VERSION",
    "VALID_OUTPUT_FORMATS",
    "BenchmarkConfig",
    "BenchmarkOptions",
    "ConfigDocument",
    "load_benchmark_config",
    "load_override",
    "packaged_defaults",
    "parse_benchmark_config",
    "parse_options",
    "read_config_file",
    "resolve_override_path",
    "validate_config",
    "validate_options",
]
