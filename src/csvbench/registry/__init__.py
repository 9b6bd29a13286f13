from csvbench.registry.implementations import (
    BUILTIN_IMPLEMENTATIONS,
    ENTRY_POINT_GROUP,
    ImplementationHandle,
    discover_implementations,
    parse_implementation_spec,
)

__all__ = [
    "BUILTIN_IMPLEMENTATIONS",
    "ENTRY_POINT_GROUP",
    "ImplementationHandle",
    "discover_implementations",
    "parse_implementation_spec",
]
