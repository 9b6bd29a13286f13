from csvbench.engine.base import QueryFunction, Row, normalize_criteria

__all__ = ["QueryFunction", "Row", "normalize_criteria"]
