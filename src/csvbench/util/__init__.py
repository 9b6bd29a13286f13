from __future__ import annotations

from csvbench.util.json import json_dumps, json_loads
from csvbench.util.logging import log_structured_event, new_run_id
from csvbench.util.timing import timed

__all__ = [
    "new_run_id",
    "log_structured_event",
    "timed",
    "json_loads",
    "json_dumps",
]
