from __future__ import annotations

import resource
import sys

from csvbench.util.deps import optional_psutil

_BYTES_PER_MB = 1024 * 1024


def current_rss_bytes() -> int | None:
    """Resident set size of this process.

    Falls back to the peak RSS from ``getrusage`` when psutil is missing.
    """
    psutil = optional_psutil()
    if psutil is not None:
        try:
            return int(psutil.Process().memory_info().rss)
        except Exception:
            pass
    try:
        usage = resource.getrusage(resource.RUSAGE_SELF)
        value = int(getattr(usage, "ru_maxrss", 0))
    except Exception:
        return None
    if value <= 0:
        return None
    if sys.platform == "darwin":
        return value
    return value * 1024


def current_rss_mb() -> float:
    value = current_rss_bytes()
    if value is None:
        return 0.0
    return value / _BYTES_PER_MB
