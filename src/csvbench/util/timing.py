from __future__ import annotations

from contextlib import contextmanager
from time import perf_counter


@contextmanager
def timed(clock=perf_counter):
    """Measure the wall-clock duration of the ``with`` body.

    The yielded mapping gets ``seconds`` once the body exits, also when it
    raises.
    """
    start = clock()
    payload = {"seconds": 0.0}
    try:
        yield payload
    finally:
        payload["seconds"] = clock() - start
