from __future__ import annotations

import logging
import math
import multiprocessing
from collections.abc import Sized
from contextlib import suppress
from dataclasses import dataclass
from typing import Mapping

from csvbench.bench.memory import current_rss_mb
from csvbench.registry.implementations import ImplementationHandle
from csvbench.util.logging import log_structured_event
from csvbench.util.timing import timed

TRIAL_TIMEOUT_SECONDS = 300.0
TRIAL_STARTUP_TIMEOUT_SECONDS = 60.0
TRIAL_STOP_GRACE_SECONDS = 5.0
DEFAULT_MAX_RETRIES = 3

STATUS_OK = "ok"
STATUS_ERROR = "error"
STATUS_TIMEOUT = "timeout"
_STATUS_READY = "ready"

_REQUEST_QUERY = "query"
_REQUEST_MEMORY = "memory"

LOG = logging.getLogger("csvbench.bench.trial")


@dataclass(frozen=True)
class TrialSample:
    elapsed_time: float
    result_count: int
    error: str | None = None

    @property
    def failed(self) -> bool:
        return not math.isfinite(self.elapsed_time)


def _resolve_query(target):
    if isinstance(target, ImplementationHandle):
        return target.load()
    if isinstance(target, str):
        return ImplementationHandle(target, target).load()
    return target


def _error_text(exc: BaseException) -> str:
    return f"{type(exc).__name__}: {exc}"


def _serve(conn, target) -> None:
    try:
        query_fn = _resolve_query(target)
    except Exception as exc:
        conn.send((STATUS_ERROR, _error_text(exc)))
        conn.close()
        return
    conn.send((_STATUS_READY, None))
    while True:
        try:
            request = conn.recv()
        except EOFError:
            break
        if request is None:
            break
        if request[0] == _REQUEST_MEMORY:
            conn.send((STATUS_OK, current_rss_mb()))
            continue
        _, dataset_file, criteria = request
        try:
            with timed() as timing:
                rows = query_fn(dataset_file, criteria)
                count = len(rows) if isinstance(rows, Sized) else sum(1 for _ in rows)
        except Exception as exc:
            conn.send((STATUS_ERROR, _error_text(exc)))
            continue
        conn.send((STATUS_OK, (timing["seconds"], count)))
    conn.close()


class TrialProcess:
    """Child process hosting one query function.

    Calls run one at a time. A call that outlives its timeout is killed along
    with the process, and the next call starts a fresh one. ``target`` is an
    ``ImplementationHandle``, a ``module:attribute`` string or a picklable
    callable.
    """

    def __init__(self, target, *, name: str | None = None, context=None):
        self.target = target
        self.name = name or getattr(target, "name", None) or getattr(target, "__name__", None) or str(target)
        self._context = context or multiprocessing.get_context()
        self._process = None
        self._conn = None

    @property
    def pid(self) -> int | None:
        return self._process.pid if self._process is not None else None

    def is_alive(self) -> bool:
        return self._process is not None and self._process.is_alive()

    def _start(self) -> str | None:
        parent_conn, child_conn = self._context.Pipe()
        process = self._context.Process(
            target=_serve,
            args=(child_conn, self.target),
            name=f"csvbench-trial-{self.name}",
        )
        process.start()
        child_conn.close()
        self._process, self._conn = process, parent_conn
        if not parent_conn.poll(TRIAL_STARTUP_TIMEOUT_SECONDS):
            self.kill()
            return f"trial process did not start within {TRIAL_STARTUP_TIMEOUT_SECONDS:g}s"
        try:
            status, payload = parent_conn.recv()
        except EOFError:
            exitcode = self.kill()
            return f"trial process exited during startup (exit code {exitcode})"
        if status != _STATUS_READY:
            self.kill()
            return payload
        return None

    def _request(self, message, timeout_seconds: float) -> tuple:
        if not self.is_alive():
            self.kill()
            failure = self._start()
            if failure is not None:
                return STATUS_ERROR, failure
        try:
            self._conn.send(message)
            ready = self._conn.poll(timeout_seconds)
        except OSError as exc:
            exitcode = self.kill()
            return STATUS_ERROR, f"trial process is gone (exit code {exitcode}): {exc}"
        if not ready:
            self.kill()
            return STATUS_TIMEOUT, None
        try:
            return self._conn.recv()
        except EOFError:
            exitcode = self.kill()
            return STATUS_ERROR, f"trial process exited unexpectedly (exit code {exitcode})"

    def call(self, dataset_file, criteria: Mapping[str, str], timeout_seconds: float) -> tuple:
        """Run one query call and return ``(status, payload)``.

        ``payload`` is ``(elapsed_seconds, row_count)`` for ``ok``, the error
        text for ``error`` and ``None`` for ``timeout``.
        """
        return self._request((_REQUEST_QUERY, str(dataset_file), dict(criteria)), timeout_seconds)

    def memory_mb(self) -> float | None:
        """Resident memory of the hosting process, or None when no process is running."""
        if not self.is_alive():
            return None
        status, payload = self._request((_REQUEST_MEMORY,), TRIAL_STOP_GRACE_SECONDS)
        return float(payload) if status == STATUS_OK else None

    def kill(self) -> int | None:
        process, conn = self._process, self._conn
        self._process = self._conn = None
        if conn is not None:
            conn.close()
        if process is None:
            return None
        if process.is_alive():
            process.terminate()
            process.join(TRIAL_STOP_GRACE_SECONDS)
            if process.is_alive():
                process.kill()
        process.join()
        exitcode = process.exitcode
        process.close()
        return exitcode

    def close(self) -> None:
        if self.is_alive():
            with suppress(OSError):
                self._conn.send(None)
            self._process.join(TRIAL_STOP_GRACE_SECONDS)
        self.kill()

    def __enter__(self) -> "TrialProcess":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


def _validated(max_retries, timeout_seconds) -> tuple[int, float]:
    attempts = int(max_retries)
    if attempts < 1:
        raise ValueError("max_retries must be at least 1")
    timeout = float(timeout_seconds)
    if not timeout > 0:
        raise ValueError("timeout_seconds must be positive")
    return attempts, timeout


def run_trial(
    implementation,
    dataset_file,
    criteria: Mapping[str, str],
    max_retries: int = DEFAULT_MAX_RETRIES,
    *,
    timeout_seconds: float = TRIAL_TIMEOUT_SECONDS,
    name: str | None = None,
) -> TrialSample:
    """Time one query call, retrying on timeout or error.

    ``implementation`` is a running ``TrialProcess`` or anything a
    ``TrialProcess`` accepts as its target; in the latter case a process is
    started for this trial and stopped before returning. Each attempt runs in
    that process, and an attempt that times out is killed before the next one
    starts.

    ``max_retries`` is the total number of attempts. When every attempt fails
    the sample is ``TrialSample(inf, 0)``, carrying the last error text when
    the final attempt raised.
    """
    attempts, timeout = _validated(max_retries, timeout_seconds)
    if isinstance(implementation, TrialProcess):
        return _run_attempts(implementation, dataset_file, criteria, attempts, timeout, name)
    with TrialProcess(implementation, name=name) as process:
        return _run_attempts(process, dataset_file, criteria, attempts, timeout, name)


def _run_attempts(process: TrialProcess, dataset_file, criteria, attempts: int, timeout: float, name) -> TrialSample:
    implementation = name or process.name
    last_error: str | None = None
    for attempt_number in range(1, attempts + 1):
        status, payload = process.call(dataset_file, criteria, timeout)
        if status == STATUS_TIMEOUT:
            last_error = None
            log_structured_event(
                LOG,
                logging.WARNING,
                "trial_timeout",
                implementation=implementation,
                dataset=str(dataset_file),
                attempt=attempt_number,
                max_retries=attempts,
                timeout_seconds=timeout,
            )
            continue
        if status == STATUS_ERROR:
            last_error = payload
            log_structured_event(
                LOG,
                logging.WARNING,
                "trial_error",
                implementation=implementation,
                dataset=str(dataset_file),
                attempt=attempt_number,
                max_retries=attempts,
                error=last_error,
            )
            continue
        elapsed, count = payload
        return TrialSample(elapsed_time=float(elapsed), result_count=int(count))

    log_structured_event(
        LOG,
        logging.WARNING,
        "trial_exhausted",
        implementation=implementation,
        dataset=str(dataset_file),
        attempts=attempts,
        error=last_error,
    )
    return TrialSample(elapsed_time=math.inf, result_count=0, error=last_error)
