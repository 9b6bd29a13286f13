"""Command line entry point: ``csvbench`` / ``python -m csvbench``."""

from __future__ import annotations

import argparse
import logging
import sys
import time
from pathlib import Path

from rich.console import Console
from rich.progress import Progress

from csvbench._version import VERSION
from csvbench.bench.analysis import analyze_results
from csvbench.bench.cache import load_cache, reusable_results, save_cache
from csvbench.bench.memory import current_rss_mb
from csvbench.bench.orchestrator import run_all
from csvbench.bench.report import build_json_report, render
from csvbench.config.options import VALID_OUTPUT_FORMATS, BenchmarkConfig, load_benchmark_config, validate_config
from csvbench.datasets import ensure_datasets
from csvbench.errors import ConfigurationError
from csvbench.registry.implementations import discover_implementations, parse_implementation_spec
from csvbench.util.json import json_dumps
from csvbench.util.logging import log_structured_event, new_run_id

SUCCESS_EXIT_CODE = 0
FAIL_EXIT_CODE = 1

LOG = logging.getLogger("csvbench.cli")


class _ArgumentParser(argparse.ArgumentParser):
    def error(self, message):
        raise ConfigurationError(message)


def _csv_tokens(text: str | None) -> list[str]:
    if text is None:
        return []
    return [token.strip() for token in str(text).split(",") if token.strip()]


def build_parser() -> argparse.ArgumentParser:
    parser = _ArgumentParser(prog="csvbench", description="Benchmark CSV query implementations.")
    parser.add_argument("--version", action="version", version=f"%(prog)s {VERSION}")
    parser.add_argument(
        "-p",
        "--parallel",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Run implementations in parallel worker processes.",
    )
    parser.add_argument("-n", "--processes", type=int, default=None, help="Maximum number of worker processes.")
    parser.add_argument("-i", "--iterations", type=int, default=None, help="Iterations per query and dataset.")
    parser.add_argument(
        "-c",
        "--cache",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Write results to the cache file.",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Show progress and informational logs.",
    )
    parser.add_argument("-f", "--format", choices=VALID_OUTPUT_FORMATS, default=None, help="Report format.")
    parser.add_argument("-s", "--sizes", default=None, help="Comma-separated dataset sizes to test.")
    parser.add_argument("--cache-file", default=None, help="Cache file path.")
    parser.add_argument("--config", default=None, help="TOML file overriding the packaged defaults.")
    parser.add_argument(
        "--implementations",
        default=None,
        help="Comma-separated implementation names to benchmark (default: all available).",
    )
    parser.add_argument(
        "--add-implementation",
        action="append",
        default=[],
        metavar="NAME=MODULE:ATTR",
        help="Register an extra implementation; repeatable.",
    )
    parser.add_argument(
        "--list-implementations",
        action="store_true",
        help="List discovered implementations and exit.",
    )
    parser.add_argument(
        "--reuse-cache",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Reuse cached results that cover every requested size instead of re-running.",
    )
    parser.add_argument("--max-retries", type=int, default=None, help="Attempts per trial.")
    parser.add_argument("--timeout", type=float, default=None, help="Per-attempt timeout in seconds.")
    parser.add_argument(
        "--generate-missing",
        action="store_true",
        help="Generate missing dataset files before running.",
    )
    parser.add_argument("--json-out", default=None, help="Also write the JSON report to this path.")
    return parser


def _option_changes(args: argparse.Namespace) -> dict:
    changes = {
        "parallel": args.parallel,
        "max_processes": args.processes,
        "iterations": args.iterations,
        "cache_results": args.cache,
        "verbose": args.verbose,
        "output_format": args.format,
        "cache_file": args.cache_file,
        "max_retries": args.max_retries,
        "trial_timeout_seconds": args.timeout,
        "reuse_cache": args.reuse_cache,
    }
    if args.sizes is not None:
        changes["test_sizes"] = tuple(_csv_tokens(args.sizes))
    return {key: value for key, value in changes.items() if value is not None}


def resolve_config(args: argparse.Namespace, config: BenchmarkConfig) -> BenchmarkConfig:
    return validate_config(config.with_options(**_option_changes(args)))


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.INFO if verbose else logging.WARNING,
        stream=sys.stderr,
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
    )


def _discover(args: argparse.Namespace, config: BenchmarkConfig, *, include_unavailable: bool = False):
    try:
        extra = [parse_implementation_spec(spec) for spec in args.add_implementation]
    except ValueError as exc:
        raise ConfigurationError(str(exc)) from exc
    only = _csv_tokens(args.implementations) if args.implementations is not None else None
    return discover_implementations(
        configured=config.implementations,
        extra=extra,
        only=only,
        include_unavailable=include_unavailable,
    )


def _list_implementations(args: argparse.Namespace, config: BenchmarkConfig, console: Console) -> int:
    for handle in _discover(args, config, include_unavailable=True):
        state = "available" if handle.available() else "missing " + ", ".join(handle.requires)
        console.print(f"{handle.name}  {handle.target}  ({handle.source}, {state})", highlight=False, markup=False)
    return SUCCESS_EXIT_CODE


def _run_with_progress(handles, config: BenchmarkConfig, err_console: Console):
    options = config.options
    if options.parallel or not options.verbose:
        return run_all(handles, config.datasets, config.queries, options)
    with Progress(console=err_console, transient=True) as progress:
        tasks: dict[str, int] = {}

        def on_progress(name: str, current: int, total: int) -> None:
            if name not in tasks:
                tasks[name] = progress.add_task(f"Testing {name}", total=total)
            progress.update(tasks[name], completed=current)

        return run_all(handles, config.datasets, config.queries, options, progress=on_progress)


def _log_memory_usage(run_id: str, phase: str) -> None:
    rss_mb = round(current_rss_mb(), 2)
    log_structured_event(LOG, logging.INFO, "memory_usage", run_id=run_id, phase=phase, rss_mb=rss_mb)


def run(argv=None, *, console: Console | None = None, err_console: Console | None = None) -> int:
    console = console or Console(highlight=False)
    err_console = err_console or Console(stderr=True, highlight=False)
    started = time.perf_counter()
    try:
        args = build_parser().parse_args(argv)
        config = load_benchmark_config(args.config)
        verbose = config.options.verbose if args.verbose is None else args.verbose
        _configure_logging(verbose)
        if args.list_implementations:
            return _list_implementations(args, config, console)
        config = resolve_config(args, config)
        handles = _discover(args, config)
        if not handles:
            raise ConfigurationError("no implementations discovered")
    except ConfigurationError as exc:
        err_console.print(f"csvbench: configuration error: {exc}", highlight=False, markup=False)
        return FAIL_EXIT_CODE

    options = config.options
    run_id = new_run_id("bench")
    log_structured_event(
        LOG,
        logging.INFO,
        "run_started",
        run_id=run_id,
        implementations=[handle.name for handle in handles],
        config_source=config.source,
        **options.to_dict(),
    )
    _log_memory_usage(run_id, "start")
    if args.generate_missing:
        ensure_datasets(config.selected_datasets())

    cache = load_cache(options.cache_file) if options.cache_results or options.reuse_cache else {}
    reused = reusable_results(cache, handles, options.test_sizes) if options.reuse_cache else {}
    if reused:
        log_structured_event(LOG, logging.INFO, "cache_reused", run_id=run_id, implementations=sorted(reused))
    pending = [handle for handle in handles if handle.name not in reused]
    fresh = dict(_run_with_progress(pending, config, err_console)) if pending else {}
    _log_memory_usage(run_id, "tests_completion")
    results = [(handle.name, reused.get(handle.name) or fresh[handle.name]) for handle in handles]

    analysis = analyze_results(results, options.test_sizes)
    render(results, analysis, options, config.datasets, console=console, stream=console.file)
    if args.json_out:
        out = Path(args.json_out)
        out.parent.mkdir(parents=True, exist_ok=True)
        out.write_text(json_dumps(build_json_report(results, analysis, options), pretty=True) + "\n", encoding="utf-8")
    if options.cache_results:
        save_cache(options.cache_file, results)

    elapsed = time.perf_counter() - started
    log_structured_event(
        LOG,
        logging.INFO,
        "run_completed",
        run_id=run_id,
        seconds=round(elapsed, 3),
        failed=[name for name, result in results if not result.ok],
    )
    _log_memory_usage(run_id, "end")
    err_console.print(f"Total execution time: {elapsed:.2f} seconds", highlight=False)
    return SUCCESS_EXIT_CODE


def main(argv=None) -> int:
    return run(argv)


if __name__ == "__main__":
    raise SystemExit(main())
