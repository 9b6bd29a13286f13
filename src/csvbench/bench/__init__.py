from csvbench.bench.analysis import analyze_results
from csvbench.bench.cache import load_cache, reusable_results, save_cache
from csvbench.bench.matrix import DatasetSummary, ImplementationResult, run_matrix
from csvbench.bench.orchestrator import run_all
from csvbench.bench.report import render, sanitize_for_json
from csvbench.bench.stats import TimingSummary, reliability, summarize
from csvbench.bench.trial import TRIAL_TIMEOUT_SECONDS, TrialProcess, TrialSample, run_trial

__all__ = [
    "TRIAL_TIMEOUT_SECONDS",
    "DatasetSummary",
    "ImplementationResult",
    "TimingSummary",
    "TrialProcess",
    "TrialSample",
    "analyze_results",
    "load_cache",
    "reliability",
    "render",
    "reusable_results",
    "run_all",
    "run_matrix",
    "run_trial",
    "sanitize_for_json",
    "save_cache",
    "summarize",
]
