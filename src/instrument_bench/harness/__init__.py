"""
Harness module - runs benchmark cases and batches.

- runner.py: run_case / run_batch, CaseResult, BatchReport
- suite.py: TOML suite files validated with pydantic
"""

from instrument_bench.harness.runner import (
    BatchReport,
    BenchmarkCase,
    CaseResult,
    CaseStatus,
    check_unique_ids,
    run_batch,
    run_case,
)
from instrument_bench.harness.suite import (
    SuiteCase,
    SuiteDefaults,
    SuiteDocument,
    load_suite,
    parse_suite,
)

__all__ = [
    # Runner
    "BatchReport",
    "BenchmarkCase",
    "CaseResult",
    "CaseStatus",
    "check_unique_ids",
    "run_batch",
    "run_case",
    # Suite
    "SuiteCase",
    "SuiteDefaults",
    "SuiteDocument",
    "load_suite",
    "parse_suite",
]
