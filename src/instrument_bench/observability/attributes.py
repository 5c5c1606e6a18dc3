"""
Semantic Conventions for Span Attributes

Custom `bench.*` namespace for batch, case and tool spans.
"""

from __future__ import annotations

# ---------------------------------------------------------------------------
# BATCH LEVEL
# ---------------------------------------------------------------------------

BENCH_RUN_ID = "bench.run.id"  # UUID for correlation
BENCH_RUN_CASES_COUNT = "bench.run.cases_count"
BENCH_RUN_JOBS = "bench.run.jobs"
BENCH_RUN_EXIT_CODE = "bench.run.exit_code"


# ---------------------------------------------------------------------------
# CASE LEVEL
# ---------------------------------------------------------------------------

BENCH_CASE_ID = "bench.case.id"  # "parsers::bench_json[large]"
BENCH_CASE_STATUS = "bench.case.status"  # "passed", "regressed", ...
BENCH_CASE_ERROR = "bench.case.error"
BENCH_CASE_ATTEMPTS = "bench.case.attempts"


# ---------------------------------------------------------------------------
# TOOL LEVEL
# ---------------------------------------------------------------------------

BENCH_TOOL = "bench.tool"  # "callgrind", "dhat", ...
BENCH_TOOL_EXIT_CODE = "bench.tool.exit_code"
BENCH_TARGET_EXIT_CODE = "bench.target.exit_code"
BENCH_TARGET_TIMED_OUT = "bench.target.timed_out"
BENCH_ARTIFACT_COUNT = "bench.artifact.count"


# ---------------------------------------------------------------------------
# ANALYSIS LEVEL
# ---------------------------------------------------------------------------

BENCH_REGRESSION_STATUS = "bench.regression.status"
BENCH_REGRESSION_RULE = "bench.regression.rule"  # first violated fail rule


# ---------------------------------------------------------------------------
# HELPER FUNCTIONS
# ---------------------------------------------------------------------------


def bench_case_attributes(
    case_id: str,
    tool: str,
    status: str | None = None,
    error: str | None = None,
) -> dict:
    """Create attributes dict for a benchmark case span."""
    attrs = {
        BENCH_CASE_ID: case_id,
        BENCH_TOOL: tool,
    }
    if status is not None:
        attrs[BENCH_CASE_STATUS] = status
    if error:
        attrs[BENCH_CASE_ERROR] = error
    return attrs


def tool_run_attributes(
    tool: str,
    tool_exit_code: int | None,
    target_exit_code: int | None,
    timed_out: bool,
    artifact_count: int,
) -> dict:
    """Create attributes dict for a finished tool run."""
    attrs = {
        BENCH_TOOL: tool,
        BENCH_TARGET_TIMED_OUT: timed_out,
        BENCH_ARTIFACT_COUNT: artifact_count,
    }
    if tool_exit_code is not None:
        attrs[BENCH_TOOL_EXIT_CODE] = tool_exit_code
    if target_exit_code is not None:
        attrs[BENCH_TARGET_EXIT_CODE] = target_exit_code
    return attrs
