"""
Benchmark Harness - one case end to end, and batches of cases.

CASE PIPELINE:
--------------
1. Run the target under its tool in a fresh artifact workspace
2. Parse every output file (rerun on TruncatedArtifact, up to
   config.truncated_retries times)
3. Merge the per-process models into one
4. Load the baseline from config.compare_slot
5. Save the new model as `current` (and config.save_slot if set)
6. Analyze against the baseline under the case's rules

ERROR POLICY:
-------------
- ToolNotFound / ConfigurationError halt the whole batch
- Everything else is case-scoped: the case is reported with enough context
  to reproduce it by hand and its siblings keep running

EXIT CODES:
-----------
- 0 = every case passed (or established a first baseline)
- 1 = at least one case regressed
- 2 = no regression, but some case errored, failed to measure, or its
      target exited unexpectedly
"""

from __future__ import annotations

import logging
import time
import uuid
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from functools import reduce
from pathlib import Path
from typing import Any

from instrument_bench.analysis import (
    RegressionReport,
    RegressionRule,
    RegressionStatus,
    analyze,
    resolve_rules,
)
from instrument_bench.baseline import CURRENT_SLOT, BenchmarkId
from instrument_bench.config import HarnessConfig
from instrument_bench.core.errors import (
    ConfigurationError,
    InstrumentBenchError,
    ParseError,
    TruncatedArtifact,
)
from instrument_bench.core.protocols import BaselineStore
from instrument_bench.model import CostModel, ToolId
from instrument_bench.observability import (
    BENCH_CASE_ATTEMPTS,
    BENCH_CASE_STATUS,
    BENCH_REGRESSION_RULE,
    BENCH_REGRESSION_STATUS,
    BENCH_RUN_CASES_COUNT,
    BENCH_RUN_EXIT_CODE,
    BENCH_RUN_ID,
    BENCH_RUN_JOBS,
    BENCH_CASE_ERROR,
    bench_case_attributes,
    get_tracer,
)
from instrument_bench.orchestrator import (
    ArtifactWorkspace,
    ExitWith,
    ToolInvocation,
    ToolRun,
    resolve_tool_binary,
    run_tool,
    terminate_all,
    tool_spec,
)
from instrument_bench.parsers import LogfileParser, parse_artifact, summarize_log

logger = logging.getLogger(__name__)

MAX_DETAIL_LINES = 20


# ---------------------------------------------------------------------------
# DATA MODEL
# ---------------------------------------------------------------------------


class CaseStatus(str, Enum):
    """Outcome of one benchmark case."""

    PASSED = "passed"
    REGRESSED = "regressed"
    NO_BASELINE = "no_baseline"
    TARGET_FAILED = "target_failed"
    MEASUREMENT_UNAVAILABLE = "measurement_unavailable"
    ERROR = "error"


@dataclass
class BenchmarkCase:
    """One target to measure under one tool."""

    id: BenchmarkId
    executable: Path | str
    args: list[str] = field(default_factory=list)
    env: dict[str, str] = field(default_factory=dict)
    env_clear: bool = False
    tool: ToolId = ToolId.CALLGRIND
    rules: tuple[RegressionRule, ...] = ()
    entry_point: str | None = None
    exit_with: ExitWith = field(default_factory=ExitWith.success)
    tool_args: list[str] = field(default_factory=list)
    trace_children: bool = False
    current_dir: Path | None = None
    timeout: float | None = None

    def invocation(self) -> ToolInvocation:
        return ToolInvocation(
            executable=self.executable,
            args=list(self.args),
            tool=self.tool,
            env=dict(self.env),
            env_clear=self.env_clear,
            tool_args=list(self.tool_args),
            entry_point=self.entry_point,
            trace_children=self.trace_children,
            current_dir=self.current_dir,
            timeout=self.timeout,
            exit_with=self.exit_with,
        )


@dataclass
class CaseResult:
    """Result of one case, with the context needed to reproduce failures."""

    benchmark: BenchmarkId
    tool: ToolId
    status: CaseStatus
    duration_ms: float = 0.0
    attempts: int = 0
    report: RegressionReport | None = None
    error: str | None = None
    artifact: str | None = None
    line: int | None = None
    offset: int | None = None
    command: str | None = None
    log_summary: list[str] = field(default_factory=list)
    error_summary: str | None = None
    stderr: str | None = None

    @property
    def summary(self) -> str:
        if self.status == CaseStatus.REGRESSED and self.report is not None:
            return self.report.failure_reason or "regressed"
        if self.error:
            return self.error
        if self.status == CaseStatus.TARGET_FAILED:
            return "target exited unexpectedly"
        if self.status == CaseStatus.NO_BASELINE:
            return "baseline established"
        return "ok"

    def to_dict(self) -> dict[str, Any]:
        return {
            "benchmark": self.benchmark.key,
            "tool": self.tool.value,
            "status": self.status.value,
            "duration_ms": round(self.duration_ms, 3),
            "attempts": self.attempts,
            "error": self.error,
            "artifact": self.artifact,
            "line": self.line,
            "offset": self.offset,
            "command": self.command,
            "log_summary": self.log_summary,
            "error_summary": self.error_summary,
            "stderr": self.stderr,
            "report": self.report.to_dict() if self.report is not None else None,
        }


@dataclass
class BatchReport:
    """All case results of one harness run, in submission order."""

    run_id: str
    timestamp: str
    total_duration_ms: float
    results: list[CaseResult]

    def count(self, *statuses: CaseStatus) -> int:
        return sum(1 for r in self.results if r.status in statuses)

    @property
    def passed_count(self) -> int:
        return self.count(CaseStatus.PASSED, CaseStatus.NO_BASELINE)

    @property
    def regressed_count(self) -> int:
        return self.count(CaseStatus.REGRESSED)

    @property
    def error_count(self) -> int:
        return self.count(
            CaseStatus.ERROR,
            CaseStatus.MEASUREMENT_UNAVAILABLE,
            CaseStatus.TARGET_FAILED,
        )

    @property
    def all_passed(self) -> bool:
        return self.regressed_count == 0 and self.error_count == 0

    @property
    def exit_code(self) -> int:
        if self.regressed_count:
            return 1
        if self.error_count:
            return 2
        return 0

    def to_dict(self) -> dict[str, Any]:
        """Convert to dict for JSON serialization."""
        return {
            "run_id": self.run_id,
            "timestamp": self.timestamp,
            "total_duration_ms": round(self.total_duration_ms, 3),
            "exit_code": self.exit_code,
            "passed": self.passed_count,
            "regressed": self.regressed_count,
            "errors": self.error_count,
            "cases": [r.to_dict() for r in self.results],
        }


# ---------------------------------------------------------------------------
# SINGLE CASE
# ---------------------------------------------------------------------------


def _measure(run: ToolRun, result: CaseResult) -> CostModel:
    """Parse and merge every output file of one run.

    Logs of the error-detecting tools also leave their report body and
    ERROR SUMMARY on the result.
    """
    if tool_spec(run.tool).has_output_file:
        models = [parse_artifact(run.tool, path) for path in run.outputs]
    else:
        parser = LogfileParser(run.tool)
        summaries = [summarize_log(run.tool, path) for path in run.outputs]
        models = [parser.to_model(summary) for summary in summaries]
        body = [line for summary in summaries for line in summary.body]
        result.log_summary = body[:MAX_DETAIL_LINES]
        if len(body) > MAX_DETAIL_LINES:
            result.log_summary.append(f"... {len(body) - MAX_DETAIL_LINES} more lines")
        result.error_summary = "; ".join(
            summary.error_summary for summary in summaries if summary.error_summary
        ) or None
    return reduce(lambda merged, model: merged.merge(model), models)


def _stderr_tail(stderr: str) -> str | None:
    lines = stderr.rstrip().splitlines()
    if not lines:
        return None
    return "\n".join(lines[-MAX_DETAIL_LINES:])


def _case_status(report: RegressionReport) -> CaseStatus:
    if report.status == RegressionStatus.REGRESSED:
        return CaseStatus.REGRESSED
    if report.target_failed:
        return CaseStatus.TARGET_FAILED
    if report.status == RegressionStatus.NO_BASELINE:
        return CaseStatus.NO_BASELINE
    return CaseStatus.PASSED


def run_case(
    case: BenchmarkCase,
    config: HarnessConfig,
    store: BaselineStore,
    default_rules: tuple[RegressionRule, ...] | list[RegressionRule] | None = None,
    valgrind: Path | str | None = None,
) -> CaseResult:
    """
    Measure one case and compare it against its baseline.

    Case-level failures are returned as a CaseResult; only global errors
    (ToolNotFound, ConfigurationError) and KeyboardInterrupt propagate.
    """
    defaults = config.default_rules if default_rules is None else tuple(default_rules)
    rules = resolve_rules(defaults, case.rules)
    attempts_allowed = 1 + config.truncated_retries

    tracer = get_tracer()
    start = time.time()
    result = CaseResult(benchmark=case.id, tool=case.tool, status=CaseStatus.ERROR)

    with tracer.start_span(
        "bench_case", attributes=bench_case_attributes(case.id.key, case.tool.value)
    ) as span:
        try:
            model: CostModel | None = None
            run: ToolRun | None = None
            while model is None:
                result.attempts += 1
                with ArtifactWorkspace(keep=config.keep_artifacts) as workspace:
                    run = run_tool(case.invocation(), config, workspace, valgrind=valgrind)
                    result.command = run.command_line
                    if run.target_failed or not run.outputs:
                        result.stderr = _stderr_tail(run.stderr)
                    if not run.outputs:
                        result.status = CaseStatus.MEASUREMENT_UNAVAILABLE
                        result.error = (
                            "timed out before any output was written"
                            if run.timed_out
                            else "tool produced no output"
                        )
                        break
                    try:
                        model = _measure(run, result)
                    except TruncatedArtifact as e:
                        if result.attempts >= attempts_allowed:
                            raise
                        logger.warning(
                            f"{case.id}: {e}; retrying "
                            f"({result.attempts}/{attempts_allowed - 1} retries)"
                        )

            if model is not None:
                baseline = store.load(case.id, config.compare_slot)
                if run.target_failed:
                    logger.warning(f"{case.id}: target failed, baseline not updated")
                else:
                    store.save(case.id, CURRENT_SLOT, model, command=run.command_line)
                    if config.save_slot and config.save_slot != CURRENT_SLOT:
                        store.save(case.id, config.save_slot, model, command=run.command_line)

                report = analyze(
                    model,
                    baseline.model if baseline is not None else None,
                    rules,
                    target_failed=run.target_failed,
                    benchmark=case.id.key,
                )
                result.report = report
                result.status = _case_status(report)
                if report.first_violation is not None:
                    span.set_attribute(BENCH_REGRESSION_RULE, str(report.first_violation.rule))
                span.set_attribute(BENCH_REGRESSION_STATUS, report.status.value)

        except ConfigurationError:
            raise
        except ParseError as e:
            result.status = CaseStatus.MEASUREMENT_UNAVAILABLE
            result.error = str(e)
            result.artifact = e.source
            result.line = e.line
            result.offset = e.offset
            span.record_exception(e)
        except InstrumentBenchError as e:
            result.status = CaseStatus.ERROR
            result.error = str(e)
            span.record_exception(e)

        result.duration_ms = (time.time() - start) * 1000
        if result.error:
            span.set_attribute(BENCH_CASE_ERROR, result.error)
        span.set_attribute(BENCH_CASE_STATUS, result.status.value)
        span.set_attribute(BENCH_CASE_ATTEMPTS, result.attempts)
        span.set_status(
            "ok" if result.status in (CaseStatus.PASSED, CaseStatus.NO_BASELINE) else "error",
            result.summary,
        )

    log = logger.info if result.status in (CaseStatus.PASSED, CaseStatus.NO_BASELINE) else logger.warning
    log(f"{case.id}: {result.status.value} ({result.summary})")
    return result


# ---------------------------------------------------------------------------
# BATCH
# ---------------------------------------------------------------------------


def check_unique_ids(cases: list[BenchmarkCase]) -> None:
    """
    Raises:
        ConfigurationError: two cases share a benchmark id
    """
    seen: set[str] = set()
    duplicates: list[str] = []
    for case in cases:
        if case.id.key in seen and case.id.key not in duplicates:
            duplicates.append(case.id.key)
        seen.add(case.id.key)
    if duplicates:
        raise ConfigurationError(f"Duplicate benchmark ids: {', '.join(duplicates)}")


def _run_isolated(
    case: BenchmarkCase,
    config: HarnessConfig,
    store: BaselineStore,
    valgrind: Path | str,
) -> CaseResult:
    try:
        return run_case(case, config, store, valgrind=valgrind)
    except ConfigurationError:
        raise
    except Exception as e:
        logger.exception(f"{case.id}: unexpected error")
        return CaseResult(
            benchmark=case.id,
            tool=case.tool,
            status=CaseStatus.ERROR,
            error=f"unexpected error: {e}",
        )


def run_batch(
    cases: list[BenchmarkCase],
    config: HarnessConfig,
    store: BaselineStore,
    valgrind: Path | str | None = None,
) -> BatchReport:
    """
    Run every case, `config.jobs` at a time.

    Raises:
        ToolNotFound: valgrind is missing (checked once, before any case runs)
        ConfigurationError: duplicate benchmark ids, or any other global error
    """
    check_unique_ids(cases)
    valgrind = valgrind or resolve_tool_binary(config)

    tracer = get_tracer()
    run_id = str(uuid.uuid4())
    root_attrs = {
        BENCH_RUN_ID: run_id,
        BENCH_RUN_CASES_COUNT: len(cases),
        BENCH_RUN_JOBS: config.jobs,
    }

    with tracer.start_span("bench_run", attributes=root_attrs) as root_span:
        start = time.time()
        logger.info(f"Running {len(cases)} case(s) with {config.jobs} job(s)")

        if config.jobs == 1:
            results = [_run_isolated(case, config, store, valgrind) for case in cases]
        else:
            with ThreadPoolExecutor(max_workers=config.jobs) as executor:
                futures = [
                    executor.submit(_run_isolated, case, config, store, valgrind)
                    for case in cases
                ]
                try:
                    results = [future.result() for future in futures]
                except BaseException:
                    for future in futures:
                        future.cancel()
                    # workers never see Ctrl-C; stop their processes so shutdown can join
                    terminate_all()
                    raise

        report = BatchReport(
            run_id=run_id,
            timestamp=datetime.now().isoformat(),
            total_duration_ms=(time.time() - start) * 1000,
            results=results,
        )
        root_span.set_attribute(BENCH_RUN_EXIT_CODE, report.exit_code)
        root_span.set_status(
            "ok" if report.all_passed else "error",
            f"{report.passed_count} passed, {report.regressed_count} regressed, "
            f"{report.error_count} errors",
        )
        return report
