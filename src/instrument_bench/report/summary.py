"""
Batch summary - one line per case plus aggregate counts.

    [PASS] parsers::bench_json[large] (callgrind): ok
    [REGR] parsers::bench_xml (callgrind): Ir changed by +12.3% (rule Ir:+10:fail)
    [ERR!] net::bench_tcp (dhat): line 3: expected an object
    [REGR] alloc::bench_leak (memcheck): Errors changed by +3 (rule Errors:+0:fail)
           error summary: 3 errors from 2 contexts (suppressed: 0 from 0)
           | Invalid read of size 4
    ------------------------------------------------------------
    Total: 1 passed, 2 regressed, 1 errors
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from instrument_bench.harness import BatchReport

_ICONS = {
    "passed": "[PASS]",
    "no_baseline": "[NEW ]",
    "regressed": "[REGR]",
    "target_failed": "[FAIL]",
    "measurement_unavailable": "[N/A ]",
    "error": "[ERR!]",
}

_FAILING = ("regressed", "error", "measurement_unavailable", "target_failed")


def render_batch_summary(batch: BatchReport) -> str:
    lines = []
    for result in batch.results:
        icon = _ICONS[result.status.value]
        lines.append(f"{icon} {result.benchmark.key} ({result.tool.value}): {result.summary}")
        if result.artifact:
            where = result.artifact
            if result.line is not None:
                where += f":{result.line}"
            if result.offset is not None:
                where += f" (byte {result.offset})"
            lines.append(f"       artifact: {where}")
        if result.status.value not in _FAILING:
            continue
        if result.command and result.status.value != "regressed":
            lines.append(f"       command: {result.command}")
        if result.error_summary:
            lines.append(f"       error summary: {result.error_summary}")
        for detail in result.log_summary:
            lines.append(f"       | {detail}")
        if result.stderr:
            lines.append("       stderr:")
            lines.extend(f"       | {line}" for line in result.stderr.splitlines())
    lines.append("-" * 60)
    lines.append(
        f"Total: {batch.passed_count} passed, {batch.regressed_count} regressed, "
        f"{batch.error_count} errors ({batch.total_duration_ms:.0f}ms)"
    )
    return "\n".join(lines) + "\n"
