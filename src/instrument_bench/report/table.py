"""
Human readable comparison table.

    parsers::bench_json  callgrind  REGRESSED
      Event               Old           New     Delta        Verdict
      Instructions        1000          1100    +10.0%       REGRESSED
      L1 Hits             N/A           1020    -            -
"""

from __future__ import annotations

import math

from instrument_bench.analysis import RegressionReport, RegressionStatus

_COLUMNS = ("Event", "Old", "New", "Delta", "Verdict")


def format_delta(pct: float | None) -> str:
    """`+10.0%`, `-3.5%`, `No change`, `+inf%`; `-` when not comparable."""
    if pct is None:
        return "-"
    if pct == 0:
        return "No change"
    if math.isinf(pct):
        return "+inf%" if pct > 0 else "-inf%"
    return f"{pct:+.1f}%"


def _value(value: int | None) -> str:
    return "N/A" if value is None else str(value)


def render_table(report: RegressionReport) -> str:
    """One row per event kind: old, new, delta%, verdict. No colors."""
    status = {
        RegressionStatus.OK: "ok",
        RegressionStatus.REGRESSED: "REGRESSED",
        RegressionStatus.NO_BASELINE: "no baseline",
    }[report.status]
    title = f"{report.benchmark}  {report.tool.value}" if report.benchmark else report.tool.value
    if report.target_failed:
        status += " (target failed)"

    rows = [
        (row.kind.label, _value(row.old), _value(row.new), format_delta(row.diff_pct), row.verdict)
        for row in report.rows
    ]
    widths = [
        max([len(column)] + [len(row[i]) for row in rows]) for i, column in enumerate(_COLUMNS)
    ]

    def line(cells: tuple[str, ...]) -> str:
        label, *rest = cells
        parts = [label.ljust(widths[0])]
        parts += [cell.rjust(widths[i + 1]) for i, cell in enumerate(rest[:-1])]
        parts.append(rest[-1].ljust(widths[-1]))
        return ("  " + "  ".join(parts)).rstrip()

    lines = [f"{title}  {status}", line(_COLUMNS)]
    lines.extend(line(row) for row in rows)
    for outcome in report.warnings:
        lines.append(f"  warning: {outcome.rule} violated ({format_delta(outcome.diff_pct)})")
    if report.first_violation is not None:
        lines.append(f"  regression: {report.failure_reason}")
    return "\n".join(lines) + "\n"
