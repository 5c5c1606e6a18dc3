"""
Regression analyzer - compares a current CostModel against a baseline.

The analyzer:
1. Rejects models from different tools (usage error)
2. Builds one row per event kind present on either side
3. Evaluates EVERY rule in declaration order (no early exit)
4. Records the first violated fail rule as the reason for "regressed"

A missing baseline is not a failure: the report says "no_baseline" and
the caller establishes one.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from instrument_bench.analysis.rules import RegressionRule, Severity
from instrument_bench.core.errors import ToolMismatchError
from instrument_bench.model import CostDiff, CostModel, Costs, EventKind, ToolId

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# REPORT DATA MODEL
# ---------------------------------------------------------------------------


class RegressionStatus(str, Enum):
    OK = "ok"
    REGRESSED = "regressed"
    NO_BASELINE = "no_baseline"


class RuleStatus(str, Enum):
    OK = "ok"
    VIOLATED = "violated"
    SKIPPED = "skipped"


@dataclass
class RuleOutcome:
    """Result of evaluating one rule."""

    rule: RegressionRule
    status: RuleStatus
    diff_pct: float | None = None

    @property
    def violated(self) -> bool:
        return self.status == RuleStatus.VIOLATED


@dataclass
class EventRow:
    """One event kind of the comparison."""

    kind: EventKind
    old: int | None
    new: int | None
    diff_pct: float | None = None
    factor: float | None = None
    verdict: str = "-"


@dataclass
class RegressionReport:
    """Everything needed for CI gating and for the human table."""

    tool: ToolId
    status: RegressionStatus
    rows: list[EventRow]
    outcomes: list[RuleOutcome] = field(default_factory=list)
    first_violation: RuleOutcome | None = None
    target_failed: bool = False
    benchmark: str | None = None

    @property
    def passed(self) -> bool:
        return self.status != RegressionStatus.REGRESSED and not self.target_failed

    @property
    def regressed(self) -> bool:
        return self.status == RegressionStatus.REGRESSED

    @property
    def warnings(self) -> list[RuleOutcome]:
        return [o for o in self.outcomes if o.violated and o.rule.severity == Severity.WARN]

    @property
    def failure_reason(self) -> str | None:
        if self.first_violation is not None:
            outcome = self.first_violation
            pct = outcome.diff_pct
            delta = "+inf%" if pct is not None and math.isinf(pct) else f"{pct:+.1f}%"
            return f"{outcome.rule.kind.value} changed by {delta} (rule {outcome.rule})"
        if self.target_failed:
            return "target exited unexpectedly"
        return None

    def row(self, kind: EventKind) -> EventRow | None:
        for row in self.rows:
            if row.kind == kind:
                return row
        return None

    def to_dict(self) -> dict[str, Any]:
        """Machine readable report. Unbounded deltas are written as "inf"."""
        return {
            "benchmark": self.benchmark,
            "tool": self.tool.value,
            "status": self.status.value,
            "passed": self.passed,
            "target_failed": self.target_failed,
            "failure_reason": self.failure_reason,
            "events": [
                {
                    "kind": row.kind.value,
                    "old": row.old,
                    "new": row.new,
                    "diff_pct": _json_pct(row.diff_pct),
                    "factor": _json_pct(row.factor),
                    "verdict": row.verdict,
                }
                for row in self.rows
            ],
            "rules": [
                {
                    "rule": str(outcome.rule),
                    "status": outcome.status.value,
                    "diff_pct": _json_pct(outcome.diff_pct),
                }
                for outcome in self.outcomes
            ],
        }


def _json_pct(value: float | None) -> float | str | None:
    if value is None:
        return None
    if math.isinf(value):
        return "inf" if value > 0 else "-inf"
    return round(value, 6)


# ---------------------------------------------------------------------------
# CORE ANALYSIS
# ---------------------------------------------------------------------------


def analyze(
    current: CostModel,
    baseline: CostModel | None,
    rules: list[RegressionRule] | tuple[RegressionRule, ...],
    target_failed: bool = False,
    benchmark: str | None = None,
) -> RegressionReport:
    """
    Compare `current` against `baseline` under `rules`.

    Args:
        current: the model of this run
        baseline: the stored model, or None on the first run
        rules: ordered rules; all of them are evaluated
        target_failed: propagated verbatim to the report
        benchmark: benchmark key for the report

    Returns:
        RegressionReport

    Raises:
        ToolMismatchError: the models come from different tools
    """
    if baseline is not None and baseline.tool != current.tool:
        raise ToolMismatchError(current.tool.value, baseline.tool.value)

    old_totals = baseline.totals if baseline is not None else Costs()
    view = current.totals.factor_view(old_totals)
    rows = [
        EventRow(kind=kind, old=diff.old, new=diff.new, diff_pct=diff.diff_pct, factor=diff.factor)
        for kind, diff in view.items()
    ]

    if baseline is None:
        outcomes = [RuleOutcome(rule=rule, status=RuleStatus.SKIPPED) for rule in rules]
        return RegressionReport(
            tool=current.tool,
            status=RegressionStatus.NO_BASELINE,
            rows=rows,
            outcomes=outcomes,
            target_failed=target_failed,
            benchmark=benchmark,
        )

    outcomes = [_evaluate(rule, view.get(rule.kind)) for rule in rules]
    first_violation = next(
        (o for o in outcomes if o.violated and o.rule.severity == Severity.FAIL),
        None,
    )
    _apply_verdicts(rows, outcomes)

    status = RegressionStatus.REGRESSED if first_violation else RegressionStatus.OK
    if first_violation is not None:
        logger.info(f"{benchmark or current.tool.value}: regressed, {first_violation.rule}")
    return RegressionReport(
        tool=current.tool,
        status=status,
        rows=rows,
        outcomes=outcomes,
        first_violation=first_violation,
        target_failed=target_failed,
        benchmark=benchmark,
    )


def _evaluate(rule: RegressionRule, diff: CostDiff | None) -> RuleOutcome:
    if diff is None or diff.diff_pct is None:
        return RuleOutcome(rule=rule, status=RuleStatus.SKIPPED)
    status = RuleStatus.VIOLATED if rule.is_violated(diff.diff_pct) else RuleStatus.OK
    return RuleOutcome(rule=rule, status=status, diff_pct=diff.diff_pct)


_VERDICT_RANK = {"-": 0, "ok": 1, "warn": 2, "REGRESSED": 3}


def _apply_verdicts(rows: list[EventRow], outcomes: list[RuleOutcome]) -> None:
    """Worst rule outcome per kind: REGRESSED > warn > ok > no rule."""
    by_kind = {row.kind: row for row in rows}
    for outcome in outcomes:
        row = by_kind.get(outcome.rule.kind)
        if row is None or outcome.status == RuleStatus.SKIPPED:
            continue
        if not outcome.violated:
            verdict = "ok"
        elif outcome.rule.severity == Severity.FAIL:
            verdict = "REGRESSED"
        else:
            verdict = "warn"
        if _VERDICT_RANK[verdict] > _VERDICT_RANK[row.verdict]:
            row.verdict = verdict
