"""
Analysis module - regression rules and the analyzer.

USAGE:
------
from instrument_bench.analysis import analyze, parse_rule

report = analyze(current, baseline.model, [parse_rule("Ir:+5")])
if report.regressed:
    print(report.failure_reason)
"""

from instrument_bench.analysis.rules import (
    DEFAULT_RULES,
    Direction,
    RegressionRule,
    Severity,
    parse_rule,
    resolve_rules,
)
from instrument_bench.analysis.analyzer import (
    EventRow,
    RegressionReport,
    RegressionStatus,
    RuleOutcome,
    RuleStatus,
    analyze,
)

__all__ = [
    # Rules
    "DEFAULT_RULES",
    "Direction",
    "RegressionRule",
    "Severity",
    "parse_rule",
    "resolve_rules",
    # Analyzer
    "EventRow",
    "RegressionReport",
    "RegressionStatus",
    "RuleOutcome",
    "RuleStatus",
    "analyze",
]
