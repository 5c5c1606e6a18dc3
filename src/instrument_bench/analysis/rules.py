"""
Regression rules - what counts as a regression for one event kind.

Rule syntax on the command line and in suite files:

    Ir:+5          instructions may grow at most 5% (fail)
    EstimatedCycles:10:warn
                   cycles may move at most 10% either way (warn)
    TotalBytes:-2  allocated bytes may shrink at most 2%
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from enum import Enum

from instrument_bench.core.errors import ConfigurationError
from instrument_bench.model import EventKind


class Direction(str, Enum):
    INCREASE = "increase"
    DECREASE = "decrease"
    EITHER = "either"


class Severity(str, Enum):
    WARN = "warn"
    FAIL = "fail"


@dataclass(frozen=True)
class RegressionRule:
    """A threshold on the percent change of one event kind."""

    kind: EventKind
    threshold_pct: float
    direction: Direction = Direction.INCREASE
    severity: Severity = Severity.FAIL

    def __post_init__(self) -> None:
        if self.threshold_pct < 0:
            raise ConfigurationError(f"Rule threshold must be >= 0, got {self.threshold_pct}")

    def is_violated(self, diff_pct: float) -> bool:
        """True if the change strictly exceeds the threshold in a watched direction."""
        if self.direction == Direction.INCREASE:
            return diff_pct > self.threshold_pct
        if self.direction == Direction.DECREASE:
            return diff_pct < -self.threshold_pct
        return abs(diff_pct) > self.threshold_pct

    def __str__(self) -> str:
        sign = {Direction.INCREASE: "+", Direction.DECREASE: "-", Direction.EITHER: ""}[
            self.direction
        ]
        return f"{self.kind.value}:{sign}{self.threshold_pct:g}:{self.severity.value}"


DEFAULT_RULES: tuple[RegressionRule, ...] = (
    RegressionRule(EventKind.IR, 10.0, Direction.INCREASE, Severity.FAIL),
)


def parse_rule(text: str) -> RegressionRule:
    """
    Parse `KIND:[+|-]PCT[:warn|fail]`.

    Raises:
        ConfigurationError: unknown kind, bad number or severity
    """
    parts = [part.strip() for part in text.split(":")]
    if len(parts) not in (2, 3):
        raise ConfigurationError(f"Invalid rule '{text}': expected KIND:[+|-]PCT[:SEVERITY]")

    kind = EventKind.parse(parts[0])
    if kind is None:
        raise ConfigurationError(f"Invalid rule '{text}': unknown event kind '{parts[0]}'")

    threshold = parts[1].removesuffix("%")
    direction = Direction.EITHER
    if threshold.startswith("+"):
        direction, threshold = Direction.INCREASE, threshold[1:]
    elif threshold.startswith("-"):
        direction, threshold = Direction.DECREASE, threshold[1:]
    try:
        pct = float(threshold)
    except ValueError:
        raise ConfigurationError(f"Invalid rule '{text}': bad threshold '{parts[1]}'") from None
    if not math.isfinite(pct):
        raise ConfigurationError(f"Invalid rule '{text}': threshold must be finite")

    severity = Severity.FAIL
    if len(parts) == 3:
        try:
            severity = Severity(parts[2].lower())
        except ValueError:
            raise ConfigurationError(
                f"Invalid rule '{text}': severity must be 'warn' or 'fail'"
            ) from None

    return RegressionRule(kind, pct, direction, severity)


def resolve_rules(
    defaults: list[RegressionRule] | tuple[RegressionRule, ...],
    case_rules: list[RegressionRule] | tuple[RegressionRule, ...],
) -> list[RegressionRule]:
    """Case rules first, then the defaults for kinds the case does not cover.

    A case rule for a kind replaces every default rule of that kind.
    """
    overridden = {rule.kind for rule in case_rules}
    return list(case_rules) + [rule for rule in defaults if rule.kind not in overridden]
