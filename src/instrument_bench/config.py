"""
Harness configuration.

Built once per run (normally from the environment) and passed explicitly
to every component that needs it. Nothing reads the environment after
`HarnessConfig.from_env()` returns.
"""

from __future__ import annotations

import os
import platform
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Mapping

from instrument_bench.analysis import DEFAULT_RULES, RegressionRule, parse_rule
from instrument_bench.baseline import CURRENT_SLOT, DEFAULT_BASELINE_ROOT, validate_slot
from instrument_bench.core.errors import ConfigurationError

_TRUE = ("true", "1", "yes", "on")
_FALSE = ("false", "0", "no", "off", "")


def _flag(env: Mapping[str, str], name: str, default: bool) -> bool:
    raw = env.get(name)
    if raw is None:
        return default
    value = raw.strip().lower()
    if value in _TRUE:
        return True
    if value in _FALSE:
        return False
    raise ConfigurationError(f"{name}: expected a boolean, got '{raw}'")


def _number(env: Mapping[str, str], name: str, kind: type, default):
    raw = env.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return kind(raw)
    except ValueError:
        raise ConfigurationError(f"{name}: expected {kind.__name__}, got '{raw}'") from None


@dataclass(frozen=True)
class HarnessConfig:
    """Configuration for one harness run.

    Environment Variables:
        INSTRUMENT_BENCH_VALGRIND: valgrind binary (default: search PATH)
        INSTRUMENT_BENCH_HOME: baseline root (default: target/instrument-bench)
        INSTRUMENT_BENCH_TIMEOUT: per-case timeout in seconds (default: none)
        INSTRUMENT_BENCH_KEEP_ARTIFACTS: keep raw tool output (default: false)
        INSTRUMENT_BENCH_ALLOW_ASLR: do not wrap runs in `setarch -R` (default: false)
        INSTRUMENT_BENCH_ARCH: architecture passed to setarch (default: machine)
        INSTRUMENT_BENCH_JOBS: cases run in parallel (default: 1)
        INSTRUMENT_BENCH_RULES: comma separated default rules (default: Ir:+10)
        INSTRUMENT_BENCH_COMPARE_SLOT: slot compared against (default: current)
        INSTRUMENT_BENCH_SAVE_SLOT: extra slot to save each run under (optional)
        INSTRUMENT_BENCH_TRUNCATED_RETRIES: reruns after a truncated artifact (default: 1)
        INSTRUMENT_BENCH_TRACING: enable OpenTelemetry tracing (default: false)
        OTEL_EXPORTER_OTLP_ENDPOINT: OTLP/HTTP traces endpoint (optional)
    """

    valgrind_path: Path | None = None
    home: Path = DEFAULT_BASELINE_ROOT
    timeout: float | None = None
    keep_artifacts: bool = False
    allow_aslr: bool = False
    arch: str = field(default_factory=platform.machine)
    jobs: int = 1
    default_rules: tuple[RegressionRule, ...] = DEFAULT_RULES
    compare_slot: str = CURRENT_SLOT
    save_slot: str | None = None
    truncated_retries: int = 1
    tracing_enabled: bool = False
    otlp_endpoint: str | None = None
    service_name: str = "instrument-bench"

    def __post_init__(self) -> None:
        if self.jobs < 1:
            raise ConfigurationError(f"jobs must be >= 1, got {self.jobs}")
        if self.timeout is not None and self.timeout <= 0:
            raise ConfigurationError(f"timeout must be positive, got {self.timeout}")
        if self.truncated_retries < 0:
            raise ConfigurationError(
                f"truncated_retries must be >= 0, got {self.truncated_retries}"
            )
        validate_slot(self.compare_slot)
        if self.save_slot is not None:
            validate_slot(self.save_slot)

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None) -> HarnessConfig:
        """Load config from environment variables.

        Raises:
            ConfigurationError: a variable has an invalid value
        """
        env = os.environ if env is None else env

        valgrind = env.get("INSTRUMENT_BENCH_VALGRIND") or None
        rules_text = env.get("INSTRUMENT_BENCH_RULES")
        rules = DEFAULT_RULES
        if rules_text is not None and rules_text.strip():
            rules = tuple(parse_rule(part) for part in rules_text.split(",") if part.strip())

        return cls(
            valgrind_path=Path(valgrind) if valgrind else None,
            home=Path(env.get("INSTRUMENT_BENCH_HOME") or DEFAULT_BASELINE_ROOT),
            timeout=_number(env, "INSTRUMENT_BENCH_TIMEOUT", float, None),
            keep_artifacts=_flag(env, "INSTRUMENT_BENCH_KEEP_ARTIFACTS", False),
            allow_aslr=_flag(env, "INSTRUMENT_BENCH_ALLOW_ASLR", False),
            arch=env.get("INSTRUMENT_BENCH_ARCH") or platform.machine(),
            jobs=_number(env, "INSTRUMENT_BENCH_JOBS", int, 1),
            default_rules=rules,
            compare_slot=env.get("INSTRUMENT_BENCH_COMPARE_SLOT") or CURRENT_SLOT,
            save_slot=env.get("INSTRUMENT_BENCH_SAVE_SLOT") or None,
            truncated_retries=_number(env, "INSTRUMENT_BENCH_TRUNCATED_RETRIES", int, 1),
            tracing_enabled=_flag(env, "INSTRUMENT_BENCH_TRACING", False),
            otlp_endpoint=env.get("OTEL_EXPORTER_OTLP_ENDPOINT") or None,
        )

    def with_overrides(self, **changes) -> HarnessConfig:
        """Copy with some fields replaced (CLI flags win over the environment)."""
        changes = {key: value for key, value in changes.items() if value is not None}
        return replace(self, **changes)
