"""
Suite files - benchmark cases described in TOML.

    [defaults]
    tool = "callgrind"
    rules = ["Ir:+5", "EstimatedCycles:+10:warn"]
    timeout = 60

    [[case]]
    group = "parsers"
    name = "bench_json"
    params = "large"
    executable = "./target/release/bench_json"
    args = ["--size", "large"]
    entry_point = "bench_json::run"

Relative executables (containing a path separator) and working
directories are resolved against the directory of the suite file.
"""

from __future__ import annotations

import logging
import os
import tomllib
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from instrument_bench.analysis import RegressionRule, parse_rule, resolve_rules
from instrument_bench.baseline import BenchmarkId
from instrument_bench.core.errors import ConfigurationError
from instrument_bench.harness.runner import BenchmarkCase, check_unique_ids
from instrument_bench.model import ToolId
from instrument_bench.orchestrator import ExitWith

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# SCHEMA
# ---------------------------------------------------------------------------


class SuiteDefaults(BaseModel):
    """Values applied to every case that does not set them."""

    model_config = ConfigDict(extra="forbid")

    tool: ToolId = Field(default=ToolId.CALLGRIND, description="Valgrind tool to run")
    rules: list[str] = Field(default_factory=list, description="Regression rules, e.g. Ir:+5")
    timeout: float | None = Field(default=None, gt=0, description="Per-case timeout in seconds")
    env: dict[str, str] = Field(default_factory=dict, description="Environment overrides")
    env_clear: bool = Field(default=False, description="Start from an empty environment")
    tool_args: list[str] = Field(default_factory=list, description="Extra valgrind arguments")

    @field_validator("rules")
    @classmethod
    def check_rules(cls, value: list[str]) -> list[str]:
        for text in value:
            parse_rule(text)
        return value


class SuiteCase(BaseModel):
    """One [[case]] table."""

    model_config = ConfigDict(extra="forbid")

    group: str = Field(min_length=1, description="Benchmark group")
    name: str = Field(min_length=1, description="Case name inside the group")
    params: str | None = Field(default=None, description="Parameter label")
    executable: str = Field(min_length=1, description="Target executable")
    args: list[str] = Field(default_factory=list)
    env: dict[str, str] = Field(default_factory=dict)
    env_clear: bool | None = None
    tool: ToolId | None = None
    rules: list[str] = Field(default_factory=list)
    entry_point: str | None = Field(default=None, description="Function to collect from")
    exit_with: str | int = Field(default="success", description="success, failure or a code")
    tool_args: list[str] = Field(default_factory=list)
    trace_children: bool = False
    current_dir: str | None = None
    timeout: float | None = Field(default=None, gt=0)

    @field_validator("rules")
    @classmethod
    def check_rules(cls, value: list[str]) -> list[str]:
        for text in value:
            parse_rule(text)
        return value

    @field_validator("exit_with")
    @classmethod
    def check_exit_with(cls, value: str | int) -> str | int:
        ExitWith.parse(value)
        return value


class SuiteDocument(BaseModel):
    """A whole suite file."""

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    defaults: SuiteDefaults = Field(default_factory=SuiteDefaults)
    cases: list[SuiteCase] = Field(default_factory=list, alias="case")


# ---------------------------------------------------------------------------
# LOADING
# ---------------------------------------------------------------------------


def _resolve_path(value: str, base: Path) -> str:
    path = Path(value)
    if path.is_absolute() or os.sep not in value:
        return value
    return str(base / path)


def _to_case(entry: SuiteCase, defaults: SuiteDefaults, base: Path) -> BenchmarkCase:
    default_rules: list[RegressionRule] = [parse_rule(text) for text in defaults.rules]
    case_rules = [parse_rule(text) for text in entry.rules]
    current_dir = None
    if entry.current_dir is not None:
        current_dir = Path(entry.current_dir)
        if not current_dir.is_absolute():
            current_dir = base / current_dir

    return BenchmarkCase(
        id=BenchmarkId(group=entry.group, case=entry.name, params=entry.params),
        executable=_resolve_path(entry.executable, base),
        args=list(entry.args),
        env={**defaults.env, **entry.env},
        env_clear=defaults.env_clear if entry.env_clear is None else entry.env_clear,
        tool=entry.tool or defaults.tool,
        rules=tuple(resolve_rules(default_rules, case_rules)),
        entry_point=entry.entry_point,
        exit_with=ExitWith.parse(entry.exit_with),
        tool_args=[*defaults.tool_args, *entry.tool_args],
        trace_children=entry.trace_children,
        current_dir=current_dir,
        timeout=entry.timeout if entry.timeout is not None else defaults.timeout,
    )


def parse_suite(data: dict, base: Path | None = None) -> list[BenchmarkCase]:
    """
    Build cases from an already decoded suite document.

    Raises:
        ConfigurationError: schema violations, bad rules, duplicate ids
    """
    try:
        document = SuiteDocument.model_validate(data)
    except ValidationError as e:
        first = e.errors()[0]
        location = ".".join(str(part) for part in first["loc"])
        raise ConfigurationError(f"Invalid suite at '{location}': {first['msg']}") from None

    base = base or Path.cwd()
    cases = [_to_case(entry, document.defaults, base) for entry in document.cases]
    check_unique_ids(cases)
    return cases


def load_suite(path: Path | str) -> list[BenchmarkCase]:
    """
    Load benchmark cases from a TOML suite file.

    Raises:
        ConfigurationError: unreadable file, invalid TOML or schema violations
    """
    path = Path(path)
    try:
        with path.open("rb") as fh:
            data = tomllib.load(fh)
    except OSError as e:
        raise ConfigurationError(f"Cannot read suite {path}: {e.strerror}") from e
    except tomllib.TOMLDecodeError as e:
        raise ConfigurationError(f"Invalid TOML in {path}: {e}") from e

    cases = parse_suite(data, base=path.resolve().parent)
    logger.debug(f"Loaded {len(cases)} case(s) from {path}")
    return cases
