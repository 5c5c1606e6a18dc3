"""
Error taxonomy for the measurement pipeline.

Errors are split by blast radius:

- GLOBAL (halt the whole batch): ToolNotFound, ConfigurationError
- CASE-LEVEL (reported, sibling cases continue): TargetSpawnFailed,
  ToolFatalError, ParseError / TruncatedArtifact, BaselineWriteConflict
- USAGE (caller bug): ToolMismatchError

Two outcomes are deliberately NOT exceptions:
- a missing baseline is a `None` return from the store (first run)
- a violated regression rule is a verdict on the report
"""

from __future__ import annotations

from pathlib import Path


class InstrumentBenchError(Exception):
    """Base class for all harness errors."""


# ---------------------------------------------------------------------------
# GLOBAL ERRORS
# ---------------------------------------------------------------------------


class ConfigurationError(InstrumentBenchError):
    """Invalid configuration (bad rule syntax, duplicate benchmark ids, ...)."""


class ToolNotFound(ConfigurationError):
    """The profiler binary could not be located."""

    def __init__(self, tool: str, searched: str | None = None):
        self.tool = tool
        self.searched = searched
        detail = f" (searched: {searched})" if searched else ""
        super().__init__(f"Profiler binary '{tool}' not found{detail}")


# ---------------------------------------------------------------------------
# CASE-LEVEL ERRORS
# ---------------------------------------------------------------------------


class TargetSpawnFailed(InstrumentBenchError):
    """The target executable could not be launched."""

    def __init__(self, executable: Path | str, reason: str):
        self.executable = str(executable)
        self.reason = reason
        super().__init__(f"Failed to launch '{executable}': {reason}")


class ToolFatalError(InstrumentBenchError):
    """The profiler died before running the target. No parse is attempted."""

    def __init__(self, tool: str, exit_code: int | None, stderr: str):
        self.tool = tool
        self.exit_code = exit_code
        self.stderr = stderr
        first = stderr.strip().splitlines()[0] if stderr.strip() else "no diagnostics"
        super().__init__(f"{tool}: fatal error (exit code {exit_code}): {first}")


class ParseError(InstrumentBenchError):
    """An artifact did not match the expected format.

    Carries enough position information to reproduce the failure by hand.
    """

    def __init__(
        self,
        message: str,
        source: str | None = None,
        line: int | None = None,
        offset: int | None = None,
    ):
        self.message = message
        self.source = source
        self.line = line
        self.offset = offset
        super().__init__(self._format())

    def _format(self) -> str:
        where = []
        if self.source:
            where.append(self.source)
        if self.line is not None:
            where.append(f"line {self.line}")
        if self.offset is not None:
            where.append(f"byte offset {self.offset}")
        if where:
            return f"{', '.join(where)}: {self.message}"
        return self.message


class TruncatedArtifact(ParseError):
    """The artifact ends early, usually because the tool crashed mid-write."""


class UnsupportedFormatVersion(ParseError):
    """The artifact declares a format version outside the supported range."""


class BaselineWriteConflict(InstrumentBenchError):
    """Two writers raced on the same (benchmark, slot) key."""

    def __init__(self, key: str, slot: str):
        self.key = key
        self.slot = slot
        super().__init__(
            f"Baseline '{slot}' for '{key}' was written twice in one run; "
            f"is the benchmark id duplicated?"
        )


# ---------------------------------------------------------------------------
# USAGE ERRORS
# ---------------------------------------------------------------------------


class ToolMismatchError(InstrumentBenchError):
    """Two cost models from different tools cannot be compared."""

    def __init__(self, current: str, baseline: str):
        self.current = current
        self.baseline = baseline
        super().__init__(
            f"Cannot compare a '{current}' measurement against a '{baseline}' baseline"
        )
