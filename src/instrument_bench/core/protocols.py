"""
Core protocols defining the seams of the pipeline.

PATTERN:
- Protocol defines the contract
- Concrete classes implement it (CallgrindParser, FileBaselineStore, ...)
- In-memory doubles keep unit tests free of files and subprocesses
- Factory functions handle instantiation

Parsers and stores are the two places where a new implementation is
expected to be added without touching comparison or export code.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from instrument_bench.baseline.identity import BenchmarkId
    from instrument_bench.baseline.store import Baseline
    from instrument_bench.model import CostModel, ToolId


# ---------------------------------------------------------------------------
# PARSER PROTOCOL
# ---------------------------------------------------------------------------


@runtime_checkable
class ToolParser(Protocol):
    """
    Contract for turning one tool's raw artifact into a CostModel.

    Implementations:
    - CallgrindParser
    - DhatParser
    - LogfileParser (memcheck, helgrind, drd)
    """

    tool: ToolId

    def parse_bytes(self, data: bytes, source: str | None = None) -> CostModel:
        """Parse an in-memory artifact. `source` is only used in error messages."""
        ...


# ---------------------------------------------------------------------------
# BASELINE STORE PROTOCOL
# ---------------------------------------------------------------------------


@runtime_checkable
class BaselineStore(Protocol):
    """
    Contract for baseline persistence.

    Implementations:
    - FileBaselineStore (production)
    - InMemoryBaselineStore (testing)
    """

    def load(self, benchmark: BenchmarkId, slot: str) -> Baseline | None:
        """Load a baseline. Returns None if nothing was ever saved under the key."""
        ...

    def save(
        self,
        benchmark: BenchmarkId,
        slot: str,
        model: CostModel,
        command: str = "",
    ) -> Baseline:
        """Persist a model under (benchmark, slot), replacing prior content."""
        ...
